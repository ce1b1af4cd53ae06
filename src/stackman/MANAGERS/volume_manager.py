"""
Volume management for projects, and the mount list of new containers.
"""
import logging
import os
from typing import List, Optional

from ..ENGINE.base import ContainerEngine
from ..errors import ExternalResourceMissingError, RemoteCallError, ResourceNotFoundError
from ..LABELS.codec import LabelCodec
from ..MODELS.project import Project, VolumeConfig
from ..MODELS.runtime import ContainerSummary, MountSpec, VolumeCreateRequest
from ..MODELS.service_definition import ServiceDefinition, ServiceVolume, VolumeType
from ..RUNNERS.executor import WalkResult, run_concurrently
from . import progress
from .progress import ProgressWriter

logger = logging.getLogger(__name__)


def volume_event_name(name: str) -> str:
    return f"Volume {name}"


class VolumeManager:
    """
    Reconciles project volumes against the engine.
    """
    def __init__(self, engine: ContainerEngine, codec: LabelCodec, writer: ProgressWriter):
        self.engine = engine
        self.codec = codec
        self.writer = writer

    def ensure(self, project: Project, key: str, volume: VolumeConfig) -> None:
        """
        Makes sure a declared volume exists, creating it if needed.

        :raises ExternalResourceMissingError: If an external volume is absent.
        :raises RemoteCallError: If the engine fails.
        """
        try:
            self.engine.inspect_volume(volume.name)
            return
        except ResourceNotFoundError:
            pass

        if volume.external:
            raise ExternalResourceMissingError("volume", volume.name)

        event_name = volume_event_name(volume.name)
        self.writer.event(progress.creating_event(event_name))
        request = VolumeCreateRequest(
            name=volume.name,
            driver=volume.driver,
            driver_opts=volume.driver_opts,
            labels=self.codec.volume_labels(project, key),
        )
        try:
            self.engine.create_volume(request)
        except RemoteCallError as e:
            self.writer.event(progress.error_event(event_name))
            raise RemoteCallError(f"failed to create volume {volume.name}: {e}") from e
        logger.info("Created volume %s", volume.name)
        self.writer.event(progress.created_event(event_name))

    def remove(self, name: str) -> None:
        """
        Removes a volume; a volume that is already gone is not an error.
        """
        event_name = volume_event_name(name)
        self.writer.event(progress.removing_event(event_name))
        try:
            self.engine.remove_volume(name)
        except ResourceNotFoundError:
            pass
        except RemoteCallError as e:
            self.writer.event(progress.error_event(event_name))
            raise RemoteCallError(f"failed to remove volume {name}: {e}") from e
        self.writer.event(progress.removed_event(event_name))

    def remove_project_volumes(self, project_name: str) -> WalkResult:
        """
        Removes every volume labelled with the project, concurrently.
        """
        names = [v.name for v in self.engine.list_volumes([self.codec.project_filter(project_name)])]
        return run_concurrently(names, self.remove)


def resolve_bind_source(source: str, working_dir: str) -> str:
    """
    Resolves the host path of a bind mount against the project directory.

    :param source: The source path as declared.
    :param working_dir: The project working directory.
    :return: An absolute path.
    """
    source = os.path.expanduser(source)
    if not os.path.isabs(source):
        source = os.path.join(working_dir, source)
    return os.path.normpath(source)


def build_mounts(
    project: Project,
    service: ServiceDefinition,
    inherit: Optional[ContainerSummary] = None,
) -> List[MountSpec]:
    """
    Computes the mounts of a new container for a service.

    When replacing a container, a mount it held is kept (with its original
    source) if the new definition declares the same target with no source
    or the same source, so the data survives the reconfiguration. Only the
    source is inherited; the read-only flag comes from the new definition.
    Mounts only the old container had are dropped, and tmpfs mounts are
    never kept.

    :param project: The project the service belongs to.
    :param service: The new service definition.
    :param inherit: The container being replaced, if any.
    :return: Mounts for the create request.
    """
    declared = {v.target: v for v in service.volumes}
    mounts: List[MountSpec] = []
    inherited = set()

    if inherit is not None:
        for m in inherit.mounts:
            if m.type == VolumeType.TMPFS.value or m.destination not in declared:
                continue
            wanted = declared[m.destination]
            if wanted.type == VolumeType.TMPFS:
                continue
            src = m.name if m.type == VolumeType.VOLUME.value and m.name else m.source
            if wanted.source and _declared_source(project, wanted) != src:
                continue
            mounts.append(MountSpec(type=m.type, source=src, target=m.destination, read_only=wanted.read_only))
            inherited.add(m.destination)

    for v in service.volumes:
        if v.target in inherited:
            continue
        mounts.append(MountSpec(
            type=v.type.value,
            source=_declared_source(project, v),
            target=v.target,
            read_only=v.read_only,
        ))
    return mounts


def _declared_source(project: Project, volume: ServiceVolume) -> Optional[str]:
    if volume.type == VolumeType.BIND and volume.source:
        return resolve_bind_source(volume.source, project.working_dir)
    return volume.source
