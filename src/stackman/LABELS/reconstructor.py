"""
Rebuilding a project from the labels of its live containers.
"""
import logging
import os
from typing import List, Optional

from ..ENGINE.base import ContainerEngine
from ..errors import ConfigurationError
from ..MODELS.project import Project
from ..MODELS.service_definition import ServiceDefinition
from .codec import LabelCodec

logger = logging.getLogger(__name__)


class ProjectReconstructor:
    """
    Recovers a Project using nothing but what the engine reports.
    """
    def __init__(self, engine: ContainerEngine, codec: LabelCodec, loader=None):
        """
        :param engine: The container engine.
        :param codec: Codec matching the labels on the containers.
        :param loader: Object with a `load(config_files, working_dir, project_name)`
            method returning a Project; without one only minimal projects are built.
        """
        self.engine = engine
        self.codec = codec
        self.loader = loader

    def from_labels(self, project_name: str) -> Optional[Project]:
        """
        Rebuilds a project from its containers' labels.

        The recorded files are re-loaded from the recorded working directory.
        If that is impossible or fails, a minimal project with just the
        service names is returned instead.

        :param project_name: The project to look for.
        :return: The project, or None if no container belongs to it.
        :raises IncompatibleLabelsError: If the labels were written by another schema version.
        """
        containers = self.engine.list_containers([self.codec.project_filter(project_name)], all=True)
        if not containers:
            logger.info("No containers found for project %s", project_name)
            return None

        labels = self.codec.decode(containers[0].labels)
        services = sorted({
            self.codec.decode(c.labels).service
            for c in containers
            if c.labels.get(self.codec.keys.service)
        })
        if labels.from_stdin or not labels.config_files or self.loader is None:
            return minimal_project(labels.project, services, labels.working_dir, labels.config_files)

        config_files = [
            path if os.path.isabs(path) else os.path.join(labels.working_dir, path)
            for path in labels.config_files
        ]
        try:
            return self.loader.load(config_files, labels.working_dir, project_name=labels.project)
        except ConfigurationError as e:
            logger.warning("Cannot re-load project %s, using its labels only: %s", labels.project, e)
            return minimal_project(labels.project, services, labels.working_dir, labels.config_files)


def minimal_project(name: str, services: List[str], working_dir: str = "", config_files: Optional[List[str]] = None) -> Project:
    """
    A project that only knows its name and service names.
    """
    return Project(
        name=name,
        services={s: ServiceDefinition(name=s) for s in services},
        working_dir=working_dir,
        config_files=list(config_files or []),
        minimal=True,
    )
