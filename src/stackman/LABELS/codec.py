"""
Encoding of project metadata into runtime labels, and decoding it back.

Labels are the only state stackman keeps: a container's labels must be
enough to find its project again, re-load the files it came from, and tell
whether its configuration is still current.
"""
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel

from ..errors import IncompatibleLabelsError
from ..MODELS.project import Project
from ..MODELS.service_definition import ServiceDefinition
from .keys import DEFAULT_LABEL_KEYS, SCHEMA_VERSION, STDIN_MARKER, LabelKeys


class ProjectLabels(BaseModel):
    """
    Decoded labels of one runtime object.
    Service level fields are only present on containers.
    """
    project: str
    schema_version: str
    working_dir: str = ""
    config_files: List[str] = []
    service: Optional[str] = None
    config_hash: Optional[str] = None
    container_number: Optional[int] = None
    one_off: bool = False

    @property
    def from_stdin(self) -> bool:
        return STDIN_MARKER in self.config_files


class LabelCodec:
    """
    Pure encoder/decoder between project metadata and label mappings.
    """
    def __init__(self, keys: LabelKeys = DEFAULT_LABEL_KEYS, schema_version: str = SCHEMA_VERSION):
        self.keys = keys
        self.schema_version = schema_version

    def _project_labels(self, project: Project) -> Dict[str, str]:
        return {
            self.keys.project: project.name,
            self.keys.version: self.schema_version,
            self.keys.working_dir: project.working_dir,
            self.keys.config_files: ",".join(project.config_files),
        }

    def container_labels(
        self,
        project: Project,
        service: ServiceDefinition,
        number: int,
        config_hash: str,
        one_off: bool = False,
    ) -> Dict[str, str]:
        """
        Labels for the `number`-th container of a service (numbers start at 1).
        User labels come first so they can never shadow ours.
        """
        if number < 1:
            raise ValueError(f"container number must be >= 1, got {number}")
        labels = dict(service.labels)
        labels.update(self._project_labels(project))
        labels.update({
            self.keys.service: service.name,
            self.keys.one_off: "True" if one_off else "False",
            self.keys.config_hash: config_hash,
            self.keys.container_number: str(number),
        })
        return labels

    def network_labels(self, project: Project, key: str) -> Dict[str, str]:
        labels = dict(project.networks[key].labels) if key in project.networks else {}
        labels.update(self._project_labels(project))
        labels[self.keys.network] = key
        return labels

    def volume_labels(self, project: Project, key: str) -> Dict[str, str]:
        labels = dict(project.volumes[key].labels) if key in project.volumes else {}
        labels.update(self._project_labels(project))
        labels[self.keys.volume] = key
        return labels

    def project_filter(self, project_name: str) -> str:
        return f"{self.keys.project}={project_name}"

    def service_filter(self, service_name: str) -> str:
        return f"{self.keys.service}={service_name}"

    def has_project_filter(self) -> str:
        return self.keys.project

    def decode(self, labels: Mapping[str, str]) -> ProjectLabels:
        """
        Decodes the labels of one runtime object.

        :raises IncompatibleLabelsError: If the object was not labelled by this
            schema version or a label cannot be parsed.
        """
        project = labels.get(self.keys.project)
        if not project:
            raise IncompatibleLabelsError(f"missing label {self.keys.project}")
        version = labels.get(self.keys.version)
        if version != self.schema_version:
            raise IncompatibleLabelsError(
                f"project {project} was labelled with schema version {version!r}, "
                f"expected {self.schema_version!r}"
            )

        raw_files = labels.get(self.keys.config_files, "")
        number = labels.get(self.keys.container_number)
        if number is not None:
            try:
                number = int(number)
            except ValueError:
                raise IncompatibleLabelsError(
                    f"label {self.keys.container_number} is not a number: {number!r}"
                ) from None

        return ProjectLabels(
            project=project,
            schema_version=version,
            working_dir=labels.get(self.keys.working_dir, ""),
            config_files=raw_files.split(",") if raw_files else [],
            service=labels.get(self.keys.service),
            config_hash=labels.get(self.keys.config_hash),
            container_number=number,
            one_off=labels.get(self.keys.one_off, "False").lower() == "true",
        )
