"""
Converters for rendering a resolved project back into a configuration document.
"""
import json
from typing import Any, Dict

import yaml

from ..errors import UnsupportedFormatError
from ..MODELS.project import Project

SUPPORTED_FORMATS = ("json", "yaml")


class ProjectConverter:
    """
    Renders a project, after interpolation and name resolution, as JSON or YAML.
    """
    def __init__(self, project: Project):
        """
        Initializes the converter.

        :param project: The parsed project.
        """
        self.project = project

    def to_dict(self) -> Dict[str, Any]:
        """
        The project as plain data, without loader bookkeeping.
        """
        data = self.project.model_dump(mode="json", exclude={"minimal", "config_files", "working_dir"})
        for service in data["services"].values():
            # Redundant with the mapping key.
            service.pop("name", None)
        return data

    def convert(self, fmt: str) -> bytes:
        """
        Performs the conversion.

        :param fmt: "json" or "yaml".
        :return: The encoded document.
        :raises UnsupportedFormatError: For any other format.
        """
        fmt = fmt.lower()
        if fmt == "json":
            return json.dumps(self.to_dict(), indent=2).encode("utf-8")
        if fmt in ("yaml", "yml"):
            return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False).encode("utf-8")
        raise UnsupportedFormatError(
            f"unsupported format {fmt!r}, expected one of: {', '.join(SUPPORTED_FORMATS)}"
        )
