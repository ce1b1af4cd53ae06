"""
The fixed set of label keys stamped on every runtime object stackman creates.
"""
from dataclasses import dataclass

DEFAULT_LABEL_PREFIX = "io.stackman"

# Bump when the meaning of any label changes; decoders reject other versions.
SCHEMA_VERSION = "1"

# Marker recorded instead of file paths when the project came from stdin.
STDIN_MARKER = "-"


@dataclass(frozen=True)
class LabelKeys:
    """
    Label keys, all sharing one prefix.
    """
    project: str
    service: str
    version: str
    one_off: str
    config_hash: str
    working_dir: str
    config_files: str
    container_number: str
    network: str
    volume: str

    @classmethod
    def with_prefix(cls, prefix: str = DEFAULT_LABEL_PREFIX) -> "LabelKeys":
        prefix = prefix.rstrip(".")
        return cls(
            project=f"{prefix}.project",
            service=f"{prefix}.service",
            version=f"{prefix}.version",
            one_off=f"{prefix}.oneoff",
            config_hash=f"{prefix}.config-hash",
            working_dir=f"{prefix}.project.working_dir",
            config_files=f"{prefix}.project.config_files",
            container_number=f"{prefix}.container-number",
            network=f"{prefix}.network",
            volume=f"{prefix}.volume",
        )


DEFAULT_LABEL_KEYS = LabelKeys.with_prefix()
