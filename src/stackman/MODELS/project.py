"""
Models for a whole project: its services plus the networks and volumes they share.
"""
import re
from typing import List, Dict, Optional
from pydantic import BaseModel, field_validator
from .service_definition import ServiceDefinition


def normalize_project_name(name: str) -> str:
    """
    Lower-cases a project name and drops characters the engine would reject.
    """
    return re.sub(r"[^a-z0-9_-]", "", name.lower())


class NetworkConfig(BaseModel):
    """
    A network declared at the top level of a project.
    `name` is the resolved engine-side name.
    """
    name: str
    driver: Optional[str] = None
    driver_opts: Dict[str, str] = {}
    external: bool = False
    internal: bool = False
    attachable: bool = False
    labels: Dict[str, str] = {}
    ipam_driver: Optional[str] = None
    ipam_subnets: List[str] = []


class VolumeConfig(BaseModel):
    """
    A named volume declared at the top level of a project.
    """
    name: str
    driver: Optional[str] = None
    driver_opts: Dict[str, str] = {}
    external: bool = False
    labels: Dict[str, str] = {}


class Project(BaseModel):
    """
    Complete configuration for a multi-service stack.
    Equivalent to a parsed docker-compose.yml file.

    A minimal project is rebuilt from container labels alone. It only knows
    its service names, which is enough to list and tear down but not to create.
    """
    name: str
    services: Dict[str, ServiceDefinition] = {}
    networks: Dict[str, NetworkConfig] = {}
    volumes: Dict[str, VolumeConfig] = {}
    working_dir: str = ""
    config_files: List[str] = []
    minimal: bool = False

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        normalized = normalize_project_name(value)
        if not normalized:
            raise ValueError(f"invalid project name {value!r}: must contain at least one letter or digit")
        return normalized

    def service_names(self) -> List[str]:
        return sorted(self.services)

    def get_service(self, name: str) -> ServiceDefinition:
        try:
            return self.services[name]
        except KeyError:
            raise KeyError(f"no such service: {name}") from None

    def service_networks(self, service: ServiceDefinition) -> List[str]:
        """
        Keys of the project networks a service is attached to.
        Services without explicit networks join `default`.
        """
        if service.network_mode:
            return []
        if service.networks:
            return list(service.networks)
        return ["default"] if "default" in self.networks else []

    def service_volumes(self, service: ServiceDefinition) -> List[str]:
        """
        Keys of the project volumes a service mounts.
        """
        by_name = {vol.name: key for key, vol in self.volumes.items()}
        keys = []
        for mount in service.volumes:
            if mount.type.value == "volume" and mount.source in by_name:
                keys.append(by_name[mount.source])
        return keys
