"""
Models for defining services, including ports, mounts, build settings and network modes.
"""
from typing import List, Dict, Optional, Any, Set
from pydantic import BaseModel, Field
from enum import Enum


class VolumeType(str, Enum):
    """
    Kinds of mounts a service can declare.
    """
    VOLUME = "volume"
    BIND = "bind"
    TMPFS = "tmpfs"


class NetworkModeKind(str, Enum):
    """
    How a container joins the network.
    """
    BRIDGE = "bridge"
    HOST = "host"
    NONE = "none"
    NETWORK = "network"
    SERVICE = "service"
    CONTAINER = "container"


class NetworkMode(BaseModel):
    """
    A parsed `network_mode` value.

    `service:<name>` and `container:<id>` share the namespace of another
    container, which has to be looked up on the engine before creation.
    """
    kind: NetworkModeKind
    target: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "NetworkMode":
        for prefix in (NetworkModeKind.SERVICE, NetworkModeKind.CONTAINER):
            if value.startswith(f"{prefix.value}:"):
                return cls(kind=prefix, target=value.split(":", 1)[1])
        if value in (NetworkModeKind.BRIDGE.value, NetworkModeKind.HOST.value, NetworkModeKind.NONE.value):
            return cls(kind=NetworkModeKind(value))
        return cls(kind=NetworkModeKind.NETWORK, target=value)

    @property
    def needs_peer(self) -> bool:
        return self.kind in (NetworkModeKind.SERVICE, NetworkModeKind.CONTAINER)


class BuildConfig(BaseModel):
    """
    Where and how to build the image of a service.
    """
    context: str = "."
    dockerfile: Optional[str] = None
    args: Dict[str, str] = {}


class ServicePort(BaseModel):
    """
    A container port, optionally published on the host.
    """
    target: int
    published: Optional[int] = None
    protocol: str = "tcp"
    host_ip: Optional[str] = None


class ServiceVolume(BaseModel):
    """
    Defines a mount inside the service's containers.
    An empty source on a volume mount means an anonymous volume.
    """
    type: VolumeType = VolumeType.VOLUME
    source: Optional[str] = None
    target: str
    read_only: bool = False


class ServiceNetworkConfig(BaseModel):
    """
    Per-network settings of a service.
    """
    aliases: List[str] = []


# Fields that never reach the container and so do not count towards its identity.
NON_IDENTITY_FIELDS = {"scale", "depends_on", "build", "extensions"}


class ServiceDefinition(BaseModel):
    """
    The full definition of a single service, as declared in a compose file.
    """
    name: str
    image: Optional[str] = None
    build: Optional[BuildConfig] = None

    # Execution
    command: List[str] = []
    entrypoint: List[str] = []
    working_dir: Optional[str] = None
    user: Optional[str] = None
    tty: bool = False
    stdin_open: bool = False
    init: Optional[bool] = None
    stop_signal: Optional[str] = None
    stop_grace_period: Optional[float] = None

    # Environment
    environment: Dict[str, str] = {}

    # Networking
    ports: List[ServicePort] = []
    networks: Dict[str, Optional[ServiceNetworkConfig]] = {}
    network_mode: Optional[str] = None
    hostname: Optional[str] = None
    domainname: Optional[str] = None
    links: List[str] = []

    # Storage
    volumes: List[ServiceVolume] = []
    volumes_from: List[str] = []

    # Isolation
    ipc: Optional[str] = None
    cap_add: List[str] = []
    cap_drop: List[str] = []
    read_only: bool = False
    sysctls: Dict[str, str] = {}

    # Lifecycle
    depends_on: List[str] = []
    scale: int = Field(default=1, ge=0)
    container_name: Optional[str] = None

    # Metadata
    labels: Dict[str, str] = {}
    extensions: Dict[str, Any] = {}

    def image_name(self, project_name: str) -> str:
        """
        The image to run, falling back to the name a build would produce.
        """
        return self.image or f"{project_name}_{self.name}"

    def get_network_mode(self) -> Optional[NetworkMode]:
        if not self.network_mode:
            return None
        return NetworkMode.parse(self.network_mode)

    def dependencies(self) -> Set[str]:
        """
        Names of services that must be up before this one.

        Besides `depends_on` and `links`, sharing another service's network
        namespace, IPC namespace or volumes makes it a dependency.
        """
        deps = set(self.depends_on)
        for link in self.links:
            deps.add(link.split(":", 1)[0])
        mode = self.get_network_mode()
        if mode and mode.kind == NetworkModeKind.SERVICE:
            deps.add(mode.target)
        if self.ipc and self.ipc.startswith("service:"):
            deps.add(self.ipc.split(":", 1)[1])
        for source in self.volumes_from:
            if source.startswith("container:"):
                continue
            deps.add(source.split(":", 1)[0])
        deps.discard(self.name)
        return deps
