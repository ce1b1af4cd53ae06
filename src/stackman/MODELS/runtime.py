"""
Models for objects as the container engine reports them, and for the requests sent to it.
"""
from typing import List, Dict, Optional, Any
from pydantic import BaseModel


class MountPoint(BaseModel):
    """
    A mount on an existing container.
    For volumes `name` is the volume name and `source` its host path.
    """
    type: str
    name: Optional[str] = None
    source: str = ""
    destination: str
    rw: bool = True


class ContainerSummary(BaseModel):
    """
    What the engine tells us about a container.
    """
    id: str
    name: str
    image: str = ""
    state: str = ""
    labels: Dict[str, str] = {}
    mounts: List[MountPoint] = []
    tty: bool = False


class NetworkSummary(BaseModel):
    id: str
    name: str
    labels: Dict[str, str] = {}


class VolumeSummary(BaseModel):
    name: str
    driver: str = "local"
    labels: Dict[str, str] = {}


class PortBinding(BaseModel):
    """
    Host side of a published port. An empty host port lets the engine pick one.
    """
    host_ip: str = ""
    host_port: str = ""


class MountSpec(BaseModel):
    """
    A mount to set up on a new container.
    """
    type: str
    source: Optional[str] = None
    target: str
    read_only: bool = False


class ContainerCreateRequest(BaseModel):
    """
    Everything needed to create a container in a single engine call.
    """
    name: str
    image: str
    command: List[str] = []
    entrypoint: List[str] = []
    environment: Dict[str, str] = {}
    labels: Dict[str, str] = {}
    working_dir: Optional[str] = None
    user: Optional[str] = None
    hostname: Optional[str] = None
    domainname: Optional[str] = None
    tty: bool = False
    stdin_open: bool = False
    # keyed by "<port>/<protocol>"
    ports: Dict[str, List[PortBinding]] = {}
    mounts: List[MountSpec] = []
    network_mode: str = "none"
    aliases: List[str] = []
    cap_add: List[str] = []
    cap_drop: List[str] = []
    init: Optional[bool] = None
    read_only: bool = False
    sysctls: Dict[str, str] = {}
    stop_signal: Optional[str] = None
    stop_timeout: Optional[int] = None
    # container name -> alias
    links: Dict[str, str] = {}
    ipc_mode: Optional[str] = None
    volumes_from: List[str] = []


class NetworkCreateRequest(BaseModel):
    name: str
    driver: Optional[str] = None
    options: Dict[str, str] = {}
    labels: Dict[str, str] = {}
    internal: bool = False
    attachable: bool = False
    ipam_driver: Optional[str] = None
    ipam_subnets: List[str] = []


class VolumeCreateRequest(BaseModel):
    name: str
    driver: Optional[str] = None
    driver_opts: Dict[str, str] = {}
    labels: Dict[str, str] = {}


class JSONMessage(BaseModel):
    """
    One line of a pull, push or build stream.
    """
    status: Optional[str] = None
    id: Optional[str] = None
    error: Optional[str] = None
    progress: Optional[str] = None
    stream: Optional[str] = None
    aux: Optional[Dict[str, Any]] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "JSONMessage":
        error = raw.get("error")
        if error is None and isinstance(raw.get("errorDetail"), dict):
            error = raw["errorDetail"].get("message")
        return cls(
            status=raw.get("status"),
            id=raw.get("id"),
            error=error,
            progress=raw.get("progress"),
            stream=raw.get("stream"),
            aux=raw.get("aux"),
        )


class ServiceStatus(BaseModel):
    """
    Replica counts of one service, as reported by `ps`.
    """
    id: str
    name: str
    desired: int
    replicas: int


class Stack(BaseModel):
    """
    One project found on the engine, as reported by `ls`.
    """
    id: str
    name: str
    status: str
