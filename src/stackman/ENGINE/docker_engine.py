"""
Docker Engine

ContainerEngine implementation over the docker SDK's low-level API client.
Server side errors (5xx) are retried; everything else is mapped onto the
stackman error hierarchy so callers never see docker exceptions.
"""

import functools
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.types import IPAMConfig, IPAMPool, Mount
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import RemoteCallError, ResourceNotFoundError
from ..MODELS.runtime import (
    ContainerCreateRequest,
    ContainerSummary,
    JSONMessage,
    MountPoint,
    NetworkCreateRequest,
    NetworkSummary,
    VolumeCreateRequest,
    VolumeSummary,
)
from .base import ContainerEngine

logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, APIError) and not isinstance(exc, NotFound) and exc.is_server_error()


def _translate(exc: Exception, what: str) -> RemoteCallError:
    if isinstance(exc, NotFound):
        return ResourceNotFoundError(f"{what}: {exc.explanation or exc}")
    if isinstance(exc, APIError):
        return RemoteCallError(f"{what}: {exc.explanation or exc}")
    return RemoteCallError(f"{what}: {exc}")


def engine_call(what: str):
    """
    Wraps a DockerEngine method: retries transient failures, then maps
    docker exceptions onto RemoteCallError / ResourceNotFoundError.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            retrying = retry(
                retry=retry_if_exception(_is_transient),
                stop=stop_after_attempt(self.retries),
                wait=wait_exponential(multiplier=0.2, max=5),
                reraise=True,
            )(func)
            try:
                return retrying(self, *args, **kwargs)
            except DockerException as e:
                raise _translate(e, what) from e
        return wrapper
    return decorator


def _label_filters(label_filters: Sequence[str]) -> Dict[str, Any]:
    return {"label": list(label_filters)} if label_filters else {}


def _canonical_name(names: List[str]) -> str:
    # Names holds the canonical /foo plus link aliases such as /linked_by/foo
    for name in names:
        if name.rfind("/") == 0:
            return name[1:]
    return names[0].lstrip("/") if names else ""


def _mount_points(raw_mounts: Optional[List[Dict[str, Any]]]) -> List[MountPoint]:
    return [
        MountPoint(
            type=m.get("Type", "volume"),
            name=m.get("Name"),
            source=m.get("Source", ""),
            destination=m["Destination"],
            rw=m.get("RW", True),
        )
        for m in raw_mounts or []
    ]


class DockerEngine(ContainerEngine):
    """
    Talks to a Docker daemon.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None, retries: int = 3):
        self.client = client or docker.from_env()
        self.api = self.client.api
        self.retries = max(1, retries)

    # =========================================================================
    # CONTAINERS
    # =========================================================================

    @engine_call("list containers")
    def list_containers(self, label_filters: Sequence[str] = (), all: bool = False) -> List[ContainerSummary]:
        raw = self.api.containers(all=all, filters=_label_filters(label_filters))
        return [
            ContainerSummary(
                id=c["Id"],
                name=_canonical_name(c.get("Names") or []),
                image=c.get("Image", ""),
                state=c.get("State", ""),
                labels=c.get("Labels") or {},
                mounts=_mount_points(c.get("Mounts")),
            )
            for c in raw
        ]

    @engine_call("inspect container")
    def inspect_container(self, container_id: str) -> ContainerSummary:
        c = self.api.inspect_container(container_id)
        config = c.get("Config") or {}
        return ContainerSummary(
            id=c["Id"],
            name=c.get("Name", "").lstrip("/"),
            image=config.get("Image", ""),
            state=(c.get("State") or {}).get("Status", ""),
            labels=config.get("Labels") or {},
            mounts=_mount_points(c.get("Mounts")),
            tty=bool(config.get("Tty")),
        )

    @engine_call("create container")
    def create_container(self, request: ContainerCreateRequest) -> str:
        mounts = [
            Mount(target=m.target, source=m.source, type=m.type, read_only=m.read_only)
            for m in request.mounts
        ]
        port_bindings = {
            port: [(b.host_ip, b.host_port) if b.host_ip else b.host_port for b in bindings]
            for port, bindings in request.ports.items()
        }
        host_config = self.api.create_host_config(
            mounts=mounts or None,
            port_bindings=port_bindings or None,
            network_mode=request.network_mode,
            cap_add=request.cap_add or None,
            cap_drop=request.cap_drop or None,
            init=request.init,
            read_only=request.read_only or None,
            sysctls=request.sysctls or None,
            links=request.links or None,
            ipc_mode=request.ipc_mode,
            volumes_from=request.volumes_from or None,
        )
        networking_config = None
        if request.aliases and request.network_mode not in ("host", "none", "bridge"):
            networking_config = self.api.create_networking_config({
                request.network_mode: self.api.create_endpoint_config(aliases=request.aliases),
            })
        exposed = [tuple(p.split("/", 1)) for p in request.ports]
        created = self.api.create_container(
            image=request.image,
            command=request.command or None,
            entrypoint=request.entrypoint or None,
            name=request.name,
            environment=request.environment or None,
            labels=request.labels,
            working_dir=request.working_dir,
            user=request.user,
            hostname=request.hostname,
            domainname=request.domainname,
            tty=request.tty,
            stdin_open=request.stdin_open,
            ports=exposed or None,
            stop_signal=request.stop_signal,
            stop_timeout=request.stop_timeout,
            host_config=host_config,
            networking_config=networking_config,
        )
        return created["Id"]

    @engine_call("start container")
    def start_container(self, container_id: str) -> None:
        self.api.start(container_id)

    @engine_call("stop container")
    def stop_container(self, container_id: str, timeout: Optional[int] = None) -> None:
        self.api.stop(container_id, timeout=timeout)

    @engine_call("remove container")
    def remove_container(self, container_id: str, force: bool = False) -> None:
        self.api.remove_container(container_id, force=force)

    @engine_call("container logs")
    def container_logs(self, container_id: str, follow: bool = True) -> Iterator[bytes]:
        # The public logs() call strips the stream framing we need to keep
        # stdout and stderr apart, so read the raw endpoint instead. These
        # helpers are private to docker-py; setup.py pins the major version.
        params = {"stdout": 1, "stderr": 1, "follow": 1 if follow else 0, "timestamps": 0}
        response = self.api._get(
            self.api._url("/containers/{0}/logs", container_id), params=params, stream=True
        )
        self.api._raise_for_status(response)
        return self._guard_stream(self.api._stream_raw_result(response, chunk_size=4096, decode=False), "container logs")

    # =========================================================================
    # NETWORKS
    # =========================================================================

    @engine_call("inspect network")
    def inspect_network(self, name: str) -> NetworkSummary:
        n = self.api.inspect_network(name)
        return NetworkSummary(id=n["Id"], name=n["Name"], labels=n.get("Labels") or {})

    @engine_call("list networks")
    def list_networks(self, label_filters: Sequence[str] = ()) -> List[NetworkSummary]:
        return [
            NetworkSummary(id=n["Id"], name=n["Name"], labels=n.get("Labels") or {})
            for n in self.api.networks(filters=_label_filters(label_filters))
        ]

    @engine_call("create network")
    def create_network(self, request: NetworkCreateRequest) -> str:
        ipam = None
        if request.ipam_driver or request.ipam_subnets:
            ipam = IPAMConfig(
                driver=request.ipam_driver or "default",
                pool_configs=[IPAMPool(subnet=s) for s in request.ipam_subnets],
            )
        created = self.api.create_network(
            request.name,
            driver=request.driver,
            options=request.options or None,
            ipam=ipam,
            internal=request.internal,
            labels=request.labels,
            attachable=request.attachable,
        )
        return created["Id"]

    @engine_call("remove network")
    def remove_network(self, network_id: str) -> None:
        self.api.remove_network(network_id)

    # =========================================================================
    # VOLUMES
    # =========================================================================

    @engine_call("inspect volume")
    def inspect_volume(self, name: str) -> VolumeSummary:
        v = self.api.inspect_volume(name)
        return VolumeSummary(name=v["Name"], driver=v.get("Driver", "local"), labels=v.get("Labels") or {})

    @engine_call("list volumes")
    def list_volumes(self, label_filters: Sequence[str] = ()) -> List[VolumeSummary]:
        raw = self.api.volumes(filters=_label_filters(label_filters)) or {}
        return [
            VolumeSummary(name=v["Name"], driver=v.get("Driver", "local"), labels=v.get("Labels") or {})
            for v in raw.get("Volumes") or []
        ]

    @engine_call("create volume")
    def create_volume(self, request: VolumeCreateRequest) -> str:
        created = self.api.create_volume(
            name=request.name,
            driver=request.driver,
            driver_opts=request.driver_opts or None,
            labels=request.labels,
        )
        return created["Name"]

    @engine_call("remove volume")
    def remove_volume(self, name: str) -> None:
        self.api.remove_volume(name)

    # =========================================================================
    # IMAGES
    # =========================================================================

    @engine_call("inspect image")
    def image_exists(self, reference: str) -> bool:
        try:
            self.api.inspect_image(reference)
        except NotFound:
            return False
        return True

    @engine_call("pull image")
    def pull_image(self, reference: str) -> Iterator[JSONMessage]:
        stream = self.api.pull(reference, stream=True, decode=True)
        return self._messages(stream, f"pull {reference}")

    @engine_call("push image")
    def push_image(self, reference: str) -> Iterator[JSONMessage]:
        stream = self.api.push(reference, stream=True, decode=True)
        return self._messages(stream, f"push {reference}")

    @engine_call("build image")
    def build_image(
        self,
        context: str,
        tag: str,
        dockerfile: Optional[str] = None,
        build_args: Optional[dict] = None,
    ) -> Iterator[JSONMessage]:
        stream = self.api.build(
            path=context, tag=tag, dockerfile=dockerfile, buildargs=build_args or None, rm=True, decode=True
        )
        return self._messages(stream, f"build {tag}")

    def _messages(self, stream: Iterator[Dict[str, Any]], what: str) -> Iterator[JSONMessage]:
        for raw in self._guard_stream(stream, what):
            yield JSONMessage.from_raw(raw)

    @staticmethod
    def _guard_stream(stream: Iterator[Any], what: str) -> Iterator[Any]:
        # Streams fail lazily, after the wrapping engine_call has returned.
        try:
            for item in stream:
                yield item
        except DockerException as e:
            raise _translate(e, what) from e
