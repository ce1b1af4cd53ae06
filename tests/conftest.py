"""
Shared fixtures: an in-memory container engine and ready-made projects.
"""
import itertools
import threading
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

import pytest

from stackman.ENGINE.base import ContainerEngine
from stackman.errors import RemoteCallError, ResourceNotFoundError
from stackman.LABELS.codec import LabelCodec
from stackman.MANAGERS.progress import ProgressWriter
from stackman.MODELS.runtime import (
    ContainerCreateRequest,
    ContainerSummary,
    JSONMessage,
    MountPoint,
    NetworkCreateRequest,
    NetworkSummary,
    VolumeCreateRequest,
    VolumeSummary,
)
from stackman.PARSERS.compose_parser import ComposeParser


def _matches(labels: Dict[str, str], filters: Sequence[str]) -> bool:
    for f in filters:
        key, sep, value = f.partition("=")
        if key not in labels or (sep and labels[key] != value):
            return False
    return True


class FakeEngine(ContainerEngine):
    """
    A container engine kept in memory.

    Every call is recorded in `calls` as (operation, key). Failures are
    injected with `fail(operation, key)`, keyed by the object's name.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.containers: Dict[str, ContainerSummary] = {}
        self.requests: Dict[str, ContainerCreateRequest] = {}
        self.networks: Dict[str, NetworkSummary] = {}
        self.volumes: Dict[str, VolumeSummary] = {}
        self.images: Set[str] = set()
        self.logs: Dict[str, List[bytes]] = {}
        self.pull_messages: Dict[str, List[JSONMessage]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}

    def fail(self, operation: str, key: str, error: Optional[Exception] = None) -> None:
        self.failures[(operation, key)] = error or RemoteCallError(f"{operation} {key} failed")

    def _record(self, operation: str, key: str) -> None:
        with self._lock:
            self.calls.append((operation, key))
        error = self.failures.get((operation, key))
        if error is not None:
            raise error

    def called(self, operation: str) -> List[str]:
        return [key for op, key in self.calls if op == operation]

    def _container(self, container_id: str) -> ContainerSummary:
        try:
            return self.containers[container_id]
        except KeyError:
            raise ResourceNotFoundError(f"no such container: {container_id}") from None

    # CONTAINERS

    def add_container(self, name: str, labels: Dict[str, str], state: str = "running", **kwargs) -> ContainerSummary:
        container = ContainerSummary(id=f"c{next(self._ids)}", name=name, state=state, labels=labels, **kwargs)
        self.containers[container.id] = container
        return container

    def list_containers(self, label_filters: Sequence[str] = (), all: bool = False) -> List[ContainerSummary]:
        self._record("list_containers", ",".join(label_filters))
        return [
            c.model_copy() for c in list(self.containers.values())
            if _matches(c.labels, label_filters) and (all or c.state == "running")
        ]

    def inspect_container(self, container_id: str) -> ContainerSummary:
        container = self._container(container_id)
        self._record("inspect_container", container.name)
        return container.model_copy()

    def create_container(self, request: ContainerCreateRequest) -> str:
        self._record("create_container", request.name)
        mounts = [
            MountPoint(
                type=m.type,
                name=m.source if m.type == "volume" else None,
                source=m.source or "",
                destination=m.target,
                rw=not m.read_only,
            )
            for m in request.mounts
        ]
        with self._lock:
            container = ContainerSummary(
                id=f"c{next(self._ids)}",
                name=request.name,
                image=request.image,
                state="created",
                labels=request.labels,
                mounts=mounts,
                tty=request.tty,
            )
            self.containers[container.id] = container
            self.requests[container.id] = request
        return container.id

    def start_container(self, container_id: str) -> None:
        container = self._container(container_id)
        self._record("start_container", container.name)
        container.state = "running"

    def stop_container(self, container_id: str, timeout: Optional[int] = None) -> None:
        container = self._container(container_id)
        self._record("stop_container", container.name)
        container.state = "exited"

    def remove_container(self, container_id: str, force: bool = False) -> None:
        container = self._container(container_id)
        self._record("remove_container", container.name)
        with self._lock:
            self.containers.pop(container_id, None)

    def container_logs(self, container_id: str, follow: bool = True) -> Iterator[bytes]:
        container = self._container(container_id)
        self._record("container_logs", container.name)
        return iter(self.logs.get(container_id, []))

    # NETWORKS

    def inspect_network(self, name: str) -> NetworkSummary:
        self._record("inspect_network", name)
        if name not in self.networks:
            raise ResourceNotFoundError(f"network {name} not found")
        return self.networks[name]

    def list_networks(self, label_filters: Sequence[str] = ()) -> List[NetworkSummary]:
        return [n for n in list(self.networks.values()) if _matches(n.labels, label_filters)]

    def create_network(self, request: NetworkCreateRequest) -> str:
        self._record("create_network", request.name)
        network = NetworkSummary(id=f"n{next(self._ids)}", name=request.name, labels=request.labels)
        with self._lock:
            self.networks[request.name] = network
        return network.id

    def remove_network(self, network_id: str) -> None:
        for network in list(self.networks.values()):
            if network.id == network_id:
                self._record("remove_network", network.name)
                with self._lock:
                    del self.networks[network.name]
                return
        raise ResourceNotFoundError(f"network {network_id} not found")

    # VOLUMES

    def inspect_volume(self, name: str) -> VolumeSummary:
        self._record("inspect_volume", name)
        if name not in self.volumes:
            raise ResourceNotFoundError(f"volume {name} not found")
        return self.volumes[name]

    def list_volumes(self, label_filters: Sequence[str] = ()) -> List[VolumeSummary]:
        return [v for v in list(self.volumes.values()) if _matches(v.labels, label_filters)]

    def create_volume(self, request: VolumeCreateRequest) -> str:
        self._record("create_volume", request.name)
        with self._lock:
            self.volumes[request.name] = VolumeSummary(name=request.name, labels=request.labels)
        return request.name

    def remove_volume(self, name: str) -> None:
        self._record("remove_volume", name)
        if name not in self.volumes:
            raise ResourceNotFoundError(f"volume {name} not found")
        with self._lock:
            del self.volumes[name]

    # IMAGES

    def image_exists(self, reference: str) -> bool:
        return reference in self.images

    def pull_image(self, reference: str) -> Iterator[JSONMessage]:
        self._record("pull_image", reference)
        messages = self.pull_messages.get(reference, [
            JSONMessage(status="Pulling fs layer", id="l1"),
            JSONMessage(status="Pull complete", id="l1"),
        ])
        for message in messages:
            yield message
        self.images.add(reference)

    def push_image(self, reference: str) -> Iterator[JSONMessage]:
        self._record("push_image", reference)
        yield JSONMessage(status="Pushed", id="l1")

    def build_image(self, context, tag, dockerfile=None, build_args=None) -> Iterator[JSONMessage]:
        self._record("build_image", tag)
        yield JSONMessage(stream="Step 1/1 : FROM scratch\n")
        self.images.add(tag)


DEMO_COMPOSE = """
name: demo
services:
  db:
    image: postgres:16
    volumes:
      - data:/var/lib/postgresql/data
  cache:
    image: redis:7
  web:
    image: nginx:latest
    depends_on: [db, cache]
    ports:
      - "8080:80"
    environment:
      DEBUG: "true"
volumes:
  data: {}
"""


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def codec():
    return LabelCodec()


@pytest.fixture
def writer():
    return ProgressWriter()


@pytest.fixture
def parser():
    return ComposeParser(environment={})


@pytest.fixture
def demo_project(parser, tmp_path):
    return parser.parse_from_string(DEMO_COMPOSE, working_dir=str(tmp_path))


@pytest.fixture
def demo_compose_file(tmp_path):
    path = tmp_path / "compose.yaml"
    path.write_text(DEMO_COMPOSE)
    return str(path)


@pytest.fixture
def demo_file_project(parser, demo_compose_file):
    return parser.parse(demo_compose_file)
