"""
Abstract Container Engine

Defines the atomic remote calls the orchestration core relies on. Every
call either succeeds, raises ResourceNotFoundError for a missing object,
or raises RemoteCallError.
"""

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Sequence

from ..MODELS.runtime import (
    ContainerCreateRequest,
    ContainerSummary,
    JSONMessage,
    NetworkCreateRequest,
    NetworkSummary,
    VolumeCreateRequest,
    VolumeSummary,
)


class ContainerEngine(ABC):
    """
    Abstract base class for container engines.

    Label filters are `key=value` strings, or a bare `key` to match any
    object carrying that label. Multiple filters must all match.
    """

    # =========================================================================
    # CONTAINERS
    # =========================================================================

    @abstractmethod
    def list_containers(self, label_filters: Sequence[str] = (), all: bool = False) -> List[ContainerSummary]:
        """List containers matching every label filter; stopped ones only with `all`."""

    @abstractmethod
    def inspect_container(self, container_id: str) -> ContainerSummary:
        pass

    @abstractmethod
    def create_container(self, request: ContainerCreateRequest) -> str:
        """Create a container and return its id."""

    @abstractmethod
    def start_container(self, container_id: str) -> None:
        pass

    @abstractmethod
    def stop_container(self, container_id: str, timeout: Optional[int] = None) -> None:
        """Stop a container; a timeout of None leaves the grace period to the engine."""

    @abstractmethod
    def remove_container(self, container_id: str, force: bool = False) -> None:
        pass

    @abstractmethod
    def container_logs(self, container_id: str, follow: bool = True) -> Iterator[bytes]:
        """
        Raw log stream of a container. Without a TTY the engine multiplexes
        stdout and stderr into framed chunks.
        """

    # =========================================================================
    # NETWORKS
    # =========================================================================

    @abstractmethod
    def inspect_network(self, name: str) -> NetworkSummary:
        pass

    @abstractmethod
    def list_networks(self, label_filters: Sequence[str] = ()) -> List[NetworkSummary]:
        pass

    @abstractmethod
    def create_network(self, request: NetworkCreateRequest) -> str:
        pass

    @abstractmethod
    def remove_network(self, network_id: str) -> None:
        pass

    # =========================================================================
    # VOLUMES
    # =========================================================================

    @abstractmethod
    def inspect_volume(self, name: str) -> VolumeSummary:
        pass

    @abstractmethod
    def list_volumes(self, label_filters: Sequence[str] = ()) -> List[VolumeSummary]:
        pass

    @abstractmethod
    def create_volume(self, request: VolumeCreateRequest) -> str:
        pass

    @abstractmethod
    def remove_volume(self, name: str) -> None:
        pass

    # =========================================================================
    # IMAGES
    # =========================================================================

    @abstractmethod
    def image_exists(self, reference: str) -> bool:
        pass

    @abstractmethod
    def pull_image(self, reference: str) -> Iterator[JSONMessage]:
        pass

    @abstractmethod
    def push_image(self, reference: str) -> Iterator[JSONMessage]:
        pass

    @abstractmethod
    def build_image(
        self,
        context: str,
        tag: str,
        dockerfile: Optional[str] = None,
        build_args: Optional[dict] = None,
    ) -> Iterator[JSONMessage]:
        pass
