"""
Network management for projects: ensuring declared networks exist, and removing them.
"""
import logging

from ..ENGINE.base import ContainerEngine
from ..errors import ExternalResourceMissingError, RemoteCallError, ResourceNotFoundError
from ..LABELS.codec import LabelCodec
from ..MODELS.project import NetworkConfig, Project
from ..MODELS.runtime import NetworkCreateRequest
from ..RUNNERS.executor import WalkResult, run_concurrently
from . import progress
from .progress import ProgressWriter

logger = logging.getLogger(__name__)


def network_event_name(name: str) -> str:
    return f"Network {name}"


class NetworkManager:
    """
    Reconciles project networks against the engine.
    """
    def __init__(self, engine: ContainerEngine, codec: LabelCodec, writer: ProgressWriter):
        """
        Initializes the network manager.

        :param engine: The container engine.
        :param codec: Codec producing the labels of created networks.
        :param writer: Where progress is reported.
        """
        self.engine = engine
        self.codec = codec
        self.writer = writer

    def ensure(self, project: Project, key: str, network: NetworkConfig) -> None:
        """
        Makes sure a declared network exists, creating it if needed.

        :param project: The project declaring the network.
        :param key: The network's key in the project.
        :param network: The network definition, with its resolved name.
        :raises ExternalResourceMissingError: If an external network is absent.
        :raises RemoteCallError: If the engine fails.
        """
        try:
            self.engine.inspect_network(network.name)
            return
        except ResourceNotFoundError:
            pass

        if network.external:
            raise ExternalResourceMissingError("network", network.name)

        event_name = network_event_name(network.name)
        self.writer.event(progress.creating_event(event_name))
        request = NetworkCreateRequest(
            name=network.name,
            driver=network.driver,
            options=network.driver_opts,
            labels=self.codec.network_labels(project, key),
            internal=network.internal,
            attachable=network.attachable,
            ipam_driver=network.ipam_driver,
            ipam_subnets=network.ipam_subnets,
        )
        try:
            self.engine.create_network(request)
        except RemoteCallError as e:
            self.writer.event(progress.error_event(event_name))
            raise RemoteCallError(f"failed to create network {network.name}: {e}") from e
        logger.info("Created network %s", network.name)
        self.writer.event(progress.created_event(event_name))

    def remove(self, network_id: str, name: str) -> None:
        """
        Removes a network; a network that is already gone is not an error.
        """
        event_name = network_event_name(name)
        self.writer.event(progress.removing_event(event_name))
        try:
            self.engine.remove_network(network_id)
        except ResourceNotFoundError:
            pass
        except RemoteCallError as e:
            self.writer.event(progress.error_event(event_name))
            raise RemoteCallError(f"failed to remove network {name}: {e}") from e
        self.writer.event(progress.removed_event(event_name))

    def remove_project_networks(self, project_name: str) -> WalkResult:
        """
        Removes every network labelled with the project, concurrently.
        """
        networks = {n.name: n for n in self.engine.list_networks([self.codec.project_filter(project_name)])}
        return run_concurrently(networks, lambda name: self.remove(networks[name].id, name))
