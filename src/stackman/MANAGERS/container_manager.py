# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Container management for services: creating, replacing and removing the
containers backing each service.
"""
import logging
from typing import Dict, List, Optional

from ..ENGINE.base import ContainerEngine
from ..errors import ConfigurationError, RemoteCallError, ResourceNotFoundError, UnsupportedNetworkModeError
from ..LABELS.codec import LabelCodec
from ..MODELS.project import Project
from ..MODELS.runtime import ContainerCreateRequest, ContainerSummary, PortBinding
from ..MODELS.service_definition import NetworkModeKind, ServiceDefinition
from ..RUNNERS.executor import run_concurrently
from ..UTILS.fingerprint import config_hash
from . import progress
from .progress import ProgressWriter
from .volume_manager import build_mounts

logger = logging.getLogger(__name__)


def container_event_name(name: str) -> str:
    return f"Container {name}"


def container_name(project: Project, service: ServiceDefinition, number: int) -> str:
    if service.container_name and service.scale <= 1:
        return service.container_name
    return f"{project.name}_{service.name}_{number}"


def peer_container(project: Project, service: ServiceDefinition, peer: str) -> str:
    """
    Name of the first container of another service, for links and shared namespaces.
    """
    if peer not in project.services:
        raise ConfigurationError(f"Service {service.name} refers to undefined service {peer}")
    return container_name(project, project.services[peer], 1)


def resolve_links(project: Project, service: ServiceDefinition) -> Dict[str, str]:
    links: Dict[str, str] = {}
    for link in service.links:
        peer, _, alias = link.partition(":")
        links[peer_container(project, service, peer)] = alias or peer
    return links


def resolve_ipc_mode(project: Project, service: ServiceDefinition) -> Optional[str]:
    if service.ipc and service.ipc.startswith("service:"):
        return "container:" + peer_container(project, service, service.ipc.split(":", 1)[1])
    return service.ipc


def resolve_volumes_from(project: Project, service: ServiceDefinition) -> List[str]:
    """
    Engine form of `volumes_from`: `<container>[:ro|:rw]`.
    Entries name a service of the project, or `container:<name>` for any container.
    """
    resolved = []
    for source in service.volumes_from:
        if source.startswith("container:"):
            resolved.append(source[len("container:"):])
            continue
        peer, sep, mode = source.partition(":")
        resolved.append(peer_container(project, service, peer) + sep + mode)
    return resolved


def get_network_mode(project: Project, service: ServiceDefinition) -> str:
    """
    The engine network mode for a service's containers.

    Without an explicit mode the container joins the first project network
    the service is attached to, or no network at all.

    :raises UnsupportedNetworkModeError: For `service:` and `container:` modes.
    """
    mode = service.get_network_mode()
    if mode is None:
        for key in project.service_networks(service):
            if key in project.networks:
                return project.networks[key].name
        return "none"
    if mode.needs_peer:
        # TODO: look up the peer's live container id and pass "container:<id>".
        raise UnsupportedNetworkModeError(
            f"Service {service.name}: network_mode {service.network_mode!r} is not supported yet"
        )
    if mode.kind == NetworkModeKind.NETWORK and mode.target in project.networks:
        return project.networks[mode.target].name
    return service.network_mode


class ContainerManager:
    """
    Reconciles the containers of one service at a time.
    """
    def __init__(self, engine: ContainerEngine, codec: LabelCodec, writer: ProgressWriter):
        self.engine = engine
        self.codec = codec
        self.writer = writer

    def list_service_containers(self, project_name: str, service_name: str) -> List[ContainerSummary]:
        """
        Every container of a service, stopped ones included, ordered by number.
        """
        containers = self.engine.list_containers(
            [self.codec.project_filter(project_name), self.codec.service_filter(service_name)], all=True
        )
        return sorted(containers, key=self._number)

    def _number(self, container: ContainerSummary) -> int:
        labels = self.codec.decode(container.labels)
        return labels.container_number or 0

    def build_create_request(
        self,
        project: Project,
        service: ServiceDefinition,
        number: int,
        inherit: Optional[ContainerSummary] = None,
    ) -> ContainerCreateRequest:
        """
        Translates a service definition into a create request for its `number`-th container.

        :param inherit: The container being replaced; its mounts may be reused.
        """
        network_mode = get_network_mode(project, service)
        ports: Dict[str, List[PortBinding]] = {}
        for port in service.ports:
            binding = PortBinding(
                host_ip=port.host_ip or "",
                host_port=str(port.published) if port.published else "",
            )
            ports.setdefault(f"{port.target}/{port.protocol}", []).append(binding)

        aliases = [service.name]
        for key, network in service.networks.items():
            if key in project.networks and project.networks[key].name == network_mode and network:
                aliases.extend(network.aliases)

        return ContainerCreateRequest(
            name=container_name(project, service, number),
            image=service.image_name(project.name),
            command=service.command,
            entrypoint=service.entrypoint,
            environment=service.environment,
            labels=self.codec.container_labels(project, service, number, config_hash(service)),
            working_dir=service.working_dir,
            user=service.user,
            hostname=service.hostname,
            domainname=service.domainname,
            tty=service.tty,
            stdin_open=service.stdin_open,
            ports=ports,
            mounts=build_mounts(project, service, inherit),
            network_mode=network_mode,
            aliases=aliases,
            cap_add=service.cap_add,
            cap_drop=service.cap_drop,
            init=service.init,
            read_only=service.read_only,
            sysctls=service.sysctls,
            stop_signal=service.stop_signal,
            stop_timeout=int(service.stop_grace_period) if service.stop_grace_period is not None else None,
            links=resolve_links(project, service),
            ipc_mode=resolve_ipc_mode(project, service),
            volumes_from=resolve_volumes_from(project, service),
        )

    def ensure_service(self, project: Project, service: ServiceDefinition) -> None:
        """
        Converges the containers of a service to its definition.

        Containers whose configuration hash is stale are replaced, stopped
        ones are started, and containers beyond the desired scale are removed.

        :raises RemoteCallError: If an engine call fails.
        """
        expected = config_hash(service)
        existing = self.list_service_containers(project.name, service.name)
        by_number: Dict[int, ContainerSummary] = {}
        extra: List[ContainerSummary] = []
        for container in existing:
            number = self._number(container)
            if 1 <= number <= service.scale and number not in by_number:
                by_number[number] = container
            else:
                extra.append(container)

        for container in extra:
            self.remove_container(container)

        for number in range(1, service.scale + 1):
            container = by_number.get(number)
            if container is None:
                self.create_container(project, service, number)
            elif container.labels.get(self.codec.keys.config_hash) != expected:
                self.recreate_container(project, service, container)
            elif container.state != "running":
                self.start_container(container)
            else:
                self.writer.event(progress.running_event(container_event_name(container.name)))

    def create_container(
        self,
        project: Project,
        service: ServiceDefinition,
        number: int,
        inherit: Optional[ContainerSummary] = None,
    ) -> str:
        request = self.build_create_request(project, service, number, inherit)
        event_name = container_event_name(request.name)
        self.writer.event(progress.creating_event(event_name))
        try:
            container_id = self.engine.create_container(request)
            self.engine.start_container(container_id)
        except RemoteCallError as e:
            self.writer.event(progress.error_message_event(event_name, str(e)))
            raise
        logger.info("Created container %s from image %s", request.name, request.image)
        self.writer.event(progress.started_event(event_name))
        return container_id

    def recreate_container(self, project: Project, service: ServiceDefinition, old: ContainerSummary) -> str:
        """
        Replaces a container whose configuration changed, keeping its number and data mounts.
        """
        event_name = container_event_name(old.name)
        self.writer.event(progress.recreating_event(event_name))
        number = self._number(old)
        try:
            # Mounts from the list call can be partial; inspect for the full set.
            inherit = self.engine.inspect_container(old.id)
            self.engine.stop_container(old.id)
            self.engine.remove_container(old.id)
        except RemoteCallError as e:
            self.writer.event(progress.error_message_event(event_name, str(e)))
            raise
        logger.info("Recreating container %s: configuration changed", old.name)
        return self.create_container(project, service, number, inherit=inherit)

    def start_container(self, container: ContainerSummary) -> None:
        event_name = container_event_name(container.name)
        self.writer.event(progress.starting_event(event_name))
        try:
            self.engine.start_container(container.id)
        except RemoteCallError as e:
            self.writer.event(progress.error_message_event(event_name, str(e)))
            raise
        self.writer.event(progress.started_event(event_name))

    def remove_container(self, container: ContainerSummary, timeout: Optional[int] = None) -> None:
        """
        Stops then removes a container. A container that is already gone is not an error.
        """
        event_name = container_event_name(container.name)
        self.writer.event(progress.stopping_event(event_name))
        try:
            self.engine.stop_container(container.id, timeout=timeout)
        except ResourceNotFoundError:
            self.writer.event(progress.removed_event(event_name))
            return
        except RemoteCallError:
            self.writer.event(progress.error_message_event(event_name, "Error while Stopping"))
            raise
        self.writer.event(progress.removing_event(event_name))
        try:
            self.engine.remove_container(container.id)
        except ResourceNotFoundError:
            pass
        except RemoteCallError:
            self.writer.event(progress.error_message_event(event_name, "Error while Removing"))
            raise
        self.writer.event(progress.removed_event(event_name))

    def remove_service(self, project_name: str, service_name: str, timeout: Optional[int] = None) -> None:
        """
        Stops and removes every container of a service, concurrently.
        One failing container does not keep the others from being removed.

        :raises PartialFailureError: If some containers could not be removed.
        """
        containers = {c.id: c for c in self.list_service_containers(project_name, service_name)}
        result = run_concurrently(containers, lambda cid: self.remove_container(containers[cid], timeout))
        result.raise_for_failure()
