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
Orchestration of whole projects: bringing them up, tearing them down and inspecting them.
"""
import logging
from typing import Dict, List, Optional, Set, TextIO

from ..BUILDERS.image_builder import ImageBuilder
from ..CONVERTERS.project_converter import ProjectConverter
from ..ENGINE.base import ContainerEngine
from ..errors import ConfigurationError, RemoteCallError
from ..LABELS.codec import LabelCodec
from ..LABELS.reconstructor import ProjectReconstructor
from ..MODELS.project import Project
from ..MODELS.runtime import ServiceStatus, Stack
from ..RUNNERS.dependency_graph import DependencyGraph
from ..RUNNERS.executor import OrderedExecutor, WalkResult, run_concurrently
from ..settings import Settings, settings as default_settings
from ..UTILS.status import combined_status, group_by_label
from . import progress
from .container_manager import ContainerManager, get_network_mode
from .log_aggregator import LogAggregator
from .network_manager import NetworkManager
from .progress import NullProgressWriter, ProgressWriter
from .volume_manager import VolumeManager

logger = logging.getLogger(__name__)

NETWORK_PREFIX = "network:"
VOLUME_PREFIX = "volume:"


def service_event_name(name: str) -> str:
    return f"Service {name}"


def image_event_name(reference: str) -> str:
    return f"Image {reference}"


class ServiceOrchestrator:
    """
    Orchestrates multiple services based on their dependencies.

    Holds no state of its own between calls: everything needed to find a
    running project again is read back from the labels of its containers.
    """
    def __init__(
        self,
        engine: ContainerEngine,
        codec: Optional[LabelCodec] = None,
        writer: Optional[ProgressWriter] = None,
        loader=None,
        settings: Settings = default_settings,
    ):
        """
        Initializes the orchestrator.

        :param engine: The container engine to reconcile against.
        :param codec: Label codec; defaults to one using the configured label prefix.
        :param writer: Where progress is reported; nothing is reported by default.
        :param loader: Loader used to re-read a project's files on teardown.
        :param settings: Process-wide settings.
        """
        self.engine = engine
        self.settings = settings
        self.codec = codec or LabelCodec(settings.label_keys())
        self.writer = writer or NullProgressWriter()
        self.loader = loader
        self.networks = NetworkManager(engine, self.codec, self.writer)
        self.volumes = VolumeManager(engine, self.codec, self.writer)
        self.containers = ContainerManager(engine, self.codec, self.writer)
        self.builder = ImageBuilder(engine, self.writer)
        self.reconstructor = ProjectReconstructor(engine, self.codec, loader)

    def up(self, project: Project) -> WalkResult:
        """
        Brings every service of a project to its declared state, in dependency order.

        :param project: A fully loaded project.
        :return: What was reconciled.
        :raises ConfigurationError: Before any engine call, if the project is invalid.
        :raises PartialFailureError: If some work failed after other work completed.
        """
        if project.minimal:
            raise ConfigurationError(
                f"project {project.name} was rebuilt from labels only and cannot be started"
            )
        graph = DependencyGraph.from_project(project)
        for service in project.services.values():
            get_network_mode(project, service)

        logger.info("Starting project %s: %s", project.name, ", ".join(graph.order()))
        images = self._ensure_images(project)
        resources = self._ensure_resources(project)
        blocked = self._blocked_services(project, images, resources)

        def on_skip(name: str):
            self.writer.event(progress.skipped_event(service_event_name(name)))

        services = OrderedExecutor(graph, fail_fast=True).walk(
            lambda name: self.containers.ensure_service(project, project.services[name]),
            blocked=blocked,
            on_skip=on_skip,
        )
        result = images.merge(resources).merge(services)
        result.raise_for_failure()
        return result

    def _ensure_images(self, project: Project) -> WalkResult:
        """
        Builds or pulls the images that are missing, once per distinct image.
        The outcome is reported against every service using the image.
        """
        users: Dict[str, List[str]] = {}
        for name in project.service_names():
            users.setdefault(project.services[name].image_name(project.name), []).append(name)

        def ensure(reference: str):
            if self.engine.image_exists(reference):
                return
            service = project.services[users[reference][0]]
            if service.build is not None:
                self.builder.build(project, service)
            elif self.settings.pull_missing:
                self._pull(reference)

        result = run_concurrently(list(users), ensure)
        return WalkResult(
            completed=[name for reference in result.completed for name in users[reference]],
            failed={name: e for reference, e in result.failed.items() for name in users[reference]},
        )

    def _ensure_resources(self, project: Project) -> WalkResult:
        names = [NETWORK_PREFIX + key for key in project.networks]
        names += [VOLUME_PREFIX + key for key in project.volumes]

        def ensure(name: str):
            if name.startswith(NETWORK_PREFIX):
                key = name[len(NETWORK_PREFIX):]
                self.networks.ensure(project, key, project.networks[key])
            else:
                key = name[len(VOLUME_PREFIX):]
                self.volumes.ensure(project, key, project.volumes[key])

        return run_concurrently(names, ensure)

    def _blocked_services(self, project: Project, images: WalkResult, resources: WalkResult) -> Set[str]:
        """
        Services that cannot be created because their image, a network or a volume failed.
        """
        blocked = set(images.failed)
        for name, service in project.services.items():
            needs = {NETWORK_PREFIX + key for key in project.service_networks(service)}
            needs |= {VOLUME_PREFIX + key for key in project.service_volumes(service)}
            if needs & set(resources.failed):
                blocked.add(name)
        if blocked:
            logger.warning("Not starting %s: a required resource failed", ", ".join(sorted(blocked)))
        return blocked

    def down(self, project_name: str, timeout: Optional[int] = None, volumes: bool = False) -> WalkResult:
        """
        Stops and removes the containers of a project, then its networks.

        The project is rebuilt from the labels of its containers, so no
        configuration file is needed. Dependents are removed before the
        services they depend on.

        :param project_name: Name of the project to tear down.
        :param timeout: Seconds to wait for containers to stop; None uses the engine default.
        :param volumes: Also remove the project's named volumes.
        :return: What was removed.
        :raises PartialFailureError: If some resources could not be removed.
        """
        project = self.reconstructor.from_labels(project_name)
        if project is None:
            logger.warning("No resource found to remove for project %s", project_name)
            return WalkResult()

        graph = DependencyGraph.from_project(project)
        # Containers of services no longer declared in the files still have to go.
        for container in self.engine.list_containers([self.codec.project_filter(project.name)], all=True):
            service = container.labels.get(self.codec.keys.service)
            if service and service not in graph:
                graph.add_node(service)

        if timeout is None:
            timeout = self.settings.stop_timeout

        def on_skip(name: str):
            self.writer.event(progress.skipped_event(service_event_name(name)))

        result = OrderedExecutor(graph, reverse=True, fail_fast=False).walk(
            lambda name: self.containers.remove_service(project.name, name, timeout),
            on_skip=on_skip,
        )
        result = result.merge(self.networks.remove_project_networks(project.name))
        if volumes:
            result = result.merge(self.volumes.remove_project_volumes(project.name))
        result.raise_for_failure()
        return result

    def ps(self, project_name: str) -> List[ServiceStatus]:
        """
        Lists the services of a project with their desired and running replica counts.

        :raises IncompatibleLabelsError: If a project container has no service label.
        """
        containers = self.engine.list_containers([self.codec.project_filter(project_name)], all=True)
        groups, names = group_by_label(containers, self.codec.keys.service)
        return [
            ServiceStatus(
                id=groups[name][0].id,
                name=name,
                desired=len(groups[name]),
                replicas=sum(1 for c in groups[name] if c.state == "running"),
            )
            for name in names
        ]

    def list_stacks(self) -> List[Stack]:
        """
        Lists every project that has containers on the engine.
        """
        containers = self.engine.list_containers([self.codec.has_project_filter()], all=True)
        groups, names = group_by_label(containers, self.codec.keys.project)
        return [
            Stack(id=name, name=name, status=combined_status(c.state for c in groups[name]))
            for name in names
        ]

    def logs(self, project_name: str, sink: TextIO, follow: bool = True) -> None:
        """
        Streams the output of every container of a project to a sink.
        """
        LogAggregator(self.engine, self.codec).stream(project_name, sink, follow=follow)

    def convert(self, project: Project, fmt: str = "yaml") -> bytes:
        return ProjectConverter(project).convert(fmt)

    def build(self, project: Project) -> WalkResult:
        """
        Builds the image of every service with a build section.
        """
        names = [name for name in project.service_names() if project.services[name].build is not None]
        result = run_concurrently(names, lambda name: self.builder.build(project, project.services[name]))
        result.raise_for_failure()
        return result

    def pull(self, project: Project) -> WalkResult:
        """
        Pulls the image of every service that is not built locally.
        """
        names = [
            name for name in project.service_names()
            if project.services[name].build is None and project.services[name].image
        ]
        result = run_concurrently(names, lambda name: self._pull(project.services[name].image))
        result.raise_for_failure()
        return result

    def push(self, project: Project) -> WalkResult:
        """
        Pushes the image of every service that is built locally and names an image.
        """
        names = [
            name for name in project.service_names()
            if project.services[name].build is not None and project.services[name].image
        ]
        result = run_concurrently(names, lambda name: self._push(project.services[name].image))
        result.raise_for_failure()
        return result

    def _pull(self, reference: str) -> None:
        event_name = image_event_name(reference)
        self.writer.event(progress.pulling_event(event_name))
        self._follow_stream(event_name, reference, "pull", self.engine.pull_image(reference))
        logger.info("Pulled image %s", reference)
        self.writer.event(progress.pulled_event(event_name))

    def _push(self, reference: str) -> None:
        event_name = image_event_name(reference)
        self.writer.event(progress.Event(id=event_name, text="Pushing"))
        self._follow_stream(event_name, reference, "push", self.engine.push_image(reference))
        logger.info("Pushed image %s", reference)
        self.writer.event(progress.Event(id=event_name, text="Pushed", status=progress.EventStatus.DONE))

    def _follow_stream(self, event_name: str, reference: str, action: str, messages) -> None:
        """
        Relays a pull or push stream as layer events; an error message aborts it.
        """
        try:
            for message in messages:
                if message.error:
                    raise RemoteCallError(f"failed to {action} {reference}: {message.error}")
                event = progress.to_progress_event(reference, message)
                if event is not None:
                    self.writer.event(event)
        except RemoteCallError as e:
            self.writer.event(progress.error_message_event(event_name, str(e)))
            raise
