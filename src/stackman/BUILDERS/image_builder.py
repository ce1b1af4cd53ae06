"""
Builders turning a service's build section into an image on the engine.
"""
import logging
import os

from ..ENGINE.base import ContainerEngine
from ..errors import ConfigurationError, RemoteCallError
from ..MODELS.project import Project
from ..MODELS.service_definition import ServiceDefinition
from ..MANAGERS import progress
from ..MANAGERS.progress import Event, EventStatus, ProgressWriter

logger = logging.getLogger(__name__)


class ImageBuilder:
    """
    Builds service images through the engine and reports the build output as progress.
    """
    def __init__(self, engine: ContainerEngine, writer: ProgressWriter):
        """
        Initializes the ImageBuilder.

        :param engine: The container engine performing the build.
        :param writer: Where build output is reported.
        """
        self.engine = engine
        self.writer = writer

    def build(self, project: Project, service: ServiceDefinition) -> str:
        """
        Builds the image of a service.

        :param project: The project, whose working directory anchors the build context.
        :param service: A service with a build section.
        :return: The reference of the built image.
        :raises ConfigurationError: If the service has nothing to build.
        :raises RemoteCallError: If the build fails.
        """
        if service.build is None:
            raise ConfigurationError(f"Service {service.name} has no build section")

        context = service.build.context
        if not os.path.isabs(context):
            context = os.path.normpath(os.path.join(project.working_dir, context))
        tag = service.image_name(project.name)
        event_name = f"Service {service.name}"
        self.writer.event(progress.building_event(event_name))

        try:
            for message in self.engine.build_image(context, tag, service.build.dockerfile, service.build.args):
                if message.error:
                    raise RemoteCallError(f"failed to build {service.name}: {message.error}")
                if message.stream and message.stream.strip():
                    self.writer.event(Event(
                        id=event_name,
                        text="Building",
                        status=EventStatus.WORKING,
                        status_text=message.stream.strip(),
                    ))
        except RemoteCallError as e:
            self.writer.event(progress.error_message_event(event_name, str(e)))
            raise

        logger.info("Built image %s for service %s", tag, service.name)
        self.writer.event(progress.built_event(event_name))
        return tag
