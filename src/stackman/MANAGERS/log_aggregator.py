"""
Log aggregation for the containers of a project.
"""
import logging
import threading
from typing import Dict, Iterable, TextIO

from ..ENGINE.base import ContainerEngine
from ..LABELS.codec import LabelCodec
from ..RUNNERS.executor import run_concurrently
from ..UTILS.stdcopy import demultiplex

logger = logging.getLogger(__name__)


class LogConsumer:
    """
    Writes complete lines from many containers to one sink, each prefixed
    with the service it came from.
    """
    def __init__(self, sink: TextIO, width: int = 15):
        self.sink = sink
        self.width = width
        self._lock = threading.Lock()

    def write_line(self, service: str, line: str) -> None:
        with self._lock:
            self.sink.write(f"{service:{self.width}} | {line}\n")
            flush = getattr(self.sink, "flush", None)
            if flush:
                flush()

    def consume(self, service: str, chunks: Iterable[bytes]) -> None:
        """
        Splits a byte stream into lines; a trailing partial line is written at the end.
        """
        pending = b""
        for chunk in chunks:
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                self.write_line(service, line.decode("utf-8", errors="replace").rstrip("\r"))
        if pending:
            self.write_line(service, pending.decode("utf-8", errors="replace"))


class LogAggregator:
    """
    Streams the output of every container of a project, concurrently.
    """
    def __init__(self, engine: ContainerEngine, codec: LabelCodec):
        """
        Initializes the log aggregator.

        :param engine: The container engine.
        :param codec: Codec for the project and service labels.
        """
        self.engine = engine
        self.codec = codec

    def stream(self, project_name: str, sink: TextIO, follow: bool = True) -> None:
        """
        Copies the logs of the project's containers into a sink until every stream ends.

        :param project_name: The project whose containers to follow.
        :param sink: Text stream to write prefixed lines to.
        :param follow: Keep streaming new output.
        :raises PartialFailureError: If some streams failed while others finished.
        """
        containers = {
            c.id: c for c in self.engine.list_containers([self.codec.project_filter(project_name)], all=not follow)
        }
        consumer = LogConsumer(sink, width=max([15] + [len(self._service(c.labels)) for c in containers.values()]))
        logger.debug("Streaming logs of %d containers of %s", len(containers), project_name)

        def copy(container_id: str):
            details = self.engine.inspect_container(container_id)
            service = self._service(details.labels) or details.name
            raw = self.engine.container_logs(container_id, follow=follow)
            if details.tty:
                consumer.consume(service, raw)
            else:
                self._consume_multiplexed(consumer, service, raw)

        run_concurrently(containers, copy).raise_for_failure()

    def _service(self, labels: Dict[str, str]) -> str:
        return labels.get(self.codec.keys.service, "")

    def _consume_multiplexed(self, consumer: LogConsumer, service: str, raw: Iterable[bytes]) -> None:
        # Keep stdout and stderr lines separate so neither splits the other's partial lines.
        streams: Dict[int, bytes] = {}
        for stream_id, payload in demultiplex(raw):
            pending = streams.get(stream_id, b"") + payload
            *lines, pending = pending.split(b"\n")
            streams[stream_id] = pending
            for line in lines:
                consumer.write_line(service, line.decode("utf-8", errors="replace").rstrip("\r"))
        for pending in streams.values():
            if pending:
                consumer.write_line(service, pending.decode("utf-8", errors="replace"))
