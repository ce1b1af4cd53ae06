"""
Progress reporting shared by all concurrent reconciliation work.
"""
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..MODELS.runtime import JSONMessage


class EventStatus(str, Enum):
    """
    Lifecycle of a progress event. Skipped work is not an error.
    """
    WORKING = "working"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"


class Event(BaseModel):
    """
    One transition of a named event, e.g. "Container demo_web_1" -> Created.
    Immutable once built.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    text: str = ""
    status: EventStatus = EventStatus.WORKING
    status_text: str = ""

    @property
    def finished(self) -> bool:
        return self.status != EventStatus.WORKING


Listener = Callable[[Event], None]


class ProgressWriter:
    """
    Keeps the latest state of every named event.

    Safe for concurrent writers. A producer's transitions for one event are
    stored in the order it makes them; different events are not ordered
    relative to each other beyond the order they were first seen.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._events: Dict[str, Event] = {}
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        """
        Registers a callback run (outside the lock) after every event.
        """
        with self._lock:
            self._listeners.append(listener)

    def event(self, event: Event) -> None:
        with self._lock:
            self._events[event.id] = event
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    def events(self) -> List[Event]:
        """
        Snapshot of the latest state of every event, in first-seen order.
        """
        with self._lock:
            return list(self._events.values())

    def get(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return self._events.get(event_id)

    def has_errors(self) -> bool:
        return any(e.status == EventStatus.ERROR for e in self.events())


class NullProgressWriter(ProgressWriter):
    """
    Drops everything; used when nobody watches.
    """
    def event(self, event: Event) -> None:
        pass


def creating_event(event_id: str) -> Event:
    return Event(id=event_id, text="Creating")


def created_event(event_id: str) -> Event:
    return Event(id=event_id, text="Created", status=EventStatus.DONE)


def starting_event(event_id: str) -> Event:
    return Event(id=event_id, text="Starting")


def started_event(event_id: str) -> Event:
    return Event(id=event_id, text="Started", status=EventStatus.DONE)


def running_event(event_id: str) -> Event:
    return Event(id=event_id, text="Running", status=EventStatus.DONE)


def recreating_event(event_id: str) -> Event:
    return Event(id=event_id, text="Recreating")


def stopping_event(event_id: str) -> Event:
    return Event(id=event_id, text="Stopping")


def stopped_event(event_id: str) -> Event:
    return Event(id=event_id, text="Stopped", status=EventStatus.DONE)


def removing_event(event_id: str) -> Event:
    return Event(id=event_id, text="Removing")


def removed_event(event_id: str) -> Event:
    return Event(id=event_id, text="Removed", status=EventStatus.DONE)


def pulling_event(event_id: str) -> Event:
    return Event(id=event_id, text="Pulling")


def pulled_event(event_id: str) -> Event:
    return Event(id=event_id, text="Pulled", status=EventStatus.DONE)


def building_event(event_id: str) -> Event:
    return Event(id=event_id, text="Building")


def built_event(event_id: str) -> Event:
    return Event(id=event_id, text="Built", status=EventStatus.DONE)


def error_event(event_id: str) -> Event:
    return Event(id=event_id, text="Error", status=EventStatus.ERROR)


def error_message_event(event_id: str, message: str) -> Event:
    return Event(id=event_id, text="Error", status=EventStatus.ERROR, status_text=message)


def skipped_event(event_id: str, reason: str = "skipped due to earlier failure") -> Event:
    return Event(id=event_id, text="Skipped", status=EventStatus.SKIPPED, status_text=reason)


DONE_STATUSES = {"Pull complete", "Already exists", "Pushed", "Layer already exists"}


def to_progress_event(prefix: str, message: JSONMessage) -> Optional[Event]:
    """
    Turns one pull/push stream message into a layer event.
    Messages without a layer id carry no per-layer progress and are dropped.
    """
    if not message.id:
        return None
    status = EventStatus.WORKING
    text = ""
    if message.status in DONE_STATUSES:
        status = EventStatus.DONE
    if message.error:
        status = EventStatus.ERROR
        text = message.error
    if message.progress:
        text = message.progress
    return Event(
        id=f"{prefix}: {message.id}",
        text=message.status or "",
        status=status,
        status_text=text,
    )
