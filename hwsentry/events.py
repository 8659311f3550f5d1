from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Callable, Generic, TypeVar

from hwsentry.models import SystemSnapshot
from hwsentry.status import StatusEvent

EventT = TypeVar("EventT")


@dataclass(frozen=True)
class SnapshotUpdated:
    snapshot: SystemSnapshot


@dataclass(frozen=True)
class StatusChanged:
    event: StatusEvent


class EventChannel(Generic[EventT]):
    """Synchronous fan-out of one event type to explicit subscribers.

    Handlers run on the publishing thread. A failing handler is logged and
    does not prevent delivery to the others.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.logger = logging.getLogger(f"{self.__class__.__name__}.{name}")
        self._lock = threading.Lock()
        self._handlers: list[Callable[[EventT], None]] = []

    def subscribe(self, handler: Callable[[EventT], None]) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: Callable[[EventT], None]) -> bool:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                return False
        return True

    def publish(self, event: EventT) -> int:
        with self._lock:
            handlers = list(self._handlers)
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception("Subscriber %r failed.", handler)
                continue
            delivered += 1
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)


class MonitorEvents:
    def __init__(self) -> None:
        self.snapshot_updated: EventChannel[SnapshotUpdated] = EventChannel("snapshot_updated")
        self.status_changed: EventChannel[StatusChanged] = EventChannel("status_changed")
