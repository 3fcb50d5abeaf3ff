from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Union

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Closed set of notifications emitted while resolving and loading tiles."""

    TILE_REQUEST = "tile_request"
    TILE_LOADED = "tile_loaded"
    WARNING = "warning"
    ERROR = "error"


class _Event:
    type: EventType

    def as_dict(self) -> Dict[str, Any]:
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        payload["type"] = self.type.value
        return payload


@dataclass(frozen=True)
class TileRequestEvent(_Event):
    url: str
    coordinate: str
    mode: str
    type: EventType = field(default=EventType.TILE_REQUEST, init=False)


@dataclass(frozen=True)
class TileLoadedEvent(_Event):
    coordinate: str
    byte_size: int
    mode: str
    type: EventType = field(default=EventType.TILE_LOADED, init=False)


@dataclass(frozen=True)
class WarningEvent(_Event):
    message: str
    value: float | None = None
    axis: str | None = None
    type: EventType = field(default=EventType.WARNING, init=False)


@dataclass(frozen=True)
class ErrorEvent(_Event):
    message: str
    url: str | None = None
    coordinate: str | None = None
    type: EventType = field(default=EventType.ERROR, init=False)


TileEvent = Union[TileRequestEvent, TileLoadedEvent, WarningEvent, ErrorEvent]
EventSubscriber = Callable[[TileEvent], None]


class EventBus:
    """Fan out tile events to any number of subscribers.

    Delivery is fire-and-forget: a subscriber that raises is logged and skipped
    so that sinks can never influence tile resolution or loading.
    """

    def __init__(self) -> None:
        self._subscribers: List[EventSubscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: EventSubscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            self.unsubscribe(subscriber)

        return unsubscribe

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def emit(self, event: TileEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("Tile event subscriber %r failed on %s", subscriber, event.type.value)


def log_event(event: TileEvent) -> None:
    """Subscriber that mirrors tile events into the standard logging tree."""

    if isinstance(event, WarningEvent):
        logger.warning("%s (%s)", event.message, event.as_dict())
    elif isinstance(event, ErrorEvent):
        logger.error("%s (url=%s, tile=%s)", event.message, event.url, event.coordinate)
    elif isinstance(event, TileRequestEvent):
        logger.debug("Requesting tile %s via %s: %s", event.coordinate, event.mode, event.url)
    elif isinstance(event, TileLoadedEvent):
        logger.debug("Loaded tile %s (%d bytes, %s)", event.coordinate, event.byte_size, event.mode)
