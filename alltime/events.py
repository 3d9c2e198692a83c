from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union

from .constants import LOGGER


@dataclass(frozen=True)
class ForceSignOut:
    reason: str


@dataclass(frozen=True)
class SessionRefreshed:
    pass


@dataclass(frozen=True)
class ConnectionExpiredEvent:
    provider: str
    message: str | None = None


SessionEvent = Union[ForceSignOut, SessionRefreshed, ConnectionExpiredEvent]
Subscriber = Callable[[SessionEvent], None]


class EventBus:
    """Delivers session events to the subscribers the application registered.

    Subscribers run synchronously in registration order. One that raises is
    logged and skipped so the remaining subscribers still see the event.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: SessionEvent) -> None:
        LOGGER.info("Publishing session event %s", event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Session event subscriber %r failed for %s", callback, event)

