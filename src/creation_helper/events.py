"""Process-wide, topic-keyed dispatcher for backend push events."""

from __future__ import annotations

import itertools
import logging
from functools import lru_cache
from typing import Any, Callable

from .backend import CreationBackendClient

logger = logging.getLogger(__name__)

STREAM_TOPIC_PREFIX = "api-normalized://"
SESSION_UPDATE_TOPIC = "creation-helper-update"

Listener = Callable[[Any], None]
Unlisten = Callable[[], None]


def stream_topic(request_id: str) -> str:
    """Return the topic carrying streamed events for one request."""

    return f"{STREAM_TOPIC_PREFIX}{request_id}"


class DispatcherClosedError(RuntimeError):
    """Raised when registering a listener on a closed dispatcher."""


class EventDispatcher:
    """Deliver payloads to listeners registered under a topic name.

    Listeners run synchronously inside :meth:`emit` in registration order. A
    failing listener is logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, dict[int, Listener]] = {}
        self._tokens = itertools.count()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        """Drop every listener and refuse new registrations."""

        self._open = False
        self._listeners.clear()

    def listen(self, topic: str, listener: Listener) -> Unlisten:
        """Register ``listener`` for ``topic``; the returned callable removes it."""

        if not self._open:
            raise DispatcherClosedError("Event dispatcher is closed")
        token = next(self._tokens)
        self._listeners.setdefault(topic, {})[token] = listener

        def unlisten() -> None:
            listeners = self._listeners.get(topic)
            if listeners is None:
                return
            listeners.pop(token, None)
            if not listeners:
                self._listeners.pop(topic, None)

        return unlisten

    def emit(self, topic: str, payload: Any) -> int:
        """Deliver ``payload`` to the current listeners of ``topic``."""

        listeners = list(self._listeners.get(topic, {}).values())
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for topic %s failed", topic)
        return len(listeners)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, {}))


@lru_cache(maxsize=1)
def get_dispatcher() -> EventDispatcher:
    """Return the process-wide dispatcher."""

    return EventDispatcher()


async def pump_events(
    client: CreationBackendClient, dispatcher: EventDispatcher
) -> None:
    """Forward the backend's event stream into ``dispatcher`` until it ends."""

    async for event in client.stream_events():
        if not event.data:
            continue
        delivered = dispatcher.emit(event.event, event.data)
        if not delivered:
            logger.debug("No listener for topic %s; event dropped", event.event)


__all__ = [
    "DispatcherClosedError",
    "EventDispatcher",
    "Listener",
    "SESSION_UPDATE_TOPIC",
    "STREAM_TOPIC_PREFIX",
    "Unlisten",
    "get_dispatcher",
    "pump_events",
    "stream_topic",
]
