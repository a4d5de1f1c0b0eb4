"""Correlate one request's streamed events into a transient buffer."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from ..events import EventDispatcher, Unlisten, stream_topic
from ..schemas.events import (
    DeltaEvent,
    ErrorEvent,
    ReasoningEvent,
    StreamEvent,
    ToolCallEvent,
    stream_event_adapter,
)
from ..schemas.session import ToolCall
from .errors import ChannelParseError

logger = logging.getLogger(__name__)

STREAM_ERROR_FALLBACK = "Streaming error. Please try again."


@dataclass
class StreamBuffer:
    """Text, reasoning and tool calls accumulated for one request."""

    request_id: str
    content: str = ""
    reasoning: str = ""
    tool_calls: dict[str, ToolCall] = field(default_factory=dict)
    terminated: bool = False

    @property
    def calls(self) -> list[ToolCall]:
        return list(self.tool_calls.values())

    def clear(self) -> None:
        self.content = ""
        self.reasoning = ""
        self.tool_calls.clear()


def _text_of(data: Any) -> str | None:
    if isinstance(data, Mapping):
        text = data.get("text")
        if text:
            return text
    return None


def parse_stream_event(payload: Any) -> StreamEvent | None:
    """Normalize a raw channel payload into a :data:`StreamEvent`.

    Returns ``None`` for events that carry nothing to apply. Raises
    :class:`ChannelParseError` when the payload is malformed.
    """

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ChannelParseError(f"Invalid stream payload: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise ChannelParseError(
            f"Stream payload must be an object, got {type(payload).__name__}"
        )

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        return None
    data = payload.get("data")

    raw: dict[str, Any]
    if event_type == "delta":
        text = _text_of(data)
        if text is None:
            return None
        raw = {"type": "delta", "text": text}
    elif event_type in ("reasoning", "thought"):
        text = _text_of(data)
        if text is None:
            return None
        raw = {"type": "reasoning", "text": text}
    elif event_type in ("toolCall", "tool_call"):
        calls = data if isinstance(data, list) else None
        if calls is None and isinstance(data, Mapping):
            calls = data.get("calls")
        if not calls:
            return None
        raw = {"type": "toolCall", "calls": calls}
    elif event_type == "error":
        message: Any = None
        if isinstance(data, Mapping):
            message = data.get("message") or data.get("error")
        elif isinstance(data, str):
            message = data
        raw = {"type": "error", "message": str(message or STREAM_ERROR_FALLBACK)}
    else:
        logger.debug("Ignoring stream event of type %s", event_type)
        return None

    try:
        return stream_event_adapter.validate_python(raw)
    except ValidationError as exc:
        raise ChannelParseError(
            f"Invalid {event_type} event: {exc.error_count()} validation error(s)"
        ) from exc


class StreamCorrelator:
    """Own the single event subscription of the in-flight request."""

    def __init__(
        self,
        dispatcher: EventDispatcher,
        *,
        on_error: Callable[[str], None] | None = None,
        on_tool_calls: Callable[[list[ToolCall]], None] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._on_error = on_error
        self._on_tool_calls = on_tool_calls
        self._buffer: StreamBuffer | None = None
        self._session_id: str | None = None
        self._unlisten: Unlisten | None = None
        self.dropped_events = 0

    @property
    def buffer(self) -> StreamBuffer | None:
        return self._buffer

    @property
    def request_id(self) -> str | None:
        return self._buffer.request_id if self._buffer is not None else None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_subscribed(self) -> bool:
        return self._unlisten is not None

    def subscribe(self, session_id: str, request_id: str) -> Unlisten:
        """Listen on ``request_id``'s topic, tearing down any prior subscription.

        The returned handle only tears down this request's subscription.
        """

        if self._buffer is not None:
            logger.debug(
                "Tearing down stream for request %s before request %s",
                self._buffer.request_id,
                request_id,
            )
        self.reset()
        self._buffer = StreamBuffer(request_id=request_id)
        self._session_id = session_id
        self._unlisten = self._dispatcher.listen(
            stream_topic(request_id),
            lambda payload: self._handle_payload(request_id, payload),
        )
        logger.debug("Subscribed to stream for request %s", request_id)

        def teardown() -> None:
            if self.request_id == request_id:
                self.reset()

        return teardown

    def unsubscribe(self) -> None:
        """Stop listening; the buffer stays readable until :meth:`reset`."""

        unlisten, self._unlisten = self._unlisten, None
        if unlisten is not None:
            unlisten()

    def reset(self) -> None:
        self.unsubscribe()
        self._buffer = None
        self._session_id = None

    def clear(self) -> None:
        """Empty the in-flight buffers without touching the subscription."""

        if self._buffer is not None:
            self._buffer.clear()

    def _handle_payload(self, request_id: str, payload: Any) -> None:
        buffer = self._buffer
        if buffer is None or buffer.request_id != request_id or buffer.terminated:
            logger.debug("Dropping event for stale request %s", request_id)
            return
        try:
            event = parse_stream_event(payload)
        except ChannelParseError as exc:
            self.dropped_events += 1
            logger.warning(
                "Dropping malformed stream event for request %s: %s", request_id, exc
            )
            return
        if event is not None:
            self.apply(event)

    def apply(self, event: StreamEvent) -> None:
        """Fold one event into the current buffer."""

        buffer = self._buffer
        if buffer is None or buffer.terminated:
            return

        if isinstance(event, DeltaEvent):
            buffer.content += event.text
        elif isinstance(event, ReasoningEvent):
            buffer.reasoning += event.text
        elif isinstance(event, ToolCallEvent):
            for call in event.calls:
                buffer.tool_calls[call.id] = call
            if self._on_tool_calls is not None:
                self._on_tool_calls(list(event.calls))
        elif isinstance(event, ErrorEvent):
            logger.info(
                "Stream for request %s reported an error: %s",
                buffer.request_id,
                event.message,
            )
            buffer.clear()
            buffer.terminated = True
            self.unsubscribe()
            if self._on_error is not None:
                self._on_error(event.message)


__all__ = [
    "STREAM_ERROR_FALLBACK",
    "StreamBuffer",
    "StreamCorrelator",
    "parse_stream_event",
]
