"""Merge persisted, streaming and synthetic entries into one timeline."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..schemas.session import ImageGenerationEntry, Message, now_ms
from .stream import StreamBuffer

STREAMING_MESSAGE_ID = "__streaming__"


def streaming_message(buffer: StreamBuffer, created_at: int) -> Message:
    return Message(
        id=STREAMING_MESSAGE_ID,
        role="assistant",
        content=buffer.content,
        tool_calls=buffer.calls,
        created_at=created_at,
    )


def image_generation_message(entry: ImageGenerationEntry) -> Message:
    return Message(id=entry.id, role="system", content="", created_at=entry.created_at)


def build_timeline(
    messages: Sequence[Message],
    streaming: StreamBuffer | None = None,
    image_generations: Iterable[ImageGenerationEntry] = (),
    *,
    now: int | None = None,
) -> list[Message]:
    """Return messages ordered by ``created_at``, ties kept in insertion order."""

    timeline = list(messages)
    if streaming is not None:
        timeline.append(
            streaming_message(streaming, now if now is not None else now_ms())
        )
    timeline.extend(image_generation_message(entry) for entry in image_generations)

    # sorted() is stable, so equal timestamps keep their insertion index order.
    return sorted(timeline, key=lambda message: message.created_at)


__all__ = [
    "STREAMING_MESSAGE_ID",
    "build_timeline",
    "image_generation_message",
    "streaming_message",
]
