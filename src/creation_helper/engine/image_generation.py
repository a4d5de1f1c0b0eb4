"""Track ``generate_image`` tool calls from announcement to outcome."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from ..schemas.session import (
    ImageGenerationEntry,
    Message,
    ToolCall,
    ToolResult,
    now_ms,
)

logger = logging.getLogger(__name__)

IMAGE_GENERATION_TOOL = "generate_image"
ENTRY_ID_PREFIX = "__image_generation__"


def image_generation_entry_id(tool_call_id: str) -> str:
    return f"{ENTRY_ID_PREFIX}{tool_call_id}"


def extract_image_id(result: Any) -> str | None:
    """Pull the generated image id out of a tool result payload."""

    if not isinstance(result, Mapping):
        return None
    for key in ("image_id", "imageId"):
        value = result.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class ImageGenerationTracker:
    """Per tool call state machine: ``pending -> done | error``.

    Entries are keyed by tool call id and only ever added or moved to a
    terminal state, so feeding the same calls and results again is a no-op.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._entries: dict[str, ImageGenerationEntry] = {}

    @property
    def entries(self) -> list[ImageGenerationEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def for_call(self, tool_call_id: str) -> ImageGenerationEntry | None:
        return self._entries.get(tool_call_id)

    def get(self, entry_id: str) -> ImageGenerationEntry | None:
        if not entry_id.startswith(ENTRY_ID_PREFIX):
            return None
        return self._entries.get(entry_id[len(ENTRY_ID_PREFIX) :])

    def reset(self) -> None:
        self._entries.clear()

    def observe_calls(
        self, calls: Iterable[ToolCall], *, created_at: int | None = None
    ) -> bool:
        """Open a pending entry for every unseen image generation call."""

        changed = False
        for call in calls:
            if call.name != IMAGE_GENERATION_TOOL or call.id in self._entries:
                continue
            self._entries[call.id] = ImageGenerationEntry(
                id=image_generation_entry_id(call.id),
                tool_call_id=call.id,
                status="pending",
                created_at=created_at if created_at is not None else self._clock(),
            )
            logger.debug("Image generation %s pending", call.id)
            changed = True
        return changed

    def observe_result(self, result: ToolResult, *, created_at: int) -> bool:
        """Move the entry for ``result`` to its terminal state."""

        existing = self._entries.get(result.tool_call_id)
        if existing is not None and existing.is_terminal:
            return False

        status = "done" if result.success else "error"
        image_id = extract_image_id(result.result)
        if existing is not None:
            self._entries[result.tool_call_id] = existing.model_copy(
                update={"status": status, "image_id": image_id}
            )
        else:
            self._entries[result.tool_call_id] = ImageGenerationEntry(
                id=image_generation_entry_id(result.tool_call_id),
                tool_call_id=result.tool_call_id,
                status=status,
                image_id=image_id,
                created_at=created_at,
            )
        logger.debug("Image generation %s finished: %s", result.tool_call_id, status)
        return True

    def observe_messages(self, messages: Iterable[Message]) -> bool:
        """Derive entries from persisted messages; returns whether anything changed.

        Results are matched against calls from every message, so a result
        persisted before its call still starts terminal and a second pass over
        the same messages is a no-op.
        """

        messages = list(messages)
        call_names = {
            call.id: call.name for message in messages for call in message.tool_calls
        }

        changed = False
        for message in messages:
            for result in message.tool_results:
                if self._is_generation(result, call_names.get(result.tool_call_id)):
                    if self.observe_result(result, created_at=message.created_at):
                        changed = True
            if self.observe_calls(message.tool_calls, created_at=message.created_at):
                changed = True
        return changed

    def prune(self, messages: Iterable[Message]) -> list[str]:
        """Drop pending entries no persisted message has a call or result for.

        Returns the tool call ids of the dropped entries.
        """

        referenced: set[str] = set()
        for message in messages:
            referenced.update(call.id for call in message.tool_calls)
            referenced.update(result.tool_call_id for result in message.tool_results)

        dropped = [
            call_id
            for call_id, entry in self._entries.items()
            if not entry.is_terminal and call_id not in referenced
        ]
        for call_id in dropped:
            del self._entries[call_id]
            logger.debug("Image generation %s dropped; its request never persisted", call_id)
        return dropped

    def _is_generation(self, result: ToolResult, call_name: str | None) -> bool:
        if result.tool_call_id in self._entries:
            return True
        if call_name is not None:
            return call_name == IMAGE_GENERATION_TOOL
        # No call anywhere: only a payload carrying an image id identifies it.
        return extract_image_id(result.result) is not None


__all__ = [
    "ENTRY_ID_PREFIX",
    "IMAGE_GENERATION_TOOL",
    "ImageGenerationTracker",
    "extract_image_id",
    "image_generation_entry_id",
]
