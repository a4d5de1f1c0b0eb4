"""Pair tool calls with their results and label them for display."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from ..schemas.session import Message, ToolCall, ToolResult

UNKNOWN_TOOL_NAME = "Unknown Tool"


class ToolLabel(str, Enum):
    """Display labels for the tools the backend may call.

    Duplicate values become aliases, so ``set_character_description`` still
    resolves by name.
    """

    set_character_name = "Set name"
    set_character_definition = "Set definition"
    set_character_description = "Set definition"
    add_scene = "Add scene"
    update_scene = "Update scene"
    toggle_avatar_gradient = "Toggle gradient"
    set_default_model = "Set model"
    set_system_prompt = "Set prompt"
    use_uploaded_image_as_avatar = "Set avatar"
    use_uploaded_image_as_chat_background = "Set background"
    show_preview = "Show preview"
    request_confirmation = "Ready to save"
    generate_avatar = "Generate avatar"
    list_personas = "List personas"
    upsert_persona = "Save persona"
    use_uploaded_image_as_persona_avatar = "Set persona avatar"
    delete_persona = "Delete persona"
    get_default_persona = "Get default persona"
    list_lorebooks = "List lorebooks"
    upsert_lorebook = "Save lorebook"
    delete_lorebook = "Delete lorebook"
    list_lorebook_entries = "List lorebook entries"
    get_lorebook_entry = "Get lorebook entry"
    upsert_lorebook_entry = "Save lorebook entry"
    delete_lorebook_entry = "Delete lorebook entry"
    create_blank_lorebook_entry = "Create lorebook entry"
    reorder_lorebook_entries = "Reorder lorebook entries"
    list_character_lorebooks = "List character lorebooks"
    set_character_lorebooks = "Set character lorebooks"
    generate_image = "Generate image"


def tool_display_name(tool_name: str) -> str:
    """Return the label for ``tool_name``, falling back to the raw name."""

    try:
        return ToolLabel[tool_name].value
    except KeyError:
        return tool_name


@dataclass(frozen=True)
class ToolPairing:
    call: ToolCall
    result: ToolResult | None

    @property
    def is_placeholder(self) -> bool:
        return self.call.name == UNKNOWN_TOOL_NAME and self.result is not None

    @property
    def label(self) -> str:
        return tool_display_name(self.call.name)


def placeholder_call(tool_call_id: str) -> ToolCall:
    return ToolCall(id=tool_call_id, name=UNKNOWN_TOOL_NAME, arguments={})


def pair_tool_calls(
    tool_calls: Iterable[ToolCall], tool_results: Iterable[ToolResult]
) -> list[ToolPairing]:
    """Return one pairing per tool call id.

    Calls keep their announcement order; a later call or result with an id
    already seen replaces the earlier one. Results whose call never arrived
    are appended after the calls with a placeholder call.
    """

    calls: dict[str, ToolCall] = {}
    for call in tool_calls:
        calls[call.id] = call

    results: dict[str, ToolResult] = {}
    for result in tool_results:
        results[result.tool_call_id] = result

    pairings = [ToolPairing(call, results.get(call_id)) for call_id, call in calls.items()]
    for call_id, result in results.items():
        if call_id not in calls:
            pairings.append(ToolPairing(placeholder_call(call_id), result))
    return pairings


def pair_message_tools(message: Message) -> list[ToolPairing]:
    return pair_tool_calls(message.tool_calls, message.tool_results)


__all__ = [
    "ToolLabel",
    "ToolPairing",
    "UNKNOWN_TOOL_NAME",
    "pair_message_tools",
    "pair_tool_calls",
    "placeholder_call",
    "tool_display_name",
]
