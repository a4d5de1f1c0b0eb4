"""Pydantic models for creation helper sessions."""

from __future__ import annotations

import time
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MessageRole = Literal["user", "assistant", "system"]
SessionStatus = Literal["active", "previewShown", "completed", "cancelled"]
CreationGoal = Literal["character", "persona", "lorebook"]
CreationMode = Literal["create", "edit"]
ImageGenerationStatus = Literal["pending", "done", "error"]
ReferenceType = Literal["character", "persona"]


def now_ms() -> int:
    """Return the current wall clock in epoch milliseconds."""

    return int(time.time() * 1000)


class CamelModel(BaseModel):
    """Base model speaking the backend's camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ToolCall(CamelModel):
    """A structured, named request emitted by the assistant mid-turn."""

    id: str
    name: str
    arguments: Any = None
    raw_arguments: Optional[str] = None


class ToolResult(CamelModel):
    """Outcome of a tool call; ``tool_call_id`` may not match any call."""

    tool_call_id: str
    result: Any = None
    success: bool


class Message(CamelModel):
    """Represents a single message in the creation conversation."""

    id: str
    role: MessageRole
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_results: List[ToolResult] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)


class DraftScene(CamelModel):
    id: str
    content: str
    direction: Optional[str] = None


class DraftCharacter(CamelModel):
    """The in-progress entity. Unknown fields from the backend are preserved."""

    name: Optional[str] = None
    definition: Optional[str] = None
    description: Optional[str] = None
    scenes: List[DraftScene] = Field(default_factory=list)
    default_scene_id: Optional[str] = None
    avatar_path: Optional[str] = None
    background_image_path: Optional[str] = None
    disable_avatar_gradient: bool = False
    default_model_id: Optional[str] = None
    prompt_template_id: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )


class Session(CamelModel):
    """Canonical record of one creation conversation."""

    id: str
    messages: List[Message] = Field(default_factory=list)
    draft: DraftCharacter = Field(default_factory=DraftCharacter)
    draft_history: List[DraftCharacter] = Field(default_factory=list)
    creation_goal: CreationGoal = "character"
    creation_mode: CreationMode = "create"
    target_type: Optional[CreationGoal] = None
    target_id: Optional[str] = None
    status: SessionStatus = "active"
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def last_assistant_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message
        return None


class ImageGenerationEntry(CamelModel):
    """Progress of one ``generate_image`` tool call."""

    id: str
    tool_call_id: str
    status: ImageGenerationStatus
    image_id: Optional[str] = None
    created_at: int

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != "pending"


class UploadedImage(CamelModel):
    """Image stored by the backend for a session (base64 or data URL)."""

    id: str
    data: str
    mime_type: str


class ImageAttachment(UploadedImage):
    """Image the user attached to an outgoing message."""

    filename: Optional[str] = None

    def to_upload(self) -> dict[str, Any]:
        return UploadedImage(
            id=self.id, data=self.data, mime_type=self.mime_type
        ).to_payload()


class Reference(CamelModel):
    """An existing entity attached to a message for context."""

    id: str
    type: ReferenceType
    name: str
    description: Optional[str] = None


__all__ = [
    "CreationGoal",
    "CreationMode",
    "DraftCharacter",
    "DraftScene",
    "ImageAttachment",
    "ImageGenerationEntry",
    "ImageGenerationStatus",
    "Message",
    "MessageRole",
    "Reference",
    "Session",
    "SessionStatus",
    "ToolCall",
    "ToolResult",
    "UploadedImage",
    "now_ms",
]
