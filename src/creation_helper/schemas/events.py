"""Pydantic models for streamed events and out-of-band session pushes."""

from __future__ import annotations

from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .session import CamelModel, DraftCharacter, Message, SessionStatus, ToolCall


class DeltaEvent(BaseModel):
    type: Literal["delta"] = "delta"
    text: str


class ReasoningEvent(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallEvent(BaseModel):
    type: Literal["toolCall"] = "toolCall"
    calls: List[ToolCall]


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[
    Union[DeltaEvent, ReasoningEvent, ToolCallEvent, ErrorEvent],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


class SessionUpdate(CamelModel):
    """Broadcast pushed by the backend whenever a session changes."""

    session_id: str
    draft: DraftCharacter
    status: SessionStatus
    messages: List[Message]


__all__ = [
    "DeltaEvent",
    "ErrorEvent",
    "ReasoningEvent",
    "SessionUpdate",
    "StreamEvent",
    "ToolCallEvent",
    "stream_event_adapter",
]
