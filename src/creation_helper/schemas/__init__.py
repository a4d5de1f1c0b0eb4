"""Data models shared by the engine and the backend client."""

from .events import SessionUpdate, StreamEvent
from .session import (
    DraftCharacter,
    ImageAttachment,
    ImageGenerationEntry,
    Message,
    Reference,
    Session,
    ToolCall,
    ToolResult,
    UploadedImage,
)

__all__ = [
    "DraftCharacter",
    "ImageAttachment",
    "ImageGenerationEntry",
    "Message",
    "Reference",
    "Session",
    "SessionUpdate",
    "StreamEvent",
    "ToolCall",
    "ToolResult",
    "UploadedImage",
]
