"""Client-side engine for AI-assisted creation sessions."""

from .cancellation import CancellationController
from .engine import CreationEngine, DraftSink
from .errors import (
    CancellationRequested,
    ChannelParseError,
    CreationHelperError,
    NoActiveSessionError,
    PendingInput,
    RequestFailure,
    RequestInProgressError,
    StalePush,
)
from .image_generation import ImageGenerationTracker
from .sequencer import build_timeline
from .session_store import SessionStore
from .stream import StreamBuffer, StreamCorrelator
from .tool_calls import ToolPairing, pair_tool_calls, tool_display_name

__all__ = [
    "CancellationController",
    "CancellationRequested",
    "ChannelParseError",
    "CreationEngine",
    "CreationHelperError",
    "DraftSink",
    "ImageGenerationTracker",
    "NoActiveSessionError",
    "PendingInput",
    "RequestFailure",
    "RequestInProgressError",
    "SessionStore",
    "StalePush",
    "StreamBuffer",
    "StreamCorrelator",
    "ToolPairing",
    "build_timeline",
    "pair_tool_calls",
    "tool_display_name",
]
