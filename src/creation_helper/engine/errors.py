"""Errors raised by the creation session engine."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..schemas.session import ImageAttachment, Reference


@dataclass(frozen=True)
class PendingInput:
    """What the user had typed and attached when a turn was submitted."""

    text: str
    attachments: list[ImageAttachment] = field(default_factory=list)
    references: list[Reference] = field(default_factory=list)


class CreationHelperError(RuntimeError):
    """Base error for engine failures."""


class ChannelParseError(CreationHelperError):
    """Raised when a single streamed event cannot be decoded."""


class RequestFailure(CreationHelperError):
    """Raised when a send or regenerate round trip is rejected."""

    def __init__(self, message: str, pending_input: PendingInput | None = None):
        super().__init__(message)
        self.message = message
        self.pending_input = pending_input


class CancellationRequested(CreationHelperError):
    """Raised when the user aborted the round trip that was awaiting."""

    def __init__(
        self,
        message: str = "Generation cancelled.",
        pending_input: PendingInput | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.pending_input = pending_input


class StalePush(CreationHelperError):
    """Raised when a session push targets a session that is not active."""


class RequestInProgressError(CreationHelperError):
    """Raised when a second request is started while one is outstanding."""


class NoActiveSessionError(CreationHelperError):
    """Raised when an operation needs a started session."""


__all__ = [
    "CancellationRequested",
    "ChannelParseError",
    "CreationHelperError",
    "NoActiveSessionError",
    "PendingInput",
    "RequestFailure",
    "RequestInProgressError",
    "StalePush",
]
