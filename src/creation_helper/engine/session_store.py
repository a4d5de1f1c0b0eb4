"""Canonical session record and the operations that mutate it."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Mapping, Protocol, Sequence

from pydantic import ValidationError

from ..backend import BackendError
from ..schemas.events import SessionUpdate
from ..schemas.session import (
    CreationGoal,
    CreationMode,
    DraftCharacter,
    ImageAttachment,
    Message,
    Reference,
    Session,
)
from .cancellation import CancellationController
from .composer import compose_message
from .errors import (
    CancellationRequested,
    NoActiveSessionError,
    PendingInput,
    RequestFailure,
    RequestInProgressError,
    StalePush,
)

logger = logging.getLogger(__name__)

CANCELLED_NOTICE = "Generation cancelled."

_FINISHED = frozenset({"completed", "cancelled"})

_GREETINGS: dict[str, str] = {
    "character": "Hi! I want to create a new character.",
    "persona": "Hi! I want to create a new persona.",
    "lorebook": "Hi! I want to create a new lorebook.",
}
_GENERIC_GREETING = "Hi! I want to create something new."


def greeting_for(goal: CreationGoal, *, smart_tool_selection: bool = True) -> str:
    """Return the synthesized opening turn for a new session."""

    if not smart_tool_selection:
        return _GENERIC_GREETING
    return _GREETINGS.get(goal, _GREETINGS["character"])


class SessionBackend(Protocol):
    async def start(
        self,
        goal: CreationGoal = "character",
        *,
        mode: CreationMode | None = None,
        target_type: CreationGoal | None = None,
        target_id: str | None = None,
    ) -> Session:
        ...

    async def send_message(
        self,
        session_id: str,
        message: str,
        uploaded_images: Sequence[ImageAttachment] | None = None,
        *,
        request_id: str | None = None,
    ) -> Session:
        ...

    async def regenerate(
        self, session_id: str, *, request_id: str | None = None
    ) -> Session:
        ...

    async def complete(self, session_id: str) -> DraftCharacter:
        ...

    async def cancel(self, session_id: str) -> None:
        ...


def _describe(exc: Exception, fallback: str) -> str:
    if isinstance(exc, BackendError):
        detail = exc.detail
        if isinstance(detail, Mapping):
            detail = (
                detail.get("message")
                or detail.get("error")
                or detail.get("detail")
                or detail
            )
        text = str(detail).strip()
        return text or fallback
    return fallback


class SessionStore:
    """Single writer of the active session.

    Optimistic changes are applied synchronously before each round trip and
    replaced by the backend's canonical session once it resolves. Readers pull
    :attr:`session`; nothing is pushed to them.
    """

    def __init__(
        self,
        backend: SessionBackend,
        cancellation: CancellationController,
        *,
        draft_history_limit: int | None = None,
        smart_tool_selection: bool = True,
    ) -> None:
        self._backend = backend
        self._cancellation = cancellation
        self._draft_history_limit = draft_history_limit
        self._smart_tool_selection = smart_tool_selection
        self._session: Session | None = None
        self._in_flight: str | None = None
        self.error: str | None = None
        self.notice: str | None = None
        self.preview_requested = False
        self.confirmation_requested = False

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_sending(self) -> bool:
        return self._in_flight is not None

    def require_session(self) -> Session:
        if self._session is None:
            raise NoActiveSessionError("No creation session has been started")
        return self._session

    def reset(self) -> None:
        """Forget the active session and every UI flag derived from it."""

        self._session = None
        self._in_flight = None
        self.error = None
        self.notice = None
        self.preview_requested = False
        self.confirmation_requested = False

    def load(self, session: Session) -> Session:
        """Adopt an existing session, e.g. one resumed from the backend."""

        self._ensure_idle()
        self.reset()
        self._session = self._trim_history(session)
        return self._session

    async def start(
        self,
        goal: CreationGoal = "character",
        *,
        mode: CreationMode | None = None,
        target_type: CreationGoal | None = None,
        target_id: str | None = None,
    ) -> Session:
        """Create a session and run its greeting turn."""

        self._ensure_idle()
        self.reset()
        try:
            session = await self._backend.start(
                goal, mode=mode, target_type=target_type, target_id=target_id
            )
        except (BackendError, ValidationError) as exc:
            logger.warning("Failed to start creation session: %s", exc)
            self.error = "Failed to start the creation helper. Please try again."
            raise RequestFailure(self.error) from exc

        self._session = self._trim_history(session)
        logger.info("Started %s creation session %s", goal, session.id)

        greeting = greeting_for(goal, smart_tool_selection=self._smart_tool_selection)
        try:
            return await self.send(greeting)
        except RequestFailure as exc:
            self.error = "Failed to start the creation helper. Please try again."
            raise RequestFailure(self.error) from exc

    async def send(
        self,
        text: str,
        attachments: Sequence[ImageAttachment] | None = None,
        references: Sequence[Reference] | None = None,
    ) -> Session:
        """Send one user turn.

        The user message appears in :attr:`session` before this coroutine
        first suspends. On failure it is removed again and the inputs are
        handed back on the raised error's ``pending_input``.
        """

        session = self.require_session()
        self._ensure_idle()
        attachment_list = list(attachments or ())
        reference_list = list(references or ())
        message = compose_message(text, attachment_list, reference_list)
        pending = PendingInput(
            text=text, attachments=attachment_list, references=reference_list
        )

        optimistic = Message(id=str(uuid.uuid4()), role="user", content=message)
        self._session = session.model_copy(
            update={"messages": [*session.messages, optimistic]}
        )
        self.error = None
        self.notice = None

        request_id = self._begin(session.id)
        try:
            updated = await self._backend.send_message(
                session.id,
                message,
                attachment_list or None,
                request_id=request_id,
            )
        except (BackendError, ValidationError) as exc:
            self._remove_message(session.id, optimistic.id)
            raise self._request_error(
                request_id, exc, "Failed to send message. Please try again.", pending
            ) from exc
        except asyncio.CancelledError:
            self._remove_message(session.id, optimistic.id)
            raise
        finally:
            self._finish(request_id)

        if self._cancellation.was_aborted(request_id):
            self._remove_message(session.id, optimistic.id)
            raise self._cancelled(request_id, pending)
        return self._accept(updated)

    async def regenerate(self) -> Session:
        """Drop the latest assistant turn, revert its draft change and retry it."""

        session = self.require_session()
        self._ensure_idle()
        target = session.last_assistant_message()
        if target is None:
            logger.debug("Session %s has no assistant message to regenerate", session.id)
            return session

        history = list(session.draft_history)
        draft = history.pop() if history else session.draft
        self._session = session.model_copy(
            update={
                "messages": [m for m in session.messages if m.id != target.id],
                "draft": draft,
                "draft_history": history,
            }
        )
        self.error = None
        self.notice = None

        request_id = self._begin(session.id)
        try:
            updated = await self._backend.regenerate(session.id, request_id=request_id)
        except (BackendError, ValidationError) as exc:
            # The removed message and reverted draft are left as they are.
            raise self._request_error(
                request_id, exc, "Failed to regenerate. Please try again."
            ) from exc
        finally:
            self._finish(request_id)

        if self._cancellation.was_aborted(request_id):
            raise self._cancelled(request_id)
        return self._accept(updated)

    async def complete(self) -> DraftCharacter:
        """Finish the session and return the draft to promote."""

        session = self.require_session()
        self._ensure_idle()
        try:
            draft = await self._backend.complete(session.id)
        except (BackendError, ValidationError) as exc:
            logger.warning("Failed to complete session %s: %s", session.id, exc)
            self.error = _describe(exc, "Failed to save character.")
            raise RequestFailure(self.error) from exc

        if self._session is not None and self._session.id == session.id:
            self._session = self._session.model_copy(update={"status": "completed"})
        logger.info("Completed creation session %s", session.id)
        return draft

    def cancel(self) -> asyncio.Task[None] | None:
        """Abandon the session; the backend is asked to stop in the background."""

        session = self._session
        if session is None:
            return None
        task = self.abort()
        if session.status in _FINISHED:
            return task
        if task is None:
            task = self._cancellation.cancel_session(session.id)
        self._session = session.model_copy(update={"status": "cancelled"})
        return task

    def abort(self) -> asyncio.Task[None] | None:
        """Stop the in-flight request without waiting for the backend."""

        task = self._cancellation.abort()
        if task is None:
            return None
        self._in_flight = None
        self.error = None
        self.notice = CANCELLED_NOTICE
        return task

    def apply_update(self, update: SessionUpdate) -> Session:
        """Merge an out-of-band push into the active session."""

        session = self._session
        if session is None or update.session_id != session.id:
            raise StalePush(f"Update for inactive session {update.session_id}")
        self._session = session.model_copy(
            update={
                "draft": update.draft,
                "status": update.status,
                "messages": list(update.messages),
            }
        )
        if update.status == "previewShown":
            self.preview_requested = True
        return self._session

    def _ensure_idle(self) -> None:
        if self._in_flight is not None:
            raise RequestInProgressError(
                f"Request {self._in_flight} is still in progress"
            )

    def _begin(self, session_id: str) -> str:
        request_id = self._cancellation.arm(session_id)
        self._in_flight = request_id
        return request_id

    def _finish(self, request_id: str) -> None:
        self._cancellation.release(request_id)
        if self._in_flight == request_id:
            self._in_flight = None

    def _remove_message(self, session_id: str, message_id: str) -> None:
        session = self._session
        if session is None or session.id != session_id:
            return
        self._session = session.model_copy(
            update={"messages": [m for m in session.messages if m.id != message_id]}
        )

    def _request_error(
        self,
        request_id: str,
        exc: Exception,
        fallback: str,
        pending: PendingInput | None = None,
    ) -> RequestFailure | CancellationRequested:
        if self._cancellation.was_aborted(request_id):
            return self._cancelled(request_id, pending)

        message = _describe(exc, fallback)
        logger.warning("Request %s failed: %s", request_id, message)
        self.error = message
        return RequestFailure(message, pending_input=pending)

    def _cancelled(
        self, request_id: str, pending: PendingInput | None = None
    ) -> CancellationRequested:
        # Responses of aborted requests are never applied, even successful ones.
        logger.info("Request %s ended after cancellation", request_id)
        self.notice = CANCELLED_NOTICE
        return CancellationRequested(CANCELLED_NOTICE, pending_input=pending)

    def _accept(self, updated: Session) -> Session:
        current = self._session
        if current is None or current.id != updated.id:
            logger.debug("Discarding response for inactive session %s", updated.id)
            return updated
        self._session = self._trim_history(updated)
        self._note_tool_actions(self._session)
        return self._session

    def _trim_history(self, session: Session) -> Session:
        limit = self._draft_history_limit
        if limit is None or len(session.draft_history) <= limit:
            return session
        return session.model_copy(
            update={"draft_history": session.draft_history[-limit:]}
        )

    def _note_tool_actions(self, session: Session) -> None:
        if not session.messages:
            return
        for result in session.messages[-1].tool_results:
            payload = result.result
            if not isinstance(payload, Mapping):
                continue
            action = payload.get("action")
            if action == "show_preview":
                self.preview_requested = True
            elif action == "request_confirmation":
                self.preview_requested = True
                self.confirmation_requested = True


__all__ = ["CANCELLED_NOTICE", "SessionBackend", "SessionStore", "greeting_for"]
