"""Creation engine coordinating the store, stream, trackers and cancellation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Mapping, Protocol, Sequence

from pydantic import ValidationError

from ..backend import BackendError, CreationBackendClient
from ..config import Settings, get_settings
from ..events import SESSION_UPDATE_TOPIC, EventDispatcher, Unlisten, get_dispatcher
from ..schemas.events import SessionUpdate
from ..schemas.session import (
    CreationGoal,
    CreationMode,
    DraftCharacter,
    ImageAttachment,
    ImageGenerationEntry,
    Message,
    Reference,
    Session,
    UploadedImage,
    now_ms,
)
from .cancellation import CancellationController
from .errors import StalePush
from .image_generation import ImageGenerationTracker
from .sequencer import build_timeline
from .session_store import SessionBackend, SessionStore
from .stream import StreamBuffer, StreamCorrelator
from .tool_calls import ToolPairing, pair_message_tools

logger = logging.getLogger(__name__)


class EngineBackend(SessionBackend, Protocol):
    async def get_session(self, session_id: str) -> Session | None:
        ...

    async def get_uploaded_image(
        self, session_id: str, image_id: str
    ) -> UploadedImage | None:
        ...


class DraftSink(Protocol):
    """Persistence collaborator receiving the accepted draft."""

    async def save_draft(self, draft: DraftCharacter, goal: CreationGoal) -> None:
        ...


class CreationEngine:
    """High-level coordination for one creation session at a time."""

    def __init__(
        self,
        backend: EngineBackend,
        *,
        settings: Settings | None = None,
        dispatcher: EventDispatcher | None = None,
        draft_sink: DraftSink | None = None,
        clock: Callable[[], int] = now_ms,
        owns_backend: bool = False,
    ) -> None:
        settings = settings or get_settings()
        self._backend = backend
        self._owns_backend = owns_backend
        self._dispatcher = dispatcher or get_dispatcher()
        self._draft_sink = draft_sink
        self._clock = clock
        self._images = ImageGenerationTracker(clock)
        self._correlator = StreamCorrelator(
            self._dispatcher,
            on_error=self._handle_stream_error,
            on_tool_calls=self._images.observe_calls,
        )
        self._cancellation = CancellationController(backend, self._correlator)
        self._store = SessionStore(
            backend,
            self._cancellation,
            draft_history_limit=settings.draft_history_limit,
            smart_tool_selection=settings.smart_tool_selection,
        )
        self._unlisten_updates: Unlisten | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        draft_sink: DraftSink | None = None,
    ) -> "CreationEngine":
        """Build an engine talking to the configured backend over HTTP."""

        settings = settings or get_settings()
        return cls(
            CreationBackendClient(settings),
            settings=settings,
            draft_sink=draft_sink,
            owns_backend=True,
        )

    async def __aenter__(self) -> "CreationEngine":
        self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def open(self) -> None:
        """Register the session push listener."""

        if self._unlisten_updates is None:
            self._unlisten_updates = self._dispatcher.listen(
                SESSION_UPDATE_TOPIC, self._handle_update
            )

    async def aclose(self) -> None:
        """Tear down the session and release held resources."""

        try:
            self._teardown_session()
        except Exception as exc:
            logger.warning("Error tearing down creation session: %s", exc)

        unlisten, self._unlisten_updates = self._unlisten_updates, None
        if unlisten is not None:
            unlisten()

        await self._cancellation.wait_for_pending()

        if self._owns_backend and isinstance(self._backend, CreationBackendClient):
            try:
                await asyncio.wait_for(self._backend.aclose(), timeout=2.0)
            except Exception as exc:
                logger.warning("Error closing backend client: %s", exc)

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def session(self) -> Session | None:
        return self._store.session

    @property
    def error(self) -> str | None:
        return self._store.error

    @property
    def notice(self) -> str | None:
        return self._store.notice

    @property
    def is_sending(self) -> bool:
        return self._store.is_sending

    @property
    def streaming(self) -> StreamBuffer | None:
        if not self._store.is_sending:
            return None
        return self._correlator.buffer

    @property
    def image_generations(self) -> list[ImageGenerationEntry]:
        return self._images.entries

    async def start(
        self,
        goal: CreationGoal = "character",
        *,
        mode: CreationMode | None = None,
        target_type: CreationGoal | None = None,
        target_id: str | None = None,
    ) -> Session:
        """Switch to a brand new session and run its greeting turn."""

        self._teardown_session()
        try:
            return await self._store.start(
                goal, mode=mode, target_type=target_type, target_id=target_id
            )
        finally:
            self._refresh_images()

    async def resume(self, session_id: str) -> Session | None:
        """Switch to an existing backend session, if it still exists."""

        self._teardown_session()
        try:
            session = await self._backend.get_session(session_id)
        except BackendError as exc:
            logger.warning("Failed to load session %s: %s", session_id, exc)
            return None
        if session is None:
            return None
        session = self._store.load(session)
        self._refresh_images()
        return session

    async def send(
        self,
        text: str,
        attachments: Sequence[ImageAttachment] | None = None,
        references: Sequence[Reference] | None = None,
    ) -> Session:
        try:
            return await self._store.send(text, attachments, references)
        finally:
            self._refresh_images()

    async def regenerate(self) -> Session:
        try:
            return await self._store.regenerate()
        finally:
            self._refresh_images()

    async def complete(self) -> DraftCharacter:
        """Complete the session and hand its draft to the persistence sink."""

        session = self._store.require_session()
        draft = await self._store.complete()
        if self._draft_sink is not None:
            await self._draft_sink.save_draft(draft, session.creation_goal)
        return draft

    def cancel(self) -> asyncio.Task[None] | None:
        task = self._store.cancel()
        self._refresh_images()
        return task

    def abort(self) -> asyncio.Task[None] | None:
        """Stop the in-flight request and forget what it only streamed."""

        task = self._store.abort()
        self._refresh_images()
        return task

    def timeline(self, *, now: int | None = None) -> list[Message]:
        """Return the ordered render timeline for the active session."""

        session = self._store.session
        if session is None:
            return []
        return build_timeline(
            session.messages,
            self.streaming,
            self._images.entries,
            now=now if now is not None else self._clock(),
        )

    def tool_pairings(self, message: Message) -> list[ToolPairing]:
        return pair_message_tools(message)

    def image_generation(self, entry_id: str) -> ImageGenerationEntry | None:
        return self._images.get(entry_id)

    async def fetch_image(self, image_id: str) -> UploadedImage | None:
        """Load an uploaded or generated image of the active session."""

        session = self._store.require_session()
        return await self._backend.get_uploaded_image(session.id, image_id)

    def _refresh_images(self) -> None:
        session = self._store.session
        if session is None:
            return
        self._images.observe_messages(session.messages)
        # Streamed entries of a request that is still running are not orphans.
        if not self._store.is_sending:
            self._images.prune(session.messages)

    def _handle_stream_error(self, message: str) -> None:
        self._store.error = message

    def _handle_update(self, payload: Any) -> None:
        try:
            if isinstance(payload, (str, bytes)):
                payload = json.loads(payload)
            if not isinstance(payload, Mapping):
                raise ValueError(f"unexpected payload type {type(payload).__name__}")
            update = SessionUpdate.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            logger.warning("Dropping malformed session update: %s", exc)
            return

        try:
            session = self._store.apply_update(update)
        except StalePush as exc:
            logger.debug("Ignoring push: %s", exc)
            return
        self._images.observe_messages(session.messages)

    def _teardown_session(self) -> None:
        # unsubscribe -> cancel -> clear
        self._store.cancel()
        self._cancellation.dispose()
        self._images.reset()
        self._store.reset()


__all__ = ["CreationEngine", "DraftSink", "EngineBackend"]
