"""End-to-end tests for the creation engine with an in-memory backend."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from creation_helper.backend import BackendError
from creation_helper.config import Settings
from creation_helper.engine import CancellationRequested, CreationEngine
from creation_helper.engine.image_generation import image_generation_entry_id
from creation_helper.engine.sequencer import STREAMING_MESSAGE_ID
from creation_helper.events import SESSION_UPDATE_TOPIC, EventDispatcher, stream_topic
from creation_helper.schemas.session import (
    DraftCharacter,
    Message,
    Session,
    ToolCall,
    ToolResult,
    UploadedImage,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class ScriptedBackend:
    def __init__(self) -> None:
        self.session = Session(id="s1", created_at=1, updated_at=1)
        self.gate: asyncio.Event | None = None
        self.replies: list[Session] = []
        self.request_ids: list[str | None] = []
        self.cancelled: list[str] = []
        self.images = {"img-1": UploadedImage(id="img-1", data="AAAA", mime_type="image/png")}

    async def start(self, goal="character", *, mode=None, target_type=None, target_id=None):
        self.session = self.session.model_copy(update={"creation_goal": goal})
        return self.session

    async def send_message(self, session_id, message, uploaded_images=None, *, request_id=None):
        self.request_ids.append(request_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.replies:
            self.session = self.replies.pop(0)
        else:
            self.session = self.session.model_copy(
                update={
                    "messages": [
                        *self.session.messages,
                        Message(id=f"u{len(self.request_ids)}", role="user", content=message, created_at=10),
                        Message(id=f"a{len(self.request_ids)}", role="assistant", content="Hello!", created_at=11),
                    ]
                }
            )
        return self.session

    async def regenerate(self, session_id, *, request_id=None):
        self.request_ids.append(request_id)
        return self.session

    async def complete(self, session_id):
        return DraftCharacter(name="Ada")

    async def cancel(self, session_id):
        self.cancelled.append(session_id)

    async def get_session(self, session_id):
        if session_id == "missing":
            return None
        if session_id == "broken":
            raise BackendError(500, "database locked")
        return self.session.model_copy(update={"id": session_id})

    async def get_uploaded_image(self, session_id, image_id):
        return self.images.get(image_id)


class RecordingSink:
    def __init__(self) -> None:
        self.saved: list[tuple[DraftCharacter, str]] = []

    async def save_draft(self, draft: DraftCharacter, goal: str) -> None:
        self.saved.append((draft, goal))


def make_engine(backend: ScriptedBackend, **kwargs: Any) -> tuple[CreationEngine, EventDispatcher]:
    dispatcher = EventDispatcher()
    engine = CreationEngine(
        backend,
        settings=Settings(_env_file=None),
        dispatcher=dispatcher,
        clock=lambda: 50,
        **kwargs,
    )
    return engine, dispatcher


def emit(dispatcher: EventDispatcher, request_id: str, event_type: str, data: Any) -> None:
    dispatcher.emit(stream_topic(request_id), json.dumps({"type": event_type, "data": data}))


@pytest.mark.anyio
async def test_streaming_timeline_and_image_generation():
    backend = ScriptedBackend()
    engine, dispatcher = make_engine(backend)
    await engine.start("character")

    backend.gate = asyncio.Event()
    final = backend.session.model_copy(
        update={
            "messages": [
                *backend.session.messages,
                Message(id="u2", role="user", content="Draw her", created_at=20),
                Message(
                    id="a2",
                    role="assistant",
                    content="Here she is.",
                    created_at=21,
                    tool_calls=[ToolCall(id="c1", name="generate_image")],
                    tool_results=[
                        ToolResult(tool_call_id="c1", result={"imageId": "img-1"}, success=True)
                    ],
                ),
            ]
        }
    )
    backend.replies.append(final)

    task = asyncio.create_task(engine.send("Draw her"))
    await asyncio.sleep(0)
    request_id = backend.request_ids[-1]

    emit(dispatcher, request_id, "delta", {"text": "Here "})
    emit(dispatcher, request_id, "delta", {"text": "she is."})
    emit(dispatcher, request_id, "toolCall", [{"id": "c1", "name": "generate_image"}])

    timeline = engine.timeline(now=100)
    ids = [m.id for m in timeline]
    assert ids[:2] == ["u1", "a1"]
    assert ids.index(image_generation_entry_id("c1")) < ids.index(STREAMING_MESSAGE_ID)
    assert timeline[-1].content == "Draw her"
    streaming = timeline[ids.index(STREAMING_MESSAGE_ID)]
    assert streaming.content == "Here she is."
    assert engine.image_generation(image_generation_entry_id("c1")).status == "pending"

    backend.gate.set()
    await task

    entry = engine.image_generation(image_generation_entry_id("c1"))
    assert entry.status == "done"
    assert entry.image_id == "img-1"
    assert engine.streaming is None
    assert all(m.id != STREAMING_MESSAGE_ID for m in engine.timeline())
    image = await engine.fetch_image(entry.image_id)
    assert image is not None and image.mime_type == "image/png"


@pytest.mark.anyio
async def test_stream_error_surfaces_on_engine():
    backend = ScriptedBackend()
    engine, dispatcher = make_engine(backend)
    await engine.start("character")
    backend.gate = asyncio.Event()

    task = asyncio.create_task(engine.send("Hi"))
    await asyncio.sleep(0)
    emit(dispatcher, backend.request_ids[-1], "error", {"message": "Provider overloaded"})

    assert engine.error == "Provider overloaded"
    assert engine.streaming is not None and engine.streaming.content == ""

    backend.gate.set()
    await task


@pytest.mark.anyio
async def test_session_push_updates_active_session_only():
    backend = ScriptedBackend()
    engine, dispatcher = make_engine(backend)

    async with engine:
        await engine.start("character")
        push = {
            "sessionId": "s1",
            "draft": {"name": "Pushed"},
            "status": "previewShown",
            "messages": [m.to_payload() for m in engine.session.messages],
        }
        dispatcher.emit(SESSION_UPDATE_TOPIC, json.dumps(push))
        dispatcher.emit(SESSION_UPDATE_TOPIC, json.dumps({**push, "sessionId": "old"}))
        dispatcher.emit(SESSION_UPDATE_TOPIC, "not json")

        assert engine.session.draft.name == "Pushed"
        assert engine.store.preview_requested

    assert dispatcher.listener_count(SESSION_UPDATE_TOPIC) == 0
    assert backend.cancelled == ["s1"]


@pytest.mark.anyio
async def test_complete_hands_draft_to_sink():
    backend = ScriptedBackend()
    sink = RecordingSink()
    engine, _ = make_engine(backend, draft_sink=sink)
    await engine.start("persona")

    draft = await engine.complete()

    assert draft.name == "Ada"
    assert sink.saved == [(draft, "persona")]
    assert engine.session.status == "completed"


@pytest.mark.anyio
async def test_abort_then_start_new_session():
    backend = ScriptedBackend()
    engine, _ = make_engine(backend)
    await engine.start("character")
    backend.gate = asyncio.Event()

    task = asyncio.create_task(engine.send("Slow request"))
    await asyncio.sleep(0)
    engine.abort()
    backend.gate.set()

    with pytest.raises(CancellationRequested):
        await task
    assert engine.notice == "Generation cancelled."

    backend.gate = None
    await engine.start("lorebook")
    assert engine.session.creation_goal == "lorebook"
    assert engine.notice is None
    await engine.aclose()


@pytest.mark.anyio
async def test_resume_existing_session():
    backend = ScriptedBackend()
    engine, _ = make_engine(backend)

    assert await engine.resume("missing") is None
    assert await engine.resume("broken") is None

    session = await engine.resume("s9")
    assert session is not None and session.id == "s9"
    assert engine.session.id == "s9"


@pytest.mark.anyio
async def test_abort_drops_image_generations_that_only_streamed():
    backend = ScriptedBackend()
    engine, dispatcher = make_engine(backend)
    await engine.start("character")
    backend.gate = asyncio.Event()

    task = asyncio.create_task(engine.send("Paint a castle"))
    await asyncio.sleep(0)
    emit(dispatcher, backend.request_ids[-1], "toolCall", [{"id": "c5", "name": "generate_image"}])
    assert engine.image_generation(image_generation_entry_id("c5")).status == "pending"

    engine.abort()

    assert engine.image_generation(image_generation_entry_id("c5")) is None
    assert all(m.id != image_generation_entry_id("c5") for m in engine.timeline())

    backend.gate.set()
    with pytest.raises(CancellationRequested):
        await task
    assert engine.image_generations == []
    await engine.aclose()
