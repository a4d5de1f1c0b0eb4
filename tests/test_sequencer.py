"""Tests for timeline ordering."""

from creation_helper.engine.sequencer import STREAMING_MESSAGE_ID, build_timeline
from creation_helper.engine.stream import StreamBuffer
from creation_helper.schemas.session import ImageGenerationEntry, Message, ToolCall


def message(message_id: str, created_at: int, role: str = "user") -> Message:
    return Message(id=message_id, role=role, content=message_id, created_at=created_at)


def entry(call_id: str, created_at: int) -> ImageGenerationEntry:
    return ImageGenerationEntry(
        id=f"__image_generation__{call_id}",
        tool_call_id=call_id,
        status="pending",
        created_at=created_at,
    )


def test_orders_by_created_at():
    timeline = build_timeline(
        [message("b", 200), message("a", 100)],
        image_generations=[entry("c1", 150)],
    )

    assert [m.id for m in timeline] == ["a", "__image_generation__c1", "b"]


def test_ties_keep_insertion_order():
    timeline = build_timeline(
        [message("first", 100), message("second", 100)],
        image_generations=[entry("c1", 100)],
    )

    assert [m.id for m in timeline] == ["first", "second", "__image_generation__c1"]


def test_streaming_message_uses_now():
    buffer = StreamBuffer(request_id="req", content="Typing")
    buffer.tool_calls["c1"] = ToolCall(id="c1", name="add_scene")

    timeline = build_timeline(
        [message("u", 100), message("a", 400, role="assistant")],
        buffer,
        now=300,
    )

    assert [m.id for m in timeline] == ["u", STREAMING_MESSAGE_ID, "a"]
    streaming = timeline[1]
    assert streaming.role == "assistant"
    assert streaming.content == "Typing"
    assert [call.id for call in streaming.tool_calls] == ["c1"]


def test_empty_timeline():
    assert build_timeline([]) == []
