"""Tests for the image generation tracker."""

from creation_helper.engine.image_generation import (
    ImageGenerationTracker,
    extract_image_id,
    image_generation_entry_id,
)
from creation_helper.schemas.session import Message, ToolCall, ToolResult


def make_tracker() -> ImageGenerationTracker:
    return ImageGenerationTracker(clock=lambda: 5_000)


def generation_call(call_id: str = "c1") -> ToolCall:
    return ToolCall(id=call_id, name="generate_image", arguments={"prompt": "a fox"})


def test_call_creates_pending_entry():
    tracker = make_tracker()

    assert tracker.observe_calls([generation_call(), ToolCall(id="c2", name="add_scene")])

    entry = tracker.for_call("c1")
    assert entry is not None
    assert entry.status == "pending"
    assert entry.id == image_generation_entry_id("c1")
    assert entry.created_at == 5_000
    assert len(tracker) == 1


def test_failed_result_moves_to_error():
    tracker = make_tracker()
    tracker.observe_calls([generation_call()])

    tracker.observe_result(
        ToolResult(tool_call_id="c1", result={"error": "nsfw"}, success=False),
        created_at=6_000,
    )

    entry = tracker.for_call("c1")
    assert entry.status == "error"
    assert entry.image_id is None
    assert entry.created_at == 5_000


def test_terminal_entry_never_changes():
    tracker = make_tracker()
    tracker.observe_calls([generation_call()])
    tracker.observe_result(
        ToolResult(tool_call_id="c1", result={"imageId": "img-1"}, success=True),
        created_at=6_000,
    )

    changed = tracker.observe_result(
        ToolResult(tool_call_id="c1", success=False), created_at=7_000
    )

    assert not changed
    entry = tracker.get(image_generation_entry_id("c1"))
    assert entry.status == "done"
    assert entry.image_id == "img-1"


def test_observing_messages_is_idempotent():
    tracker = make_tracker()
    messages = [
        Message(
            id="m1",
            role="assistant",
            created_at=1_000,
            tool_calls=[generation_call()],
            tool_results=[
                ToolResult(tool_call_id="c1", result={"image_id": "img-9"}, success=True)
            ],
        )
    ]

    assert tracker.observe_messages(messages)
    snapshot = tracker.entries
    assert not tracker.observe_messages(messages)

    assert tracker.entries == snapshot
    assert snapshot[0].status == "done"
    assert snapshot[0].image_id == "img-9"
    assert snapshot[0].created_at == 1_000


def test_unrelated_results_are_ignored():
    tracker = make_tracker()
    message = Message(
        id="m1",
        role="assistant",
        tool_calls=[ToolCall(id="c1", name="add_scene")],
        tool_results=[ToolResult(tool_call_id="c1", success=True)],
    )

    assert not tracker.observe_messages([message])
    assert tracker.entries == []


def test_extract_image_id():
    assert extract_image_id({"image_id": "a"}) == "a"
    assert extract_image_id({"imageId": "b"}) == "b"
    assert extract_image_id({"imageId": ""}) is None
    assert extract_image_id("img") is None


def test_get_rejects_foreign_ids():
    tracker = make_tracker()
    tracker.observe_calls([generation_call()])

    assert tracker.get("c1") is None
    tracker.reset()
    assert tracker.get(image_generation_entry_id("c1")) is None


def test_result_persisted_before_its_call_starts_terminal():
    tracker = make_tracker()
    messages = [
        Message(
            id="m1",
            role="assistant",
            created_at=1_000,
            tool_results=[
                ToolResult(tool_call_id="c1", result={"imageId": "img-2"}, success=True)
            ],
        ),
        Message(id="m2", role="assistant", created_at=2_000, tool_calls=[generation_call()]),
    ]

    tracker.observe_messages(messages)
    first = tracker.entries
    assert not tracker.observe_messages(messages)

    assert [(e.tool_call_id, e.status, e.image_id) for e in first] == [("c1", "done", "img-2")]
    assert first[0].created_at == 1_000
    assert tracker.entries == first


def test_calls_and_results_split_across_messages():
    tracker = make_tracker()
    messages = [
        Message(id="m1", role="assistant", created_at=1_000, tool_calls=[generation_call()]),
        Message(
            id="m2",
            role="assistant",
            created_at=2_000,
            tool_results=[ToolResult(tool_call_id="c1", success=False)],
        ),
    ]

    tracker.observe_messages(messages)
    first = tracker.entries
    assert not tracker.observe_messages(messages)

    assert [(e.tool_call_id, e.status) for e in first] == [("c1", "error")]
    assert first[0].created_at == 1_000
    assert tracker.entries == first


def test_result_without_any_call_starts_terminal():
    tracker = make_tracker()
    messages = [
        Message(
            id="m1",
            role="assistant",
            created_at=3_000,
            tool_results=[
                ToolResult(tool_call_id="c7", result={"image_id": "img-7"}, success=True),
                ToolResult(tool_call_id="c8", result={"ok": True}, success=True),
            ],
        )
    ]

    assert tracker.observe_messages(messages)
    first = tracker.entries
    assert not tracker.observe_messages(messages)

    assert [(e.tool_call_id, e.status, e.image_id) for e in first] == [("c7", "done", "img-7")]
    assert tracker.entries == first


def test_prune_drops_only_unpersisted_pending_entries():
    tracker = make_tracker()
    tracker.observe_calls([generation_call("streamed"), generation_call("kept")])
    tracker.observe_result(ToolResult(tool_call_id="finished", success=True), created_at=1)
    persisted = [
        Message(id="m1", role="assistant", tool_calls=[generation_call("kept")]),
    ]

    dropped = tracker.prune(persisted)

    assert dropped == ["streamed"]
    assert [e.tool_call_id for e in tracker.entries] == ["kept", "finished"]
