"""Unit tests for raw event classification and malformed-event handling."""

from __future__ import annotations

import json

import pytest

from studio.core.errors import MalformedEventError
from studio.stream.decoder import DeltaDecoder, decode_stream
from studio.stream.deltas import (
    ClearDelta,
    DocumentIdDelta,
    FinishDelta,
    HumanConfirmationRequest,
    HumanConfirmationResponse,
    KindDelta,
    StreamEnd,
    SuggestionDelta,
    TextDelta,
    ToolInvocation,
)


def _delta(data: dict) -> dict:
    return {"event": "delta", "data": data}


def test_decode_text_delta_keeps_sequence_id() -> None:
    delta = DeltaDecoder().decode(_delta({"type": "text-delta", "id": 7, "content": "Hello"}))

    assert isinstance(delta, TextDelta)
    assert delta.content == "Hello"
    assert delta.sequence_id == "7"


def test_decode_accepts_json_text_and_bytes() -> None:
    raw = json.dumps(_delta({"type": "kind", "content": "code"}))
    decoder = DeltaDecoder()

    assert isinstance(decoder.decode(raw), KindDelta)
    assert isinstance(decoder.decode(raw.encode("utf-8")), KindDelta)


def test_decode_metadata_and_end_events() -> None:
    decoder = DeltaDecoder()

    assert decoder.decode(_delta({"type": "id", "content": "doc-1"})) == DocumentIdDelta(content="doc-1")
    assert isinstance(decoder.decode(_delta({"type": "clear", "content": ""})), ClearDelta)
    assert isinstance(decoder.decode(_delta({"type": "finish", "content": ""})), FinishDelta)
    assert isinstance(decoder.decode({"event": "end", "data": {}}), StreamEnd)


def test_decode_tool_call_from_tool_calls_field() -> None:
    delta = DeltaDecoder().decode(
        _delta(
            {
                "type": "tool-call",
                "id": "e1",
                "tool_calls": {
                    "callId": "call-1",
                    "name": "create_tasks",
                    "arguments": {"project": "alpha"},
                    "requires_confirmation": True,
                },
            }
        )
    )

    assert isinstance(delta, ToolInvocation)
    assert delta.call_id == "call-1"
    assert delta.args == {"project": "alpha"}
    assert delta.state == "call"
    assert delta.requires_confirmation is True


def test_decode_confirmation_request_assigns_item_and_attribute_ids() -> None:
    delta = DeltaDecoder().decode(
        _delta(
            {
                "type": "confirmation-request",
                "human_in_the_loop": {
                    "call_id": "call-1",
                    "data": [
                        {"name": "Write brief", "attributes": [{"label": "due", "old": None, "new": "Friday"}]},
                        {"gid": "42", "name": "Review"},
                    ],
                },
            }
        )
    )

    assert isinstance(delta, HumanConfirmationRequest)
    assert [item.id for item in delta.items] == ["item-0", "42"]
    assert delta.items[0].attributes[0].id == "item-0.due"


def test_decode_confirmation_response_list_form_is_normalized() -> None:
    delta = DeltaDecoder().decode(
        _delta(
            {
                "type": "confirmation-response",
                "human_in_the_loop": {
                    "message_id": "call-9",
                    "decisions": [{"name": "a", "status": "Accepted"}, {"id": "b", "status": "REJECTED"}],
                },
            }
        )
    )

    assert isinstance(delta, HumanConfirmationResponse)
    assert delta.call_id == "call-9"
    assert delta.decisions == {"a": "accepted", "b": "rejected"}


def test_decode_suggestion_label_falls_back_to_suggested_text() -> None:
    delta = DeltaDecoder().decode(
        _delta(
            {
                "type": "suggestion",
                "content": {
                    "id": "sg-1",
                    "documentId": "doc-1",
                    "originalText": "cat",
                    "suggestedText": "dog",
                },
            }
        )
    )

    assert isinstance(delta, SuggestionDelta)
    assert delta.suggestion.label == "dog"


@pytest.mark.parametrize(
    ("raw", "reason"),
    [
        ("{not json", "invalid_json"),
        ({"event": "ping", "data": {}}, "bad_envelope"),
        (_delta({"content": "x"}), "missing_type"),
        (_delta({"type": "audio-delta", "content": "x"}), "unknown_type"),
        (_delta({"type": "tool-call"}), "missing_tool_calls"),
        (_delta({"type": "kind", "content": "video"}), "invalid_payload"),
        (_delta({"type": "id", "content": ""}), "invalid_payload"),
    ],
)
def test_decode_rejects_malformed_events(raw, reason: str) -> None:
    with pytest.raises(MalformedEventError) as exc_info:
        DeltaDecoder().decode(raw)

    assert exc_info.value.reason.startswith(reason)


@pytest.mark.asyncio
async def test_decode_stream_skips_one_malformed_event_in_ten() -> None:
    events: list = [_delta({"type": "text-delta", "content": f"v{index}"}) for index in range(9)]
    events.insert(4, "garbage")

    async def source():
        for item in events:
            yield item

    decoded = [delta async for delta in decode_stream(source())]

    assert len(decoded) == 9
    assert [delta.content for delta in decoded] == [f"v{index}" for index in range(9)]
