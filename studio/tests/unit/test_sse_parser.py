"""Unit tests for SSE framing of upstream delta streams."""

from __future__ import annotations

from studio.stream.sse_parser import iter_sse_frames, parse_sse_body


def test_frames_split_on_blank_lines_and_skip_comments() -> None:
    body = ": keep-alive\n\nevent: delta\nid: 1\ndata: {\"a\": 1}\n\nevent: end\ndata: {}\n\n"

    frames = list(iter_sse_frames(body.splitlines()))

    assert [frame.event for frame in frames] == ["delta", "end"]
    assert frames[0].event_id == "1"
    assert frames[0].data == '{"a": 1}'


def test_multi_line_data_is_joined() -> None:
    frames = list(iter_sse_frames(["data: first", "data: second", ""]))

    assert frames[0].data == "first\nsecond"


def test_parse_body_builds_envelopes() -> None:
    body = (
        "event: delta\n"
        "id: 5\n"
        'data: {"type": "text-delta", "content": "Hi"}\n'
        "\n"
        "event: done\n"
        "data: {}\n"
        "\n"
    )

    envelopes = parse_sse_body(body)

    assert envelopes == [
        {"event": "delta", "data": {"type": "text-delta", "content": "Hi", "id": "5"}},
        {"event": "end", "data": {}},
    ]


def test_unnamed_frame_with_full_envelope_passes_through() -> None:
    body = 'data: {"event": "delta", "data": {"type": "finish", "content": ""}}\n\n'

    assert parse_sse_body(body) == [{"event": "delta", "data": {"type": "finish", "content": ""}}]


def test_non_json_data_is_kept_for_the_decoder_to_reject() -> None:
    assert parse_sse_body("event: delta\ndata: oops\n\n") == ["oops"]
