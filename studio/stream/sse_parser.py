"""Stream layer: parse `text/event-stream` frames into raw delta envelopes."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

_EVENT_ALIASES = {"message": "delta", "done": "end"}


@dataclass
class SseFrame:
    """One dispatched SSE frame before JSON decoding."""

    event: str = "message"
    data_lines: list[str] = field(default_factory=list)
    event_id: str | None = None

    @property
    def data(self) -> str:
        return "\n".join(self.data_lines)


def iter_sse_frames(lines: Iterable[str]) -> Iterator[SseFrame]:
    """Group lines into frames; a blank line dispatches the current frame."""
    frame = SseFrame()
    has_fields = False
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            if has_fields:
                yield frame
            frame = SseFrame()
            has_fields = False
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            frame.event = value
        elif name == "data":
            frame.data_lines.append(value)
        elif name == "id":
            frame.event_id = value
        else:
            continue
        has_fields = True
    if has_fields:
        yield frame


def parse_sse_body(body: str) -> list[dict[str, Any] | str]:
    """Turn an SSE body into envelopes the decoder accepts.

    Frames whose data is not JSON are passed through as strings so the
    decoder reports them as malformed instead of losing them silently.
    """
    envelopes: list[dict[str, Any] | str] = []
    for frame in iter_sse_frames(body.splitlines()):
        try:
            data = json.loads(frame.data) if frame.data else {}
        except json.JSONDecodeError:
            envelopes.append(frame.data)
            continue
        if frame.event == "message" and isinstance(data, dict) and "event" in data:
            # Unnamed frames may carry a full `{event, data}` envelope.
            envelopes.append(data)
            continue
        if isinstance(data, dict) and frame.event_id is not None:
            data.setdefault("id", frame.event_id)
        event = _EVENT_ALIASES.get(frame.event, frame.event)
        envelopes.append({"event": event, "data": data})
    return envelopes
