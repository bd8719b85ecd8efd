"""Event layer: typed session events recorded by SessionEventLog and served over SSE."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from studio.protocol.messages import utc_now_iso


EventName = Literal[
    "session.started",
    "artifact.updated",
    "suggestions.updated",
    "tool.updated",
    "confirmation.requested",
    "confirmation.resolved",
    "save.status",
    "session.ended",
    "session.disconnected",
    "session.cancelled",
]


class StreamEvent(BaseModel):
    """One session event, kept in memory until a client resumes past it."""

    id: int
    session_id: str
    event: EventName
    at: str = Field(default_factory=utc_now_iso)
    data: dict[str, Any] = Field(default_factory=dict)
