"""Event layer: per-session log of artifact, tool, confirmation and save events for SSE resume."""

from __future__ import annotations

from collections import deque
from threading import Lock

from studio.events.event_types import EventName, StreamEvent

# Events carrying a full per-document projection; a newer one makes older ones redundant.
_PROJECTION_EVENTS: frozenset[str] = frozenset({"artifact.updated", "save.status"})


def _projection_key(event: StreamEvent) -> tuple[str, str] | None:
    document_id = event.data.get("document_id")
    if event.event not in _PROJECTION_EVENTS or not document_id or "error" in event.data:
        return None
    return event.event, str(document_id)


class SessionEventLog:
    """Ordered, bounded event history per session.

    Ids come from one counter shared by all sessions, so a client resumes
    with the last id it saw. Only the newest projection per document is
    kept, which leaves room for tool and confirmation events that cannot be
    rebuilt from state.
    """

    def __init__(self, max_events_per_session: int = 200) -> None:
        self._limit = max(10, max_events_per_session)
        self._sessions: dict[str, deque[StreamEvent]] = {}
        self._seq = 0
        self._lock = Lock()

    def record(self, session_id: str, event_name: EventName, data: dict | None = None) -> StreamEvent:
        with self._lock:
            self._seq += 1
            event = StreamEvent(id=self._seq, session_id=session_id, event=event_name, data=data or {})
            history = self._sessions.setdefault(session_id, deque(maxlen=self._limit))
            key = _projection_key(event)
            if key is not None:
                stale = [item for item in history if _projection_key(item) == key]
                for item in stale:
                    history.remove(item)
            history.append(event)
            return event

    def since(self, session_id: str, last_event_id: int | None = None) -> list[StreamEvent]:
        """Events after `last_event_id`, oldest first; everything kept when None."""
        with self._lock:
            history = self._sessions.get(session_id)
            if not history:
                return []
            if last_event_id is None:
                return list(history)
            return [item for item in history if item.id > last_event_id]

    def drop(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None
