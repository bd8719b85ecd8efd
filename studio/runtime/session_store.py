"""In-memory registry of live stream sessions keyed by session_id."""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock

from studio.runtime.session import StreamSession

SessionFactory = Callable[[str], StreamSession]


class SessionStore:
    """Thread-safe session registry; sessions are created on first use."""

    def __init__(self, factory: SessionFactory) -> None:
        self._lock = Lock()
        self._factory = factory
        self._sessions: dict[str, StreamSession] = {}

    def get_or_create(self, session_id: str) -> StreamSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._factory(session_id)
                self._sessions[session_id] = session
            return session

    def get(self, session_id: str) -> StreamSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def pop(self, session_id: str) -> StreamSession | None:
        """Remove one session by id and hand it back for cleanup."""
        with self._lock:
            return self._sessions.pop(session_id, None)

    async def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
