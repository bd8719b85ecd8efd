"""Test fixtures shared by unit/integration tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from studio.editor.catalog import SuggestionCatalog
from studio.events.session_events import SessionEventLog
from studio.infra.db.local_store import LocalDocumentStore
from studio.protocol.messages import DocumentDto, SaveDocumentRequest
from studio.runtime.session import StreamSession


class RecordingWriter:
    """Async document writer that records contents and can fail or hold."""

    def __init__(self) -> None:
        self.contents: list[str] = []
        self.failures = 0
        self.attempts = 0
        self.hold: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    async def __call__(self, request: SaveDocumentRequest) -> DocumentDto:
        self.attempts += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hold is not None:
                await self.hold.wait()
            else:
                await asyncio.sleep(0)
            if self.failures > 0:
                self.failures -= 1
                raise OSError("disk unavailable")
            self.contents.append(request.content)
            return DocumentDto(
                id=request.id,
                user_id=request.user_id,
                title=request.title,
                content=request.content,
                kind=request.kind,
            )
        finally:
            self.active -= 1


@pytest.fixture
def recording_writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def make_session():
    """Build sessions backed by an in-memory store with a fast debounce."""

    def factory(session_id: str = "s-1", **overrides: Any) -> StreamSession:
        store = overrides.pop("store", None) or LocalDocumentStore.in_memory()

        async def write_document(request: SaveDocumentRequest) -> DocumentDto:
            return store.save_document(request)

        options: dict[str, Any] = {
            "store": store,
            "writer": write_document,
            "catalog": SuggestionCatalog(),
            "events": SessionEventLog(),
            "debounce_seconds": 0.05,
            "save_retry_base_seconds": 0.0,
        }
        options.update(overrides)
        return StreamSession(session_id, **options)

    return factory
