"""Composition layer: build and hold long-lived service objects for dependency injection."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from studio.core.config import Settings
from studio.editor.catalog import SuggestionCatalog
from studio.events.session_events import SessionEventLog
from studio.infra.db.local_store import LocalDocumentStore
from studio.protocol.messages import DocumentDto, SaveDocumentRequest
from studio.runtime.session import StreamSession
from studio.runtime.session_store import SessionStore


@dataclass
class AppContainer:
    """Container object attached to FastAPI app state."""

    settings: Settings
    store: LocalDocumentStore
    catalog: SuggestionCatalog
    events: SessionEventLog
    sessions: SessionStore


def build_container(settings: Settings) -> AppContainer:
    """Construct runtime dependencies in one place."""
    if settings.document_store_in_memory:
        store = LocalDocumentStore.in_memory()
    else:
        store = LocalDocumentStore.from_jsonl(settings.document_store_jsonl)
    catalog = SuggestionCatalog(seed_file=settings.suggestion_file)
    events = SessionEventLog(max_events_per_session=settings.session_event_limit)

    async def write_document(request: SaveDocumentRequest) -> DocumentDto:
        return await asyncio.to_thread(store.save_document, request)

    def new_session(session_id: str) -> StreamSession:
        return StreamSession(
            session_id,
            store=store,
            writer=write_document,
            catalog=catalog,
            events=events,
            debounce_seconds=settings.save_debounce_seconds,
            save_max_attempts=settings.save_max_attempts,
            save_retry_base_seconds=settings.save_retry_base_seconds,
            user_id=settings.default_user_id,
        )

    return AppContainer(
        settings=settings,
        store=store,
        catalog=catalog,
        events=events,
        sessions=SessionStore(new_session),
    )
