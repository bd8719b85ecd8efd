"""Stream session: consume one conversation's delta stream and own its artifacts."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from typing import Any

from studio.artifacts.state_machine import ArtifactStateMachine, MetadataDelta
from studio.confirmation.gate import ConfirmationGate
from studio.core.errors import (
    ConfirmationError,
    InvalidStateTransitionError,
    MalformedEventError,
    StreamDisconnectedError,
)
from studio.editor.catalog import SuggestionCatalog
from studio.editor.decorations import AppliedSuggestion
from studio.editor.document_editor import DocumentEditor
from studio.events.event_types import EventName
from studio.events.session_events import SessionEventLog
from studio.infra.db.local_store import LocalDocumentStore
from studio.infra.observability.logger import get_logger
from studio.persistence.controller import DocumentWriter, PersistenceController, SaveStatus
from studio.protocol.messages import (
    ArtifactView,
    DocumentDto,
    IngestResultDto,
    VersionChange,
    VersionDirection,
)
from studio.runtime.tool_ledger import ToolLedger
from studio.stream.decoder import DeltaDecoder, decode_stream
from studio.stream.deltas import (
    ClearDelta,
    CodeDelta,
    Delta,
    DocumentIdDelta,
    FinishDelta,
    HumanConfirmationRequest,
    HumanConfirmationResponse,
    ImageDelta,
    KindDelta,
    SheetDelta,
    StreamEnd,
    SuggestionDelta,
    TextDelta,
    TitleDelta,
    ToolInvocation,
)
from studio.stream.sse_parser import parse_sse_body

logger = get_logger(__name__)

_DISCONNECT = object()


class StreamSession:
    """Single-consumer delta pipeline for one session.

    Raw events are queued by `feed` and consumed in arrival order by one
    background task. The task suspends on confirmation waits; persistence
    writes run on their own tasks.
    """

    def __init__(
        self,
        session_id: str,
        *,
        store: LocalDocumentStore,
        writer: DocumentWriter,
        catalog: SuggestionCatalog,
        events: SessionEventLog,
        debounce_seconds: float = 1.0,
        save_max_attempts: int = 3,
        save_retry_base_seconds: float = 0.5,
        user_id: str = "local-user",
        decoder: DeltaDecoder | None = None,
    ) -> None:
        self.session_id = session_id
        self._store = store
        self._catalog = catalog
        self._events = events
        self._decoder = decoder or DeltaDecoder()
        self._persistence = PersistenceController(
            writer,
            debounce_seconds=debounce_seconds,
            max_attempts=save_max_attempts,
            retry_base_seconds=save_retry_base_seconds,
            user_id=user_id,
            on_written=self._on_written,
            on_stored=self._on_stored,
            on_status=self._on_save_status,
        )
        self._gate = ConfirmationGate()
        self._ledger = ToolLedger()
        self._artifacts: dict[str, ArtifactStateMachine] = {}
        self._editors: dict[str, DocumentEditor] = {}
        self._current_document_id: str | None = None
        self._pending_metadata: list[MetadataDelta] = []

        self._inbox: deque[Any] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._consumer: asyncio.Task | None = None
        self._blocked_on: str | None = None
        self._ended = False
        self._disconnected = False
        self._applied = 0
        self._discarded: list[str] = []
        self.errors: list[str] = []

    @property
    def persistence(self) -> PersistenceController:
        return self._persistence

    @property
    def gate(self) -> ConfirmationGate:
        return self._gate

    @property
    def ledger(self) -> ToolLedger:
        return self._ledger

    @property
    def current_document_id(self) -> str | None:
        return self._current_document_id

    @property
    def blocked_on(self) -> str | None:
        return self._blocked_on

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def document_ids(self) -> list[str]:
        return list(self._artifacts)

    def machine(self, document_id: str) -> ArtifactStateMachine | None:
        return self._artifacts.get(document_id)

    def editor(self, document_id: str) -> DocumentEditor | None:
        return self._editors.get(document_id)

    async def feed(self, events: list[Any]) -> IngestResultDto:
        """Queue raw events and wait until they are consumed or the gate blocks."""
        self._inbox.extend(events)
        if self._disconnected:
            self._disconnected = False
            self._ended = False
        self._start()
        await self._drain()
        return self._ingest_result(len(events))

    async def feed_sse(self, body: str) -> IngestResultDto:
        return await self.feed(list(parse_sse_body(body)))

    async def disconnect(self) -> IngestResultDto:
        """Close the upstream source; without a prior `end` this is a lost connection."""
        if self._blocked_on is not None:
            # Unread events are lost with the connection; the parked consumer
            # wakes with StreamDisconnectedError from the gate.
            self._inbox.clear()
            self._idle.clear()
            self._discarded.extend(self._gate.discard_all())
            await self._idle.wait()
            return self._ingest_result(0)
        self._inbox.append(_DISCONNECT)
        self._start()
        await self._drain()
        return self._ingest_result(0)

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def cancel(self) -> None:
        """Unmount: stop reading and drop pending debounced saves."""
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._inbox.clear()
        for document_id in self._artifacts:
            self._persistence.cancel(document_id)
        self._gate.discard_all()
        self._ledger.discard_open()
        self._blocked_on = None
        self._idle.set()
        self._push("session.cancelled", {"documents": list(self._artifacts)})
        logger.info("session.cancelled session_id=%s documents=%s", self.session_id, len(self._artifacts))

    async def resolve(self, call_id: str, decisions: dict[str, Any]) -> bool:
        """Merge UI decisions for `call_id`; waits for the stream to move on once resolved."""
        resolved = self._gate.submit(call_id, decisions)
        await self._after_decision(call_id, resolved)
        return resolved

    async def resolve_bulk(self, call_id: str, decision: Any, *, item_id: str | None = None) -> bool:
        resolved = self._gate.decide_all(call_id, decision, item_id=item_id)
        await self._after_decision(call_id, resolved)
        return resolved

    async def resolve_attribute(self, call_id: str, item_id: str, attribute_id: str, decision: Any) -> bool:
        resolved = self._gate.decide_attribute(call_id, item_id, attribute_id, decision)
        await self._after_decision(call_id, resolved)
        return resolved

    def view(self, document_id: str) -> ArtifactView | None:
        machine = self._artifacts.get(document_id)
        if machine is None:
            return None
        editor = self._editors.get(document_id)
        decorations = editor.decorations.to_list() if editor is not None else []
        return machine.view(decorations=decorations, save_status=self._persistence.status(document_id))

    def navigate_version(self, document_id: str, direction: VersionDirection) -> bool:
        moved = self._require_machine(document_id).navigate_version(direction)
        self._publish_artifact(document_id)
        return moved

    def change_version(self, document_id: str, change: VersionChange) -> bool:
        changed = self._require_machine(document_id).handle_version_change(change)
        self._publish_artifact(document_id)
        return changed

    async def restore_version(self, document_id: str, index: int) -> ArtifactView:
        """Rewind to version `index` in memory and in the store.

        Pending edits are dropped and running writes finish first, so no
        save for a dropped version lands after the rewind.
        """
        machine = self._require_machine(document_id)
        machine.ensure_restorable(index)
        self._persistence.cancel(document_id)
        await self._persistence.wait_idle(document_id)
        machine.restore_version(index)
        # Versions whose write failed have no stored row; keep rows up to the newest one that did.
        keep_until = machine.stored_through(index) or ""
        removed = self._store.delete_documents_after(document_id, keep_until)
        logger.info(
            "session.version.restored session_id=%s document_id=%s index=%s removed_rows=%s",
            self.session_id,
            document_id,
            index,
            removed,
        )
        self._editors[document_id].sync_from_machine()
        self._publish_artifact(document_id)
        return self._view_or_raise(document_id)

    def edit_content(self, document_id: str, content: str, *, debounce: bool = True) -> ArtifactView:
        self._require_editor(document_id).edit(content, debounce=debounce)
        self._publish_artifact(document_id)
        return self._view_or_raise(document_id)

    def apply_suggestion(self, document_id: str, suggestion_id: str) -> AppliedSuggestion:
        applied = self._require_editor(document_id).apply_suggestion(suggestion_id)
        self._catalog.remove(document_id, suggestion_id)
        self._publish_artifact(document_id)
        return applied

    async def close(self) -> None:
        await self.cancel()
        await self._persistence.close()

    def _start(self) -> None:
        self._idle.clear()
        self._wakeup.set()
        if self._consumer is None or self._consumer.done():
            if self._consumer is None:
                self._push("session.started", {"session_id": self.session_id})
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def _drain(self) -> None:
        if self._blocked_on is not None:
            self._take_buffered_response(self._blocked_on)
            if not self._gate.is_resolved(self._blocked_on):
                # Consumer is parked on a decision; events stay queued behind it.
                self._idle.set()
                return
        await self._idle.wait()

    def _ingest_result(self, accepted: int) -> IngestResultDto:
        return IngestResultDto(
            session_id=self.session_id,
            accepted=accepted,
            awaiting_confirmation=[entry.call_id for entry in self._gate.pending()],
            closed=self._ended or self._disconnected,
        )

    async def _source(self) -> AsyncIterator[Any]:
        while True:
            if self._inbox:
                item = self._inbox.popleft()
                if item is _DISCONNECT:
                    if self._ended:
                        return
                    raise StreamDisconnectedError(f"stream_closed_without_end:{self.session_id}")
                yield item
                continue
            self._wakeup.clear()
            self._idle.set()
            await self._wakeup.wait()

    async def _consume(self) -> None:
        try:
            async for delta in decode_stream(self._source(), self._decoder):
                await self._dispatch(delta)
        except StreamDisconnectedError as exc:
            self._handle_disconnect(str(exc))
        finally:
            self._blocked_on = None
            self._idle.set()

    async def _dispatch(self, delta: Delta) -> None:
        self._applied += 1
        if self._ended and not isinstance(delta, StreamEnd):
            self._ended = False
        if isinstance(delta, DocumentIdDelta):
            self._bind_document(delta)
        elif isinstance(delta, (TitleDelta, KindDelta, ClearDelta)):
            self._apply_metadata(delta)
        elif isinstance(delta, (TextDelta, CodeDelta, ImageDelta, SheetDelta, FinishDelta)):
            self._apply_content(delta)
        elif isinstance(delta, SuggestionDelta):
            self._add_suggestion(delta)
        elif isinstance(delta, ToolInvocation):
            self._handle_tool(delta)
        elif isinstance(delta, HumanConfirmationRequest):
            await self._handle_confirmation_request(delta)
        elif isinstance(delta, HumanConfirmationResponse):
            self._handle_confirmation_response(delta)
        elif isinstance(delta, StreamEnd):
            self._ended = True
            self._push("session.ended", {"applied": self._applied})
            logger.info("session.stream.ended session_id=%s applied=%s", self.session_id, self._applied)

    def _bind_document(self, delta: DocumentIdDelta) -> None:
        document_id = delta.content
        machine = self._artifacts.get(document_id)
        if machine is None:
            machine = ArtifactStateMachine(document_id)
            machine.seed_versions(self._store.get_documents_by_id(document_id))
            self._artifacts[document_id] = machine
            self._editors[document_id] = DocumentEditor(
                machine,
                self._persistence,
                suggestions=self._catalog.for_document(document_id),
            )
            logger.info(
                "session.artifact.bound session_id=%s document_id=%s seeded_versions=%s",
                self.session_id,
                document_id,
                machine.version_count,
            )
        self._current_document_id = document_id
        machine.apply_metadata_delta(delta)
        pending, self._pending_metadata = self._pending_metadata, []
        for item in pending:
            machine.apply_metadata_delta(item)
        self._publish_artifact(document_id)

    def _apply_metadata(self, delta: TitleDelta | KindDelta | ClearDelta) -> None:
        document_id = self._current_document_id
        if document_id is None:
            self._pending_metadata.append(delta)
            return
        self._artifacts[document_id].apply_metadata_delta(delta)
        self._editors[document_id].sync_from_machine()
        self._publish_artifact(document_id)

    def _apply_content(self, delta: TextDelta | CodeDelta | ImageDelta | SheetDelta | FinishDelta) -> None:
        document_id = self._current_document_id
        if document_id is None:
            logger.warning("session.delta.unbound session_id=%s type=%s", self.session_id, delta.type)
            return
        machine = self._artifacts[document_id]
        try:
            machine.apply_content_delta(delta)
        except InvalidStateTransitionError as exc:
            self.errors.append(str(exc))
            logger.error("session.delta.rejected session_id=%s error=%s", self.session_id, exc)
            self._push("artifact.updated", {"document_id": document_id, "error": str(exc)})
            return
        self._editors[document_id].sync_from_machine()
        if isinstance(delta, FinishDelta):
            self._persist_generation(machine)
        self._publish_artifact(document_id)

    def _add_suggestion(self, delta: SuggestionDelta) -> None:
        suggestion = delta.suggestion
        self._catalog.add(suggestion)
        editor = self._editors.get(suggestion.document_id)
        if editor is not None:
            editor.add_suggestion(suggestion)
        self._push(
            "suggestions.updated",
            {"document_id": suggestion.document_id, "suggestion": suggestion.model_dump(mode="json")},
        )

    def _handle_tool(self, delta: ToolInvocation) -> None:
        if delta.state == "call":
            record = self._ledger.record_call(delta)
            if not record.requires_confirmation:
                self._ledger.mark(delta.call_id, "resumed")
            self._push("tool.updated", record.to_dto().model_dump(mode="json"))
            return

        record = self._ledger.get(delta.call_id)
        gated = (record is not None and record.requires_confirmation) or self._gate.get(delta.call_id) is not None
        if gated and not self._gate.is_resolved(delta.call_id):
            logger.warning(
                "session.tool.result_dropped session_id=%s call_id=%s reason=unresolved_confirmation",
                self.session_id,
                delta.call_id,
            )
            return
        record = self._ledger.record_result(delta)
        response = self._gate.response(delta.call_id)
        if response is not None:
            record.decisions = dict(response.decisions)
        self._push("tool.updated", record.to_dto().model_dump(mode="json"))

    async def _handle_confirmation_request(self, delta: HumanConfirmationRequest) -> None:
        try:
            entry = self._gate.open(delta)
        except ConfirmationError as exc:
            logger.warning("session.confirmation.rejected session_id=%s error=%s", self.session_id, exc)
            return
        if self._ledger.get(delta.call_id) is None:
            self._ledger.record_call(
                ToolInvocation(call_id=delta.call_id, name="confirmation", requires_confirmation=True)
            )
        self._ledger.mark(delta.call_id, "awaiting_confirmation", requires_confirmation=True)
        self._push("confirmation.requested", entry.to_dto().model_dump(mode="json"))

        self._take_buffered_response(delta.call_id)
        if not self._gate.is_resolved(delta.call_id):
            self._blocked_on = delta.call_id
            self._idle.set()
            logger.info("session.blocked session_id=%s call_id=%s", self.session_id, delta.call_id)
            try:
                response = await self._gate.wait(delta.call_id)
            finally:
                self._blocked_on = None
        else:
            response = self._gate.response(delta.call_id)
        if response is None:
            return
        self._ledger.mark(delta.call_id, "resumed", decisions=dict(response.decisions))
        self._push("confirmation.resolved", response.model_dump(mode="json"))

    def _handle_confirmation_response(self, delta: HumanConfirmationResponse) -> None:
        if not self._gate.is_pending(delta.call_id):
            logger.warning(
                "session.confirmation.unexpected_response session_id=%s call_id=%s",
                self.session_id,
                delta.call_id,
            )
            return
        try:
            self._gate.apply_response(delta)
        except ConfirmationError as exc:
            logger.warning("session.confirmation.rejected session_id=%s error=%s", self.session_id, exc)

    def _take_buffered_response(self, call_id: str) -> None:
        """Apply a response for `call_id` that already sits in the inbox."""
        for raw in list(self._inbox):
            if raw is _DISCONNECT:
                break
            try:
                candidate = self._decoder.decode(raw)
            except MalformedEventError:
                continue
            if isinstance(candidate, HumanConfirmationResponse) and candidate.call_id == call_id:
                self._inbox.remove(raw)
                try:
                    self._gate.apply_response(candidate)
                except ConfirmationError as exc:
                    logger.warning("session.confirmation.rejected session_id=%s error=%s", self.session_id, exc)
                return

    async def _after_decision(self, call_id: str, resolved: bool) -> None:
        entry = self._gate.get(call_id)
        if entry is not None:
            self._push("confirmation.requested", entry.to_dto().model_dump(mode="json"))
        if resolved and self._blocked_on == call_id:
            self._idle.clear()
            await self._idle.wait()

    def _handle_disconnect(self, reason: str) -> None:
        self._disconnected = True
        finished: list[str] = []
        for document_id, machine in self._artifacts.items():
            if machine.mark_disconnected():
                finished.append(document_id)
                self._editors[document_id].sync_from_machine()
                self._persist_generation(machine)
                self._publish_artifact(document_id)
        discarded = [*self._discarded, *self._gate.discard_all()]
        self._discarded = []
        self._ledger.discard_open()
        self._push(
            "session.disconnected",
            {"reason": reason, "finished": finished, "discarded_confirmations": discarded},
        )
        logger.warning(
            "session.disconnected session_id=%s finished=%s discarded=%s",
            self.session_id,
            len(finished),
            len(discarded),
        )

    def _persist_generation(self, machine: ArtifactStateMachine) -> None:
        self._persistence.save(
            machine.document_id,
            machine.content,
            debounce=False,
            title=machine.title,
            kind=machine.kind,
            record_version=False,
        )

    def _on_written(self, document: DocumentDto) -> None:
        machine = self._artifacts.get(document.id)
        if machine is None:
            return
        machine.record_saved_version(document)
        self._publish_artifact(document.id)

    def _on_stored(self, document: DocumentDto) -> None:
        machine = self._artifacts.get(document.id)
        if machine is not None:
            machine.mark_stored(document)

    def _on_save_status(self, document_id: str, status: SaveStatus) -> None:
        self._push("save.status", {"document_id": document_id, "status": status})

    def _publish_artifact(self, document_id: str) -> None:
        view = self.view(document_id)
        if view is not None:
            self._push("artifact.updated", view.model_dump(mode="json"))

    def _push(self, event_name: EventName, data: dict[str, Any]) -> None:
        self._events.record(self.session_id, event_name, data)

    def _require_machine(self, document_id: str) -> ArtifactStateMachine:
        machine = self._artifacts.get(document_id)
        if machine is None:
            raise KeyError(document_id)
        return machine

    def _require_editor(self, document_id: str) -> DocumentEditor:
        editor = self._editors.get(document_id)
        if editor is None:
            raise KeyError(document_id)
        return editor

    def _view_or_raise(self, document_id: str) -> ArtifactView:
        view = self.view(document_id)
        if view is None:
            raise KeyError(document_id)
        return view
