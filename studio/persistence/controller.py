"""Persistence controller: debounced and immediate document writes, one in flight per document."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from studio.core.errors import PersistenceWriteError
from studio.infra.observability.logger import get_logger
from studio.protocol.messages import ArtifactKind, DocumentDto, SaveDocumentRequest

logger = get_logger(__name__)

SaveStatus = Literal["saved", "saving", "not_saved"]
DocumentWriter = Callable[[SaveDocumentRequest], Awaitable[DocumentDto]]


@dataclass(frozen=True)
class _PendingWrite:
    request: SaveDocumentRequest
    record_version: bool = True


@dataclass
class _DocumentSlot:
    document_id: str
    debounced: _PendingWrite | None = None
    queued: _PendingWrite | None = None
    timer: asyncio.Task | None = None
    inflight: asyncio.Task | None = None
    status: SaveStatus = "saved"
    last_error: PersistenceWriteError | None = None
    writes: int = 0


class PersistenceController:
    """Serialize writes per document.

    `save(..., debounce=True)` restarts a quiet-window timer and only the
    latest content is written when it fires. `debounce=False` cancels that
    timer and writes now. Requests arriving while a write is in flight are
    coalesced into one follow-up write (latest wins).
    """

    def __init__(
        self,
        writer: DocumentWriter,
        *,
        debounce_seconds: float = 1.0,
        max_attempts: int = 3,
        retry_base_seconds: float = 0.5,
        user_id: str = "local-user",
        on_written: Callable[[DocumentDto], None] | None = None,
        on_stored: Callable[[DocumentDto], None] | None = None,
        on_status: Callable[[str, SaveStatus], None] | None = None,
    ) -> None:
        self._writer = writer
        self._debounce_seconds = max(0.0, debounce_seconds)
        self._max_attempts = max(1, max_attempts)
        self._retry_base_seconds = max(0.0, retry_base_seconds)
        self._user_id = user_id
        self._on_written = on_written
        self._on_stored = on_stored
        self._on_status = on_status
        self._slots: dict[str, _DocumentSlot] = {}

    def save(
        self,
        document_id: str,
        content: str,
        *,
        debounce: bool = True,
        title: str = "",
        kind: ArtifactKind = "text",
        user_id: str | None = None,
        record_version: bool = True,
    ) -> SaveStatus:
        """Schedule a write; must be called from a running event loop.

        `record_version=False` persists content whose version already exists
        in memory (a finished generation); its write reports to `on_stored`
        instead of `on_written`.
        """
        request = SaveDocumentRequest(
            id=document_id,
            content=content,
            title=title,
            kind=kind,
            user_id=user_id or self._user_id,
        )
        pending = _PendingWrite(request=request, record_version=record_version)
        slot = self._slots.setdefault(document_id, _DocumentSlot(document_id=document_id))
        self._cancel_timer(slot)
        if debounce:
            slot.debounced = pending
            slot.timer = asyncio.get_running_loop().create_task(self._fire_after_quiet(slot))
        else:
            if slot.debounced is not None:
                logger.info("persistence.debounce.cancelled document_id=%s", document_id)
            slot.debounced = None
            slot.queued = pending
            self._kick(slot)
        self._set_status(slot, "saving")
        return slot.status

    def status(self, document_id: str) -> SaveStatus:
        slot = self._slots.get(document_id)
        return slot.status if slot is not None else "saved"

    def last_error(self, document_id: str) -> PersistenceWriteError | None:
        slot = self._slots.get(document_id)
        return slot.last_error if slot is not None else None

    def write_count(self, document_id: str) -> int:
        slot = self._slots.get(document_id)
        return slot.writes if slot is not None else 0

    def has_pending(self, document_id: str) -> bool:
        slot = self._slots.get(document_id)
        if slot is None:
            return False
        busy = slot.inflight is not None and not slot.inflight.done()
        return busy or slot.debounced is not None or slot.queued is not None

    async def wait_idle(self, document_id: str) -> SaveStatus:
        """Wait for queued and in-flight writes; debounced content keeps waiting."""
        slot = self._slots.get(document_id)
        if slot is None:
            return "saved"
        while slot.inflight is not None and not slot.inflight.done():
            await asyncio.shield(slot.inflight)
        return slot.status

    async def flush(self, document_id: str | None = None) -> None:
        """Write debounced content now and wait for every write to finish."""
        targets = [document_id] if document_id is not None else list(self._slots)
        for key in targets:
            slot = self._slots.get(key)
            if slot is None:
                continue
            self._cancel_timer(slot)
            if slot.debounced is not None:
                slot.queued = slot.debounced
                slot.debounced = None
                self._kick(slot)
            await self.wait_idle(key)

    def cancel(self, document_id: str) -> bool:
        """Drop a pending debounced save (unmount); in-flight writes finish."""
        slot = self._slots.get(document_id)
        if slot is None:
            return False
        dropped = slot.debounced is not None
        self._cancel_timer(slot)
        slot.debounced = None
        if dropped:
            logger.info("persistence.debounce.dropped document_id=%s", document_id)
            if slot.inflight is None or slot.inflight.done():
                self._set_status(slot, "not_saved" if slot.last_error else "saved")
        return dropped

    async def close(self) -> None:
        for document_id in list(self._slots):
            self.cancel(document_id)
        inflight = [slot.inflight for slot in self._slots.values() if slot.inflight is not None]
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)

    async def _fire_after_quiet(self, slot: _DocumentSlot) -> None:
        await asyncio.sleep(self._debounce_seconds)
        slot.timer = None
        if slot.debounced is None:
            return
        slot.queued = slot.debounced
        slot.debounced = None
        self._kick(slot)

    def _kick(self, slot: _DocumentSlot) -> None:
        if slot.inflight is not None and not slot.inflight.done():
            return
        slot.inflight = asyncio.get_running_loop().create_task(self._drain(slot))

    async def _drain(self, slot: _DocumentSlot) -> None:
        while slot.queued is not None:
            pending = slot.queued
            slot.queued = None
            try:
                document = await self._write_with_retry(pending.request)
            except PersistenceWriteError as exc:
                slot.last_error = exc
                self._set_status(slot, "not_saved")
                continue
            slot.writes += 1
            slot.last_error = None
            callback = self._on_written if pending.record_version else self._on_stored
            if callback is not None:
                callback(document)
            if slot.queued is None and slot.debounced is None:
                self._set_status(slot, "saved")

    async def _write_with_retry(self, request: SaveDocumentRequest) -> DocumentDto:
        def log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            logger.warning(
                "persistence.write.retry document_id=%s attempt=%s delay=%.2f error=%s",
                request.id,
                retry_state.attempt_number,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
                outcome.exception() if outcome else None,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_base_seconds),
            retry=retry_if_exception_type(Exception),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    document = await self._writer(request)
        except Exception as exc:
            logger.error(
                "persistence.write.failed document_id=%s attempts=%s error=%s",
                request.id,
                self._max_attempts,
                exc,
            )
            raise PersistenceWriteError(request.id, self._max_attempts, exc) from exc
        return document

    def _cancel_timer(self, slot: _DocumentSlot) -> None:
        if slot.timer is not None and not slot.timer.done():
            slot.timer.cancel()
        slot.timer = None

    def _set_status(self, slot: _DocumentSlot, status: SaveStatus) -> None:
        if slot.status == status:
            return
        slot.status = status
        if self._on_status is not None:
            self._on_status(slot.document_id, status)
