"""Confirmation gate: hold gated tool calls until every required decision exists."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from studio.core.errors import ConfirmationError, StreamDisconnectedError
from studio.infra.observability.logger import get_logger
from studio.protocol.messages import ConfirmationItem, DecisionType, PendingConfirmationDto
from studio.stream.deltas import HumanConfirmationRequest, HumanConfirmationResponse

logger = get_logger(__name__)

GateStatus = Literal["awaiting", "resolved", "discarded"]


@dataclass
class PendingConfirmation:
    """Decisions collected so far for one gated call."""

    call_id: str
    items: tuple[ConfirmationItem, ...]
    title: str | None = None
    decisions: dict[str, DecisionType] = field(default_factory=dict)
    status: GateStatus = "awaiting"
    response: HumanConfirmationResponse | None = None
    waiter: asyncio.Future | None = None

    def known_ids(self) -> set[str]:
        ids: set[str] = set()
        for item in self.items:
            ids.add(item.id)
            ids.update(attribute.id for attribute in item.attributes)
        return ids

    def item(self, item_id: str) -> ConfirmationItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise ConfirmationError(f"unknown_item:{self.call_id}:{item_id}")

    def effective_decision(self, item: ConfirmationItem) -> DecisionType | None:
        explicit = self.decisions.get(item.id)
        if explicit is not None or not item.attributes:
            return explicit
        required = item.required_attribute_ids
        if not required or any(key not in self.decisions for key in required):
            return None
        attribute_decisions = [self.decisions[a.id] for a in item.attributes if a.id in self.decisions]
        return "accepted" if "accepted" in attribute_decisions else "rejected"

    def missing(self) -> list[str]:
        missing: list[str] = []
        for item in self.items:
            if self.effective_decision(item) is None:
                missing.append(item.id)
            missing.extend(key for key in item.required_attribute_ids if key not in self.decisions)
        return missing

    def to_dto(self) -> PendingConfirmationDto:
        return PendingConfirmationDto(
            call_id=self.call_id,
            title=self.title,
            items=list(self.items),
            decisions=dict(self.decisions),
            missing=self.missing(),
        )


class ConfirmationGate:
    """Per-call `awaiting -> resolved` gate with no timeout.

    Decisions may arrive per item, per attribute, in bulk for one parent, or
    as a full response; the gate resolves once nothing required is missing.
    """

    def __init__(
        self,
        *,
        on_resolved: Callable[[HumanConfirmationResponse], None] | None = None,
    ) -> None:
        self._entries: dict[str, PendingConfirmation] = {}
        self._on_resolved = on_resolved

    def open(self, request: HumanConfirmationRequest) -> PendingConfirmation:
        existing = self._entries.get(request.call_id)
        if existing is not None and existing.status == "awaiting":
            raise ConfirmationError(f"already_pending:{request.call_id}")
        entry = PendingConfirmation(call_id=request.call_id, items=request.items, title=request.title)
        self._entries[request.call_id] = entry
        logger.info(
            "gate.opened call_id=%s items=%s required=%s",
            request.call_id,
            len(request.items),
            len(entry.missing()),
        )
        return entry

    def get(self, call_id: str) -> PendingConfirmation | None:
        return self._entries.get(call_id)

    def is_pending(self, call_id: str) -> bool:
        entry = self._entries.get(call_id)
        return entry is not None and entry.status == "awaiting"

    def is_resolved(self, call_id: str) -> bool:
        entry = self._entries.get(call_id)
        return entry is not None and entry.status == "resolved"

    def pending(self) -> list[PendingConfirmation]:
        return [entry for entry in self._entries.values() if entry.status == "awaiting"]

    def missing(self, call_id: str) -> list[str]:
        return self._awaiting(call_id).missing()

    def decide(self, call_id: str, item_id: str, decision: DecisionType) -> bool:
        """Record a decision for one top-level item or one attribute id."""
        return self.submit(call_id, {item_id: decision})

    def decide_attribute(
        self,
        call_id: str,
        item_id: str,
        attribute_id: str,
        decision: DecisionType,
    ) -> bool:
        entry = self._awaiting(call_id)
        item = entry.item(item_id)
        if attribute_id not in {attribute.id for attribute in item.attributes}:
            raise ConfirmationError(f"unknown_attribute:{call_id}:{attribute_id}")
        return self.submit(call_id, {attribute_id: decision})

    def decide_all(self, call_id: str, decision: DecisionType, *, item_id: str | None = None) -> bool:
        """Bulk accept/reject one parent item and its attributes, or every item."""
        entry = self._awaiting(call_id)
        items = [entry.item(item_id)] if item_id is not None else list(entry.items)
        decisions: dict[str, DecisionType] = {}
        for item in items:
            decisions[item.id] = decision
            for attribute in item.attributes:
                decisions[attribute.id] = decision
        return self.submit(call_id, decisions)

    def submit(self, call_id: str, decisions: dict[str, DecisionType]) -> bool:
        """Merge decisions; returns True once the call resolves."""
        entry = self._awaiting(call_id)
        unknown = sorted(set(decisions) - entry.known_ids())
        if unknown:
            raise ConfirmationError(f"unknown_decision_ids:{call_id}:{','.join(unknown)}")
        entry.decisions.update(decisions)
        if entry.missing():
            logger.info(
                "gate.partial call_id=%s decided=%s missing=%s",
                call_id,
                len(entry.decisions),
                len(entry.missing()),
            )
            return False
        self._resolve(entry)
        return True

    def apply_response(self, response: HumanConfirmationResponse) -> bool:
        return self.submit(response.call_id, dict(response.decisions))

    def response(self, call_id: str) -> HumanConfirmationResponse | None:
        entry = self._entries.get(call_id)
        return entry.response if entry is not None else None

    async def wait(self, call_id: str) -> HumanConfirmationResponse:
        """Suspend until `call_id` resolves; raises if the stream disconnects first."""
        entry = self._entries.get(call_id)
        if entry is None:
            raise ConfirmationError(f"unknown_call:{call_id}")
        if entry.status == "resolved" and entry.response is not None:
            return entry.response
        if entry.status == "discarded":
            raise StreamDisconnectedError(f"confirmation_discarded:{call_id}")
        if entry.waiter is None:
            entry.waiter = asyncio.get_running_loop().create_future()
        return await asyncio.shield(entry.waiter)

    def discard_all(self) -> list[str]:
        """Drop every awaiting request; used when the stream disconnects."""
        discarded: list[str] = []
        for entry in self._entries.values():
            if entry.status != "awaiting":
                continue
            entry.status = "discarded"
            discarded.append(entry.call_id)
            if entry.waiter is not None and not entry.waiter.done():
                entry.waiter.set_exception(StreamDisconnectedError(f"confirmation_discarded:{entry.call_id}"))
                # Mark retrieved so an unawaited waiter does not warn at GC.
                entry.waiter.exception()
        if discarded:
            logger.warning("gate.discarded call_ids=%s", ",".join(discarded))
        return discarded

    def _awaiting(self, call_id: str) -> PendingConfirmation:
        entry = self._entries.get(call_id)
        if entry is None:
            raise ConfirmationError(f"unknown_call:{call_id}")
        if entry.status != "awaiting":
            raise ConfirmationError(f"not_pending:{call_id}:{entry.status}")
        return entry

    def _resolve(self, entry: PendingConfirmation) -> None:
        decisions = dict(entry.decisions)
        for item in entry.items:
            derived = entry.effective_decision(item)
            if derived is not None:
                decisions.setdefault(item.id, derived)
        entry.status = "resolved"
        entry.response = HumanConfirmationResponse(call_id=entry.call_id, decisions=decisions)
        logger.info("gate.resolved call_id=%s decisions=%s", entry.call_id, len(decisions))
        if entry.waiter is not None and not entry.waiter.done():
            entry.waiter.set_result(entry.response)
        if self._on_resolved is not None:
            self._on_resolved(entry.response)
