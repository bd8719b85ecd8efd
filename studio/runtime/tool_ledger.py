"""Tool ledger: per-session record of tool invocations and their gate state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from studio.protocol.messages import DecisionType, ToolCallDto
from studio.stream.deltas import ToolInvocation

ToolCallState = Literal["call", "awaiting_confirmation", "resumed", "result", "discarded"]


@dataclass
class ToolCallRecord:
    call_id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    state: ToolCallState = "call"
    requires_confirmation: bool = False
    result: Any = None
    decisions: dict[str, DecisionType] | None = None

    def to_dto(self) -> ToolCallDto:
        return ToolCallDto(
            call_id=self.call_id,
            name=self.name,
            args=dict(self.args),
            state=self.state,
            requires_confirmation=self.requires_confirmation,
            result=self.result,
            decisions=dict(self.decisions) if self.decisions is not None else None,
        )


class ToolLedger:
    """Ordered tool calls keyed by call_id."""

    def __init__(self) -> None:
        self._records: dict[str, ToolCallRecord] = {}

    def get(self, call_id: str) -> ToolCallRecord | None:
        return self._records.get(call_id)

    def record_call(self, invocation: ToolInvocation) -> ToolCallRecord:
        record = self._records.get(invocation.call_id)
        if record is None:
            record = ToolCallRecord(call_id=invocation.call_id, name=invocation.name)
            self._records[invocation.call_id] = record
        record.args = dict(invocation.args)
        record.requires_confirmation = record.requires_confirmation or invocation.requires_confirmation
        record.state = "call"
        return record

    def mark(self, call_id: str, state: ToolCallState, **changes: Any) -> ToolCallRecord | None:
        record = self._records.get(call_id)
        if record is None:
            return None
        record.state = state
        for key, value in changes.items():
            setattr(record, key, value)
        return record

    def record_result(self, invocation: ToolInvocation) -> ToolCallRecord:
        record = self._records.get(invocation.call_id)
        if record is None:
            record = ToolCallRecord(
                call_id=invocation.call_id,
                name=invocation.name,
                args=dict(invocation.args),
            )
            self._records[invocation.call_id] = record
        record.state = "result"
        record.result = invocation.result
        return record

    def discard_open(self) -> list[str]:
        """Mark every call still waiting on a decision as discarded."""
        discarded: list[str] = []
        for record in self._records.values():
            if record.state == "awaiting_confirmation" or (
                record.requires_confirmation and record.state == "call"
            ):
                record.state = "discarded"
                discarded.append(record.call_id)
        return discarded

    def to_list(self) -> list[ToolCallDto]:
        return [record.to_dto() for record in self._records.values()]
