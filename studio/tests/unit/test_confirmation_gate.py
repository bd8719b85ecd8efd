"""Unit tests for confirmation gating, partial decisions and bulk actions."""

from __future__ import annotations

import asyncio

import pytest

from studio.confirmation.gate import ConfirmationGate
from studio.core.errors import ConfirmationError, StreamDisconnectedError
from studio.stream.deltas import HumanConfirmationRequest, HumanConfirmationResponse


def _request(call_id: str = "call-1") -> HumanConfirmationRequest:
    return HumanConfirmationRequest.model_validate(
        {
            "call_id": call_id,
            "items": [
                {"id": "a", "name": "Create task A"},
                {"id": "b", "name": "Create task B"},
                {"id": "c", "name": "Create task C"},
            ],
        }
    )


def _request_with_attributes() -> HumanConfirmationRequest:
    return HumanConfirmationRequest.model_validate(
        {
            "call_id": "call-2",
            "items": [
                {
                    "id": "task",
                    "name": "Update task",
                    "attributes": [
                        {"label": "due", "old": "Mon", "new": "Fri"},
                        {"label": "owner", "old": "ann", "new": "bob"},
                        {"label": "note", "new": "fyi", "required": False},
                    ],
                }
            ],
        }
    )


def test_three_items_resolve_only_after_every_decision() -> None:
    emitted: list[HumanConfirmationResponse] = []
    gate = ConfirmationGate(on_resolved=emitted.append)
    gate.open(_request())

    assert gate.decide("call-1", "a", "accepted") is False
    assert gate.decide("call-1", "b", "rejected") is False
    assert gate.is_pending("call-1") is True
    assert gate.missing("call-1") == ["c"]
    assert emitted == []

    assert gate.decide("call-1", "c", "accepted") is True
    assert gate.is_resolved("call-1") is True
    assert emitted[0].decisions == {"a": "accepted", "b": "rejected", "c": "accepted"}


def test_attributes_must_be_decided_and_parent_is_derived() -> None:
    gate = ConfirmationGate()
    gate.open(_request_with_attributes())

    assert gate.missing("call-2") == ["task", "task.due", "task.owner"]
    assert gate.decide_attribute("call-2", "task", "task.due", "rejected") is False
    assert gate.decide_attribute("call-2", "task", "task.owner", "accepted") is True

    response = gate.response("call-2")
    assert response is not None
    assert response.decisions == {
        "task.due": "rejected",
        "task.owner": "accepted",
        "task": "accepted",
    }


def test_bulk_reject_covers_parent_and_attributes() -> None:
    gate = ConfirmationGate()
    gate.open(_request_with_attributes())

    assert gate.decide_all("call-2", "rejected", item_id="task") is True
    decisions = gate.response("call-2").decisions
    assert set(decisions) == {"task", "task.due", "task.owner", "task.note"}
    assert set(decisions.values()) == {"rejected"}


def test_unknown_ids_and_closed_calls_are_rejected() -> None:
    gate = ConfirmationGate()
    gate.open(_request())

    with pytest.raises(ConfirmationError):
        gate.decide("call-1", "zzz", "accepted")
    with pytest.raises(ConfirmationError):
        gate.decide("missing-call", "a", "accepted")

    gate.decide_all("call-1", "accepted")
    with pytest.raises(ConfirmationError):
        gate.decide("call-1", "a", "rejected")


def test_open_twice_while_pending_is_an_error() -> None:
    gate = ConfirmationGate()
    gate.open(_request())

    with pytest.raises(ConfirmationError):
        gate.open(_request())


@pytest.mark.asyncio
async def test_wait_unblocks_when_last_decision_arrives() -> None:
    gate = ConfirmationGate()
    gate.open(_request())
    waiter = asyncio.create_task(gate.wait("call-1"))
    await asyncio.sleep(0)

    gate.submit("call-1", {"a": "accepted", "b": "accepted"})
    await asyncio.sleep(0)
    assert waiter.done() is False

    gate.apply_response(HumanConfirmationResponse(call_id="call-1", decisions={"c": "rejected"}))
    response = await asyncio.wait_for(waiter, timeout=1)

    assert response.decisions["c"] == "rejected"


@pytest.mark.asyncio
async def test_discard_all_fails_waiters_on_disconnect() -> None:
    gate = ConfirmationGate()
    gate.open(_request())
    waiter = asyncio.create_task(gate.wait("call-1"))
    await asyncio.sleep(0)

    assert gate.discard_all() == ["call-1"]

    with pytest.raises(StreamDisconnectedError):
        await asyncio.wait_for(waiter, timeout=1)
    assert gate.pending() == []
