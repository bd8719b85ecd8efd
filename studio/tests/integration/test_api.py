"""Integration tests for session ingest, artifact history, confirmations and SSE replay."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient


def _delta(delta_type: str, content: Any = "", **extra: Any) -> dict[str, Any]:
    return {"event": "delta", "data": {"type": delta_type, "content": content, **extra}}


def _end() -> dict[str, Any]:
    return {"event": "end", "data": {}}


def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.02)


@pytest.fixture
def client(tmp_path: Path, monkeypatch) -> TestClient:
    monkeypatch.setenv("DOCUMENT_STORE_JSONL", str(tmp_path / "documents.jsonl"))
    monkeypatch.setenv("DOCUMENT_STORE_IN_MEMORY", "false")
    monkeypatch.setenv("SAVE_DEBOUNCE_SECONDS", "0.05")
    monkeypatch.setenv("SAVE_RETRY_BASE_SECONDS", "0")
    monkeypatch.setenv("SSE_KEEPALIVE_SECONDS", "0.01")
    monkeypatch.delenv("SUGGESTION_FILE", raising=False)

    from studio.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client


def _snapshots(client: TestClient) -> int:
    return client.get("/health").json()["store"]["snapshots"]


def test_health(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["store"]["snapshots"] == 0


def test_stream_generation_and_suggestion_apply(client: TestClient) -> None:
    events = [
        _delta("id", "doc-1"),
        _delta("title", "Notes"),
        "not json at all",
        _delta("text-delta", "The cat"),
        _delta("text-delta", "The cat sat."),
        _delta("finish"),
        _delta(
            "suggestion",
            {"id": "sg-1", "documentId": "doc-1", "originalText": "cat", "suggestedText": "dog"},
        ),
        _end(),
    ]

    ingest = client.post("/api/v1/sessions/s-1/events", json=events)
    assert ingest.status_code == 200
    assert ingest.json()["accepted"] == len(events)
    assert ingest.json()["closed"] is True

    artifact = client.get("/api/v1/sessions/s-1/artifacts/doc-1").json()
    assert artifact["content"] == "The cat sat."
    assert artifact["status"] == "complete"
    assert [item["kind"] for item in artifact["decorations"]] == ["highlight", "widget"]

    applied = client.post("/api/v1/sessions/s-1/artifacts/doc-1/suggestions/sg-1/apply")
    assert applied.status_code == 200
    assert applied.json()["content"] == "The dog sat."
    assert applied.json()["decorations"] == []
    _wait_for(lambda: _snapshots(client) == 2)

    missing = client.post("/api/v1/sessions/s-1/artifacts/doc-1/suggestions/sg-1/apply")
    assert missing.status_code == 404

    detail = client.get("/api/v1/sessions/s-1").json()
    assert detail["documents"] == ["doc-1"]
    assert detail["ended"] is True


def test_versions_navigate_edit_and_restore(client: TestClient) -> None:
    client.post(
        "/api/v1/sessions/s-2/events",
        json=[_delta("id", "doc-2"), _delta("text-delta", "v1"), _delta("finish"), _end()],
    )
    _wait_for(lambda: _snapshots(client) == 1)
    client.post(
        "/api/v1/sessions/s-2/events",
        json=[_delta("clear"), _delta("text-delta", "v2"), _delta("finish"), _end()],
    )
    _wait_for(lambda: _snapshots(client) == 2)

    version = client.get("/api/v1/sessions/s-2/artifacts/doc-2/versions/1")
    assert version.status_code == 200
    assert version.json()["content"] == "v2"
    assert "+v2" in version.json()["diff"]
    assert client.get("/api/v1/sessions/s-2/artifacts/doc-2/versions/5").status_code == 404

    moved = client.post(
        "/api/v1/sessions/s-2/artifacts/doc-2/versions/navigate",
        json={"direction": "prev"},
    ).json()
    assert moved["moved"] is True
    assert moved["artifact"]["content"] == "v1"
    assert moved["artifact"]["is_current_version"] is False

    edit = client.post("/api/v1/sessions/s-2/artifacts/doc-2/content", json={"content": "nope"})
    assert edit.status_code == 409

    toggled = client.post(
        "/api/v1/sessions/s-2/artifacts/doc-2/versions/change",
        json={"change": "toggle"},
    ).json()
    assert toggled["artifact"]["mode"] == "diff"

    unconfirmed = client.post(
        "/api/v1/sessions/s-2/artifacts/doc-2/versions/restore",
        json={"index": 0},
    )
    assert unconfirmed.status_code == 422

    restored = client.post(
        "/api/v1/sessions/s-2/artifacts/doc-2/versions/restore",
        json={"index": 0, "confirm": True},
    )
    assert restored.status_code == 200
    assert restored.json()["content"] == "v1"
    assert restored.json()["version_count"] == 1
    assert _snapshots(client) == 1

    out_of_range = client.post(
        "/api/v1/sessions/s-2/artifacts/doc-2/versions/restore",
        json={"index": 3, "confirm": True},
    )
    assert out_of_range.status_code == 422

    edited = client.post(
        "/api/v1/sessions/s-2/artifacts/doc-2/content",
        json={"content": "v1 edited", "debounce": False},
    )
    assert edited.status_code == 200
    _wait_for(lambda: _snapshots(client) == 2)
    assert client.get("/api/v1/sessions/s-2/artifacts/doc-2").json()["version_count"] == 2


def test_confirmation_flow_and_tool_ledger(client: TestClient) -> None:
    events = [
        _delta("id", "doc-3"),
        {
            "event": "delta",
            "data": {
                "type": "tool-call",
                "tool_calls": {"callId": "c1", "name": "create_tasks", "requires_confirmation": True},
            },
        },
        {
            "event": "delta",
            "data": {
                "type": "confirmation-request",
                "human_in_the_loop": {
                    "call_id": "c1",
                    "data": [
                        {"id": "a", "name": "Task A"},
                        {"id": "b", "name": "Task B", "attributes": [{"label": "due", "new": "Fri"}]},
                    ],
                },
            },
        },
        {
            "event": "delta",
            "data": {
                "type": "tool-call",
                "tool_calls": {"callId": "c1", "name": "create_tasks", "state": "result", "result": "ok"},
            },
        },
        _end(),
    ]

    ingest = client.post("/api/v1/sessions/s-3/events", json=events).json()
    assert ingest["awaiting_confirmation"] == ["c1"]
    assert ingest["closed"] is False

    pending = client.get("/api/v1/sessions/s-3/confirmations").json()
    assert pending[0]["missing"] == ["a", "b", "b.due"]

    partial = client.post("/api/v1/sessions/s-3/confirmations/c1", json={"item_id": "a", "decision": "accepted"})
    assert partial.status_code == 200
    assert partial.json()["resolved"] is False
    assert partial.json()["missing"] == ["b", "b.due"]

    bad = client.post("/api/v1/sessions/s-3/confirmations/c1", json={"item_id": "zzz", "decision": "accepted"})
    assert bad.status_code == 422
    assert client.post("/api/v1/sessions/s-3/confirmations/nope", json={"bulk": "accepted"}).status_code == 404

    done = client.post("/api/v1/sessions/s-3/confirmations/c1", json={"item_id": "b", "bulk": "rejected"})
    assert done.json()["resolved"] is True
    assert done.json()["decisions"] == {"a": "accepted", "b": "rejected", "b.due": "rejected"}

    tools = client.get("/api/v1/sessions/s-3/tools").json()
    assert tools[0]["state"] == "result"
    assert tools[0]["result"] == "ok"
    assert client.get("/api/v1/sessions/s-3").json()["ended"] is True


def test_sse_body_ingest_replay_disconnect_and_delete(client: TestClient) -> None:
    frames = [
        _delta("id", "doc-4"),
        _delta("text-delta", "partial draft"),
    ]
    body = "".join(f"event: delta\ndata: {json.dumps(frame['data'])}\n\n" for frame in frames)

    ingest = client.post(
        "/api/v1/sessions/s-4/stream",
        content=body,
        headers={"Content-Type": "text/event-stream"},
    )
    assert ingest.status_code == 200
    assert ingest.json()["closed"] is False

    disconnected = client.post("/api/v1/sessions/s-4/disconnect").json()
    assert disconnected["closed"] is True
    artifact = client.get("/api/v1/sessions/s-4/artifacts/doc-4").json()
    assert artifact["status"] == "complete"
    assert artifact["content"] == "partial draft"

    replay = client.get("/api/stream/s-4", params={"once": "true"})
    assert replay.status_code == 200
    assert "event: artifact.updated" in replay.text
    assert "event: session.disconnected" in replay.text

    ids = [int(line.split(": ", 1)[1]) for line in replay.text.splitlines() if line.startswith("id: ")]
    tail = client.get("/api/stream/s-4", params={"once": "true"}, headers={"Last-Event-ID": str(ids[-2])})
    tail_ids = [int(line.split(": ", 1)[1]) for line in tail.text.splitlines() if line.startswith("id: ")]
    assert tail_ids[0] == ids[-1]
    assert all(event_id > ids[-2] for event_id in tail_ids)

    assert client.delete("/api/v1/sessions/s-4").status_code == 204
    assert client.get("/api/v1/sessions/s-4").status_code == 404
    assert client.delete("/api/v1/sessions/s-4").status_code == 404
