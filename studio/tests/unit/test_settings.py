"""Unit tests for environment-driven settings, including save and SSE tuning."""

from __future__ import annotations

from pathlib import Path

from studio.core.config import Settings


def test_settings_reads_store_and_save_env(monkeypatch) -> None:
    monkeypatch.setenv("DOCUMENT_STORE_JSONL", "/tmp/custom/documents.jsonl")
    monkeypatch.setenv("DOCUMENT_STORE_IN_MEMORY", "yes")
    monkeypatch.setenv("SAVE_DEBOUNCE_SECONDS", "0.25")
    monkeypatch.setenv("SAVE_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("SAVE_RETRY_BASE_SECONDS", "0.1")
    monkeypatch.setenv("SESSION_EVENT_LIMIT", "50")
    monkeypatch.setenv("SSE_KEEPALIVE_SECONDS", "2.5")
    monkeypatch.setenv("SSE_MAX_WAIT_SECONDS", "7")
    monkeypatch.setenv("DEFAULT_USER_ID", "editor-1")
    monkeypatch.setenv("SUGGESTION_FILE", "/tmp/custom/suggestions.yaml")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    settings = Settings.from_env()

    assert settings.document_store_jsonl == Path("/tmp/custom/documents.jsonl")
    assert settings.document_store_in_memory is True
    assert settings.save_debounce_seconds == 0.25
    assert settings.save_max_attempts == 5
    assert settings.save_retry_base_seconds == 0.1
    assert settings.session_event_limit == 50
    assert settings.sse_keepalive_seconds == 2.5
    assert settings.sse_max_wait_seconds == 7
    assert settings.default_user_id == "editor-1"
    assert settings.suggestion_file == Path("/tmp/custom/suggestions.yaml")
    assert settings.log_level == "DEBUG"


def test_settings_defaults(monkeypatch) -> None:
    for name in ("SAVE_DEBOUNCE_SECONDS", "SAVE_MAX_ATTEMPTS", "SUGGESTION_FILE", "DOCUMENT_STORE_IN_MEMORY"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.save_debounce_seconds == 1.0
    assert settings.save_max_attempts == 3
    assert settings.suggestion_file is None
    assert settings.document_store_in_memory is False
