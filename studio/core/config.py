"""Configuration layer: load runtime settings from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _resolve_path(path_like: str) -> Path:
    candidate = Path(path_like)
    if candidate.is_absolute():
        return candidate
    if candidate.exists():
        return candidate
    project_root = Path(__file__).resolve().parents[2]
    rooted = project_root / candidate
    if rooted.exists():
        return rooted
    return candidate


def _optional_path(raw: str | None) -> Path | None:
    if raw is None or not raw.strip():
        return None
    return _resolve_path(raw.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable application settings used across API/runtime layers."""

    app_name: str = "Artifact Studio API"
    app_version: str = "0.1.0"
    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    document_store_jsonl: Path = Path("data/documents.jsonl")
    document_store_in_memory: bool = False
    session_event_limit: int = 200
    sse_keepalive_seconds: float = 1.0
    sse_max_wait_seconds: int = 20
    save_debounce_seconds: float = 1.0
    save_max_attempts: int = 3
    save_retry_base_seconds: float = 0.5
    default_user_id: str = "local-user"
    suggestion_file: Path | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from process env with deterministic defaults."""
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            app_version=os.getenv("APP_VERSION", cls.app_version),
            env=os.getenv("APP_ENV", cls.env),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            host=os.getenv("HOST", cls.host),
            port=int(os.getenv("PORT", str(cls.port))),
            cors_allow_origins=os.getenv("CORS_ALLOW_ORIGINS", cls.cors_allow_origins),
            document_store_jsonl=_resolve_path(
                os.getenv("DOCUMENT_STORE_JSONL", str(cls.document_store_jsonl))
            ),
            document_store_in_memory=_env_bool(
                "DOCUMENT_STORE_IN_MEMORY", cls.document_store_in_memory
            ),
            session_event_limit=int(os.getenv("SESSION_EVENT_LIMIT", str(cls.session_event_limit))),
            sse_keepalive_seconds=float(
                os.getenv("SSE_KEEPALIVE_SECONDS", str(cls.sse_keepalive_seconds))
            ),
            sse_max_wait_seconds=int(
                os.getenv("SSE_MAX_WAIT_SECONDS", str(cls.sse_max_wait_seconds))
            ),
            save_debounce_seconds=float(
                os.getenv("SAVE_DEBOUNCE_SECONDS", str(cls.save_debounce_seconds))
            ),
            save_max_attempts=int(os.getenv("SAVE_MAX_ATTEMPTS", str(cls.save_max_attempts))),
            save_retry_base_seconds=float(
                os.getenv("SAVE_RETRY_BASE_SECONDS", str(cls.save_retry_base_seconds))
            ),
            default_user_id=os.getenv("DEFAULT_USER_ID", cls.default_user_id),
            suggestion_file=_optional_path(os.getenv("SUGGESTION_FILE")),
        )
