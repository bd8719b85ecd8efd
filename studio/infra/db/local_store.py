"""Data layer: local JSONL-backed document store keeping every saved snapshot."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any

from pydantic import ValidationError

from studio.infra.observability.logger import get_logger
from studio.protocol.messages import DocumentDto, SaveDocumentRequest, utc_now_iso

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoadStats:
    """Basic diagnostics collected while loading source JSONL."""

    total_lines: int
    loaded_rows: int
    bad_lines: int


class LocalDocumentStore:
    """Append-only snapshot store; several rows share one document id."""

    def __init__(
        self,
        documents: list[DocumentDto],
        stats: LoadStats,
        *,
        path: Path | None = None,
    ) -> None:
        self._lock = Lock()
        self._path = path
        self._stats = stats
        self._by_id: dict[str, list[DocumentDto]] = {}
        for document in documents:
            self._by_id.setdefault(document.id, []).append(document)

    @classmethod
    def in_memory(cls) -> "LocalDocumentStore":
        return cls([], LoadStats(total_lines=0, loaded_rows=0, bad_lines=0))

    @classmethod
    def from_jsonl(cls, path: Path) -> "LocalDocumentStore":
        """Load snapshots from `path`; a missing file starts an empty store."""
        if not path.exists():
            return cls([], LoadStats(total_lines=0, loaded_rows=0, bad_lines=0), path=path)

        documents: list[DocumentDto] = []
        bad_lines = 0
        total = 0
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                total += 1
                raw_line = line.strip()
                if not raw_line:
                    bad_lines += 1
                    continue
                try:
                    documents.append(DocumentDto.model_validate(json.loads(raw_line)))
                except (json.JSONDecodeError, ValidationError):
                    bad_lines += 1
                    continue

        return cls(
            documents,
            LoadStats(total_lines=total, loaded_rows=len(documents), bad_lines=bad_lines),
            path=path,
        )

    def get_documents_by_id(self, document_id: str) -> list[DocumentDto]:
        """Every snapshot for `document_id`, oldest first."""
        with self._lock:
            return list(self._by_id.get(document_id, []))

    def save_document(self, request: SaveDocumentRequest) -> DocumentDto:
        """Append a new snapshot and return it with fresh timestamps."""
        now = utc_now_iso()
        with self._lock:
            rows = self._by_id.setdefault(request.id, [])
            document = DocumentDto(
                id=request.id,
                user_id=request.user_id,
                title=request.title,
                content=request.content,
                kind=request.kind,
                created_at=now,
                updated_at=now,
            )
            rows.append(document)
            self._append_line(document)
        logger.info(
            "store.document.saved id=%s versions=%s chars=%s",
            document.id,
            len(rows),
            len(document.content),
        )
        return document

    def delete_documents_after(self, document_id: str, timestamp: str) -> int:
        """Drop snapshots newer than `timestamp`; returns how many were removed."""
        with self._lock:
            rows = self._by_id.get(document_id, [])
            kept = [row for row in rows if row.created_at <= timestamp]
            removed = len(rows) - len(kept)
            if removed:
                self._by_id[document_id] = kept
                self._rewrite()
        if removed:
            logger.info(
                "store.document.truncated id=%s removed=%s kept=%s",
                document_id,
                removed,
                len(kept),
            )
        return removed

    def health(self) -> dict[str, Any]:
        """Expose basic load/quality stats for health endpoint."""
        with self._lock:
            documents = len(self._by_id)
            snapshots = sum(len(rows) for rows in self._by_id.values())
        return {
            "total_lines": self._stats.total_lines,
            "loaded_rows": self._stats.loaded_rows,
            "bad_lines": self._stats.bad_lines,
            "documents": documents,
            "snapshots": snapshots,
        }

    def _append_line(self, document: DocumentDto) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(document.model_dump(mode="json"), ensure_ascii=False))
            handle.write("\n")

    def _rewrite(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as handle:
            for rows in self._by_id.values():
                for document in rows:
                    handle.write(json.dumps(document.model_dump(mode="json"), ensure_ascii=False))
                    handle.write("\n")
