"""Suggestion catalog: per-document suggestion metadata, optionally seeded from YAML."""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Any

import yaml
from pydantic import ValidationError

from studio.infra.observability.logger import get_logger
from studio.protocol.messages import Suggestion

logger = get_logger(__name__)


class SuggestionCatalog:
    """Suggestions keyed by document id, in arrival order."""

    def __init__(self, *, seed_file: Path | None = None) -> None:
        self._lock = Lock()
        self._by_document: dict[str, list[Suggestion]] = {}
        if seed_file is not None:
            for suggestion in self._load_seed(seed_file):
                self.add(suggestion)

    def for_document(self, document_id: str) -> list[Suggestion]:
        with self._lock:
            return list(self._by_document.get(document_id, []))

    def add(self, suggestion: Suggestion) -> bool:
        """Add or replace by id; returns False when an identical row exists."""
        with self._lock:
            rows = self._by_document.setdefault(suggestion.document_id, [])
            for index, existing in enumerate(rows):
                if existing.id != suggestion.id:
                    continue
                if existing == suggestion:
                    return False
                rows[index] = suggestion
                return True
            rows.append(suggestion)
            return True

    def remove(self, document_id: str, suggestion_id: str) -> bool:
        with self._lock:
            rows = self._by_document.get(document_id, [])
            kept = [row for row in rows if row.id != suggestion_id]
            self._by_document[document_id] = kept
            return len(kept) != len(rows)

    def _load_seed(self, seed_file: Path) -> list[Suggestion]:
        if not seed_file.exists():
            return []
        try:
            raw = yaml.safe_load(seed_file.read_text(encoding="utf-8"))
        except yaml.YAMLError:
            logger.warning("catalog.seed.invalid_yaml path=%s", seed_file)
            return []
        documents = raw.get("documents") if isinstance(raw, dict) else {}
        if not isinstance(documents, dict):
            return []
        result: list[Suggestion] = []
        skipped = 0
        for document_id, rows in documents.items():
            if not isinstance(rows, list):
                continue
            for index, payload in enumerate(rows):
                if not isinstance(payload, dict):
                    skipped += 1
                    continue
                data: dict[str, Any] = {"id": f"{document_id}-s{index}", **payload}
                data["document_id"] = str(document_id)
                try:
                    result.append(Suggestion.model_validate(data))
                except ValidationError:
                    skipped += 1
        logger.info("catalog.seed.loaded path=%s suggestions=%s skipped=%s", seed_file, len(result), skipped)
        return result
