"""Artifact state machine: status, visible content and linear version history."""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from studio.core.errors import InvalidStateTransitionError
from studio.infra.observability.logger import get_logger
from studio.protocol.messages import (
    ArtifactKind,
    ArtifactStatus,
    ArtifactView,
    DocumentDto,
    VersionChange,
    VersionDirection,
    ViewMode,
    utc_now_iso,
)
from studio.stream.deltas import (
    CONTENT_DELTA_KINDS,
    ClearDelta,
    ContentDelta,
    DocumentIdDelta,
    FinishDelta,
    KindDelta,
    TitleDelta,
)

logger = get_logger(__name__)

MetadataDelta = DocumentIdDelta | TitleDelta | KindDelta | ClearDelta


@dataclass(frozen=True)
class VersionSnapshot:
    """Immutable content snapshot in the version history.

    `stored_at` is the `created_at` of the stored row holding this content;
    it stays None until a write for the version succeeds.
    """

    content: str
    created_at: str = field(default_factory=utc_now_iso)
    stored_at: str | None = None


@dataclass
class Artifact:
    """Canonical artifact record; only `ArtifactStateMachine` mutates it."""

    document_id: str
    kind: ArtifactKind = "text"
    title: str = ""
    content: str = ""
    status: ArtifactStatus = "idle"
    is_visible: bool = False
    current_version_index: int = -1
    versions: list[VersionSnapshot] = field(default_factory=list)
    mode: ViewMode = "edit"
    generation: int = 0


class ArtifactStateMachine:
    """Apply deltas and version operations to one artifact.

    Status moves `idle -> streaming -> complete`. A complete artifact only
    streams again after a new generation starts (a metadata delta such as
    `clear`, or a restore that rewinds history).
    """

    def __init__(self, document_id: str, *, kind: ArtifactKind = "text", title: str = "") -> None:
        self._artifact = Artifact(document_id=document_id, kind=kind, title=title)
        self._reopened = False

    @property
    def document_id(self) -> str:
        return self._artifact.document_id

    @property
    def status(self) -> ArtifactStatus:
        return self._artifact.status

    @property
    def content(self) -> str:
        return self._artifact.content

    @property
    def kind(self) -> ArtifactKind:
        return self._artifact.kind

    @property
    def title(self) -> str:
        return self._artifact.title

    @property
    def generation(self) -> int:
        return self._artifact.generation

    @property
    def version_count(self) -> int:
        return len(self._artifact.versions)

    @property
    def current_version_index(self) -> int:
        return self._artifact.current_version_index

    @property
    def is_current_version(self) -> bool:
        versions = self._artifact.versions
        if not versions:
            return True
        return self._artifact.current_version_index == len(versions) - 1

    def seed_versions(self, documents: list[DocumentDto]) -> None:
        """Load stored snapshots (oldest first) before any delta has arrived."""
        artifact = self._artifact
        if artifact.status != "idle" or artifact.versions:
            raise InvalidStateTransitionError(
                document_id=artifact.document_id,
                status=artifact.status,
                operation="seed_versions",
            )
        if not documents:
            return
        artifact.versions = [
            VersionSnapshot(
                content=document.content,
                created_at=document.created_at,
                stored_at=document.created_at,
            )
            for document in documents
        ]
        latest = documents[-1]
        artifact.current_version_index = len(artifact.versions) - 1
        artifact.content = latest.content
        artifact.kind = latest.kind
        artifact.title = latest.title or artifact.title

    def apply_metadata_delta(self, delta: MetadataDelta) -> None:
        """Apply `id`/`title`/`kind`/`clear`; each one (re)starts a generation."""
        self._begin_generation()
        artifact = self._artifact
        if isinstance(delta, TitleDelta):
            artifact.title = delta.content
        elif isinstance(delta, KindDelta):
            artifact.kind = delta.content
        elif isinstance(delta, ClearDelta):
            artifact.content = ""

    def apply_content_delta(self, delta: ContentDelta | FinishDelta) -> bool:
        """Replace content with the delta's snapshot, or finalize on `finish`.

        Returns False when a content delta targets a different artifact kind
        and is ignored.
        """
        artifact = self._artifact
        if artifact.status == "complete":
            if not self._reopened:
                raise InvalidStateTransitionError(
                    document_id=artifact.document_id,
                    status=artifact.status,
                    operation=delta.type,
                )
            self._begin_generation()

        if isinstance(delta, FinishDelta):
            self._finish()
            return True

        delta_kind = CONTENT_DELTA_KINDS[delta.type]
        if delta_kind != artifact.kind:
            logger.warning(
                "artifact.delta.kind_mismatch document_id=%s kind=%s delta=%s",
                artifact.document_id,
                artifact.kind,
                delta.type,
            )
            return False
        artifact.content = delta.content
        artifact.is_visible = True
        artifact.status = "streaming"
        return True

    def mark_disconnected(self) -> bool:
        """Close a streaming generation with its last-known content."""
        if self._artifact.status != "streaming":
            return False
        self._finish()
        return True

    def navigate_version(self, direction: VersionDirection) -> bool:
        artifact = self._artifact
        last = len(artifact.versions) - 1
        if direction == "prev":
            if artifact.current_version_index <= 0:
                return False
            artifact.current_version_index -= 1
            return True
        if artifact.current_version_index >= last:
            return False
        artifact.current_version_index += 1
        return True

    def handle_version_change(self, change: VersionChange) -> bool:
        """Toolbar entrypoint: prev/next, diff-mode toggle, or jump to latest."""
        artifact = self._artifact
        if change == "toggle":
            artifact.mode = "diff" if artifact.mode == "edit" else "edit"
            return True
        if change == "latest":
            artifact.current_version_index = len(artifact.versions) - 1
            artifact.mode = "edit"
            return True
        return self.navigate_version(change)

    def ensure_restorable(self, index: int) -> None:
        artifact = self._artifact
        if artifact.status == "streaming":
            raise InvalidStateTransitionError(
                document_id=artifact.document_id,
                status=artifact.status,
                operation="restore_version",
            )
        if not 0 <= index < len(artifact.versions):
            raise IndexError(f"version_out_of_range:{index}")

    def restore_version(self, index: int) -> VersionSnapshot:
        """Drop every version after `index` and make it current. Irreversible."""
        self.ensure_restorable(index)
        artifact = self._artifact
        del artifact.versions[index + 1 :]
        artifact.current_version_index = index
        artifact.content = artifact.versions[index].content
        artifact.mode = "edit"
        if artifact.status == "complete":
            self._reopened = True
        logger.info(
            "artifact.version.restored document_id=%s index=%s versions=%s",
            artifact.document_id,
            index,
            len(artifact.versions),
        )
        return artifact.versions[index]

    def version_content(self, index: int) -> str:
        versions = self._artifact.versions
        if not 0 <= index < len(versions):
            return ""
        return versions[index].content

    def version_diff(self, index: int | None = None) -> str:
        """Unified diff between version `index - 1` and `index`."""
        target = self._artifact.current_version_index if index is None else index
        old = self.version_content(target - 1).splitlines(keepends=True)
        new = self.version_content(target).splitlines(keepends=True)
        return "".join(
            difflib.unified_diff(old, new, fromfile=f"v{target - 1}", tofile=f"v{target}")
        )

    def update_content(self, content: str) -> None:
        """Reflect a user edit; edits are only allowed on the latest version."""
        artifact = self._artifact
        if artifact.status == "streaming" or not self.is_current_version:
            raise InvalidStateTransitionError(
                document_id=artifact.document_id,
                status=artifact.status if artifact.status == "streaming" else "historical_version",
                operation="update_content",
            )
        artifact.content = content

    def record_saved_version(self, document: DocumentDto) -> VersionSnapshot:
        """Append the snapshot a successful write produced."""
        artifact = self._artifact
        snapshot = VersionSnapshot(
            content=document.content,
            created_at=document.created_at,
            stored_at=document.created_at,
        )
        artifact.versions.append(snapshot)
        artifact.current_version_index = len(artifact.versions) - 1
        return snapshot

    def mark_stored(self, document: DocumentDto) -> bool:
        """Stamp the newest unstored version holding `document.content`."""
        versions = self._artifact.versions
        for index in range(len(versions) - 1, -1, -1):
            snapshot = versions[index]
            if snapshot.stored_at is None and snapshot.content == document.content:
                versions[index] = replace(snapshot, stored_at=document.created_at)
                return True
        return False

    def stored_through(self, index: int) -> str | None:
        """Newest store timestamp among versions `0..index`, None when none was stored."""
        stamps = [item.stored_at for item in self._artifact.versions[: index + 1] if item.stored_at]
        return max(stamps) if stamps else None

    def view(
        self,
        *,
        decorations: list[dict[str, Any]] | None = None,
        save_status: Literal["saved", "saving", "not_saved"] = "saved",
    ) -> ArtifactView:
        artifact = self._artifact
        if artifact.versions and not self.is_current_version:
            visible = artifact.versions[artifact.current_version_index].content
        else:
            visible = artifact.content
        return ArtifactView(
            document_id=artifact.document_id,
            kind=artifact.kind,
            title=artifact.title,
            status=artifact.status,
            content=visible,
            is_visible=artifact.is_visible,
            current_version_index=artifact.current_version_index,
            version_count=len(artifact.versions),
            is_current_version=self.is_current_version,
            mode=artifact.mode,
            decorations=list(decorations or []),
            save_status=save_status,
        )

    def _begin_generation(self) -> None:
        artifact = self._artifact
        if artifact.status == "complete":
            artifact.generation += 1
            logger.info(
                "artifact.generation.started document_id=%s generation=%s",
                artifact.document_id,
                artifact.generation,
            )
        self._reopened = False
        artifact.status = "streaming"

    def _finish(self) -> None:
        artifact = self._artifact
        artifact.status = "complete"
        artifact.versions.append(VersionSnapshot(content=artifact.content))
        artifact.current_version_index = len(artifact.versions) - 1
        artifact.mode = "edit"
        logger.info(
            "artifact.generation.completed document_id=%s generation=%s versions=%s",
            artifact.document_id,
            artifact.generation,
            len(artifact.versions),
        )
