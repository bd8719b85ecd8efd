"""Protocol layer: documents, suggestions, confirmation items and API DTOs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


ArtifactKind = Literal["text", "code", "image", "sheet"]
ArtifactStatus = Literal["idle", "streaming", "complete"]
DecisionType = Literal["accepted", "rejected"]
VersionDirection = Literal["prev", "next"]
VersionChange = Literal["prev", "next", "toggle", "latest"]
ViewMode = Literal["edit", "diff"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_decision(raw: Any) -> Any:
    """Accept `Accepted`/`REJECTED` style spellings used by older clients."""
    if isinstance(raw, str):
        return raw.strip().lower()
    return raw


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class RawStreamEvent(BaseModel):
    """One inbound event: `{event: delta|end, data: {...}}`."""

    event: Literal["delta", "end"]
    data: dict[str, Any] = Field(default_factory=dict)


class DocumentDto(_WireModel):
    """One persisted document snapshot; several snapshots share an id."""

    id: str
    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))
    title: str = ""
    content: str = ""
    kind: ArtifactKind = "text"
    created_at: str = Field(
        default_factory=utc_now_iso,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )
    updated_at: str = Field(
        default_factory=utc_now_iso,
        validation_alias=AliasChoices("updated_at", "updatedAt"),
    )


class SaveDocumentRequest(_WireModel):
    """Write collaborator payload; only the persistence controller builds it."""

    id: str
    content: str
    title: str = ""
    kind: ArtifactKind = "text"
    user_id: str


class Suggestion(_WireModel):
    """Improvement proposal; its position is derived from the document each time."""

    id: str
    document_id: str = Field(validation_alias=AliasChoices("document_id", "documentId"))
    original_text: str = Field(
        min_length=1,
        validation_alias=AliasChoices("original_text", "originalText"),
    )
    suggested_text: str = Field(validation_alias=AliasChoices("suggested_text", "suggestedText"))
    description: str | None = Field(
        default=None,
        validation_alias=AliasChoices("description", "content"),
    )
    created_at: str = Field(
        default_factory=utc_now_iso,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )

    @property
    def label(self) -> str:
        return self.description or self.suggested_text


class ConfirmationAttribute(_WireModel):
    """Field-level change under a confirmation item, decided on its own."""

    id: str
    label: str
    old: Any = None
    new: Any = None
    required: bool = True


class ConfirmationItem(_WireModel):
    """Top-level entry of a confirmation request (e.g. one task)."""

    id: str
    name: str
    description: str | None = None
    attributes: tuple[ConfirmationAttribute, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _fill_ids(cls, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return raw
        payload = dict(raw)
        if not payload.get("id"):
            for key in ("gid", "uid"):
                if payload.get(key):
                    payload["id"] = str(payload[key])
                    break
        item_id = payload.get("id")
        attributes = payload.get("attributes")
        if item_id and isinstance(attributes, list):
            filled: list[Any] = []
            for index, attribute in enumerate(attributes):
                if isinstance(attribute, dict) and not attribute.get("id"):
                    label = attribute.get("label") or f"attr-{index}"
                    attribute = {**attribute, "id": f"{item_id}.{label}"}
                filled.append(attribute)
            payload["attributes"] = filled
        return payload

    @property
    def required_attribute_ids(self) -> list[str]:
        return [attribute.id for attribute in self.attributes if attribute.required]


class ArtifactView(BaseModel):
    """Read-only projection handed to the presentation layer."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    kind: ArtifactKind
    title: str
    status: ArtifactStatus
    content: str
    is_visible: bool
    current_version_index: int
    version_count: int
    is_current_version: bool
    mode: ViewMode
    decorations: list[dict[str, Any]] = Field(default_factory=list)
    save_status: Literal["saved", "saving", "not_saved"] = "saved"


class ToolCallDto(BaseModel):
    """Tool ledger row for rendering tool results."""

    call_id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    state: Literal["call", "awaiting_confirmation", "resumed", "result", "discarded"]
    requires_confirmation: bool = False
    result: Any = None
    decisions: dict[str, DecisionType] | None = None


class PendingConfirmationDto(BaseModel):
    """Pending request with the decisions collected so far."""

    call_id: str
    title: str | None = None
    items: list[ConfirmationItem]
    decisions: dict[str, DecisionType] = Field(default_factory=dict)
    missing: list[str] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    """UI decision input; exactly one of the shapes below is used per call."""

    item_id: str | None = None
    attribute_id: str | None = None
    decision: DecisionType | None = None
    bulk: DecisionType | None = None
    decisions: dict[str, DecisionType] | None = None

    @field_validator("decision", "bulk", mode="before")
    @classmethod
    def _normalize_one(cls, value: Any) -> Any:
        return normalize_decision(value)

    @field_validator("decisions", mode="before")
    @classmethod
    def _normalize_many(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {key: normalize_decision(item) for key, item in value.items()}
        return value


class DecisionResultDto(BaseModel):
    call_id: str
    resolved: bool
    decisions: dict[str, DecisionType]
    missing: list[str] = Field(default_factory=list)


class NavigateRequest(BaseModel):
    direction: VersionDirection


class VersionChangeRequest(BaseModel):
    change: VersionChange


class RestoreRequest(BaseModel):
    index: int = Field(ge=0)
    confirm: bool = False


class ContentEditRequest(BaseModel):
    content: str
    debounce: bool = True


class IngestResultDto(BaseModel):
    session_id: str
    accepted: int
    awaiting_confirmation: list[str] = Field(default_factory=list)
    closed: bool = False


class NavigationResultDto(BaseModel):
    moved: bool
    artifact: ArtifactView


class VersionDetailDto(BaseModel):
    index: int
    content: str
    diff: str = ""


class SessionDetailDto(BaseModel):
    session_id: str
    current_document_id: str | None = None
    documents: list[str] = Field(default_factory=list)
    blocked_on: str | None = None
    awaiting_confirmation: list[str] = Field(default_factory=list)
    ended: bool = False
    disconnected: bool = False
    errors: list[str] = Field(default_factory=list)
