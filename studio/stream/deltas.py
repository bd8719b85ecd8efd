"""Stream layer: closed set of typed deltas produced by the decoder."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from studio.protocol.messages import (
    ArtifactKind,
    ConfirmationItem,
    DecisionType,
    Suggestion,
    normalize_decision,
)


class _Delta(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sequence_id: str | None = None


class TextDelta(_Delta):
    type: Literal["text-delta"] = "text-delta"
    content: str


class CodeDelta(_Delta):
    type: Literal["code-delta"] = "code-delta"
    content: str


class ImageDelta(_Delta):
    type: Literal["image-delta"] = "image-delta"
    content: str


class SheetDelta(_Delta):
    type: Literal["sheet-delta"] = "sheet-delta"
    content: str


class DocumentIdDelta(_Delta):
    type: Literal["id"] = "id"
    content: str = Field(min_length=1)


class TitleDelta(_Delta):
    type: Literal["title"] = "title"
    content: str


class KindDelta(_Delta):
    type: Literal["kind"] = "kind"
    content: ArtifactKind


class ClearDelta(_Delta):
    type: Literal["clear"] = "clear"


class FinishDelta(_Delta):
    type: Literal["finish"] = "finish"


class SuggestionDelta(_Delta):
    type: Literal["suggestion"] = "suggestion"
    suggestion: Suggestion


class ToolInvocation(_Delta):
    type: Literal["tool-call"] = "tool-call"
    call_id: str = Field(min_length=1, validation_alias=AliasChoices("call_id", "callId"))
    name: str
    args: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("args", "arguments", "parameters"),
    )
    state: Literal["call", "result"] = "call"
    requires_confirmation: bool = Field(
        default=False,
        validation_alias=AliasChoices("requires_confirmation", "requiresConfirmation"),
    )
    result: Any = None


class HumanConfirmationRequest(_Delta):
    type: Literal["confirmation-request"] = "confirmation-request"
    call_id: str = Field(min_length=1, validation_alias=AliasChoices("call_id", "callId", "message_id"))
    title: str | None = None
    items: tuple[ConfirmationItem, ...] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _index_items(cls, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return raw
        items = raw.get("items", raw.get("data"))
        if not isinstance(items, list):
            return raw
        indexed: list[Any] = []
        for index, item in enumerate(items):
            if isinstance(item, dict) and not any(item.get(key) for key in ("id", "gid", "uid")):
                item = {**item, "id": f"item-{index}"}
            indexed.append(item)
        return {**raw, "items": indexed}

    @model_validator(mode="after")
    def _unique_ids(self) -> "HumanConfirmationRequest":
        seen: set[str] = set()
        for item in self.items:
            for key in [item.id, *(attribute.id for attribute in item.attributes)]:
                if key in seen:
                    raise ValueError(f"duplicate_confirmation_id:{key}")
                seen.add(key)
        return self


class HumanConfirmationResponse(_Delta):
    type: Literal["confirmation-response"] = "confirmation-response"
    call_id: str = Field(min_length=1, validation_alias=AliasChoices("call_id", "callId", "message_id"))
    decisions: dict[str, DecisionType]

    @field_validator("decisions", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        if isinstance(value, list):
            # Older clients send `[{id|name, status}]` rows instead of a mapping.
            return {
                str(row.get("id") or row.get("name")): normalize_decision(row.get("status"))
                for row in value
                if isinstance(row, dict)
            }
        if isinstance(value, dict):
            return {key: normalize_decision(item) for key, item in value.items()}
        return value


class StreamEnd(_Delta):
    type: Literal["end"] = "end"


Delta = Annotated[
    Union[
        TextDelta,
        CodeDelta,
        ImageDelta,
        SheetDelta,
        DocumentIdDelta,
        TitleDelta,
        KindDelta,
        ClearDelta,
        FinishDelta,
        SuggestionDelta,
        ToolInvocation,
        HumanConfirmationRequest,
        HumanConfirmationResponse,
        StreamEnd,
    ],
    Field(discriminator="type"),
]

ContentDelta = Union[TextDelta, CodeDelta, ImageDelta, SheetDelta]

CONTENT_DELTA_KINDS: dict[str, ArtifactKind] = {
    "text-delta": "text",
    "code-delta": "code",
    "image-delta": "image",
    "sheet-delta": "sheet",
}

# Deltas that (re)start a generation for the bound document.
GENERATION_START_TYPES = frozenset({"id", "title", "kind", "clear"})
