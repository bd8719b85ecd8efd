"""Decoration engine: overlay annotations for located suggestions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Literal

from studio.core.errors import SuggestionNotLocatedError
from studio.editor.document import RichDocument
from studio.editor.locator import LocatedSuggestion, SuggestionLocator
from studio.protocol.messages import Suggestion


@dataclass(frozen=True)
class Decoration:
    """Highlight over a range, or zero-width widget exposing `apply`."""

    kind: Literal["highlight", "widget"]
    suggestion_id: str
    start: int
    end: int
    label: str | None = None
    action: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind,
            "suggestion_id": self.suggestion_id,
            "start": self.start,
            "end": self.end,
        }
        if self.label is not None:
            payload["label"] = self.label
        if self.action is not None:
            payload["action"] = self.action
        return payload


@dataclass(frozen=True)
class DecorationSet:
    """Ephemeral decorations bound to one document revision."""

    decorations: tuple[Decoration, ...] = ()
    revision: int = 0

    def for_suggestion(self, suggestion_id: str) -> tuple[Decoration, ...]:
        return tuple(item for item in self.decorations if item.suggestion_id == suggestion_id)

    def without(self, suggestion_id: str) -> "DecorationSet":
        kept = tuple(item for item in self.decorations if item.suggestion_id != suggestion_id)
        return DecorationSet(decorations=kept, revision=self.revision)

    def mapped(self, *, start: int, end: int, inserted: int, revision: int) -> "DecorationSet":
        """Shift decorations through one replace edit; overlapping ones are dropped."""
        delta = inserted - (end - start)
        kept: list[Decoration] = []
        for item in self.decorations:
            if item.end <= start and not (item.kind == "widget" and item.start == start and start != end):
                kept.append(item)
            elif item.start >= end:
                kept.append(replace(item, start=item.start + delta, end=item.end + delta))
        return DecorationSet(decorations=tuple(kept), revision=revision)

    def to_list(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self.decorations]

    def __len__(self) -> int:
        return len(self.decorations)


@dataclass(frozen=True)
class AppliedSuggestion:
    """Result of one apply transaction; both parts are swapped in together."""

    suggestion: Suggestion
    document: RichDocument
    decorations: DecorationSet
    start: int
    end: int


class DecorationEngine:
    """Build decorations and apply suggestions as single transactions."""

    def __init__(self, locator: SuggestionLocator | None = None) -> None:
        self._locator = locator or SuggestionLocator()

    def build(self, located: list[LocatedSuggestion], document: RichDocument) -> DecorationSet:
        decorations: list[Decoration] = []
        for item in located:
            current = self._current(item, document)
            if current is None:
                continue
            label = current.suggestion.label
            decorations.append(
                Decoration(
                    kind="highlight",
                    suggestion_id=current.id,
                    start=current.selection_start,
                    end=current.selection_end,
                    label=label,
                )
            )
            decorations.append(
                Decoration(
                    kind="widget",
                    suggestion_id=current.id,
                    start=current.selection_start,
                    end=current.selection_start,
                    label=label,
                    action="apply",
                )
            )
        return DecorationSet(decorations=tuple(decorations), revision=document.revision)

    def apply(
        self,
        located: LocatedSuggestion,
        document: RichDocument,
        decorations: DecorationSet,
    ) -> AppliedSuggestion:
        """Replace the spanned text and drop the suggestion's decorations.

        Nothing is mutated; a failure leaves the caller's state untouched.
        """
        current = self._current(located, document)
        if current is None:
            raise SuggestionNotLocatedError(located.id)
        start, end = current.selection_start, current.selection_end
        suggested = current.suggestion.suggested_text
        updated = document.replace(start, end, suggested)
        remaining = decorations.without(current.id).mapped(
            start=start,
            end=end,
            inserted=len(suggested),
            revision=updated.revision,
        )
        return AppliedSuggestion(
            suggestion=current.suggestion,
            document=updated,
            decorations=remaining,
            start=start,
            end=end,
        )

    def _current(self, located: LocatedSuggestion, document: RichDocument) -> LocatedSuggestion | None:
        if located.is_valid_for(document):
            return located
        try:
            return self._locator.locate(document, located.suggestion)
        except SuggestionNotLocatedError:
            return None
