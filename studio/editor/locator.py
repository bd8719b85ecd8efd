"""Suggestion locator: map suggestions onto offsets of one document snapshot."""

from __future__ import annotations

from dataclasses import dataclass

from studio.core.errors import SuggestionNotLocatedError
from studio.editor.document import RichDocument
from studio.protocol.messages import Suggestion


@dataclass(frozen=True)
class LocatedSuggestion:
    """Suggestion pinned to `[selection_start, selection_end)` at one revision."""

    suggestion: Suggestion
    selection_start: int
    selection_end: int
    revision: int

    @property
    def id(self) -> str:
        return self.suggestion.id

    def is_valid_for(self, document: RichDocument) -> bool:
        return self.revision == document.revision


def find_position(document: RichDocument, search_text: str) -> tuple[int, int] | None:
    """First occurrence of `search_text` inside a single text node, depth-first."""
    if not search_text:
        return None
    for node, start in document.iter_text_nodes():
        index = (node.text or "").find(search_text)
        if index != -1:
            return start + index, start + index + len(search_text)
    return None


class SuggestionLocator:
    """Derive positions for suggestions; results never outlive a revision."""

    def locate(self, document: RichDocument, suggestion: Suggestion) -> LocatedSuggestion:
        position = find_position(document, suggestion.original_text)
        if position is None:
            raise SuggestionNotLocatedError(suggestion.id)
        start, end = position
        return LocatedSuggestion(
            suggestion=suggestion,
            selection_start=start,
            selection_end=end,
            revision=document.revision,
        )

    def project(self, document: RichDocument, suggestions: list[Suggestion]) -> list[LocatedSuggestion]:
        """Locate every suggestion, omitting the ones whose text is gone."""
        located: list[LocatedSuggestion] = []
        for suggestion in suggestions:
            try:
                located.append(self.locate(document, suggestion))
            except SuggestionNotLocatedError:
                continue
        return located
