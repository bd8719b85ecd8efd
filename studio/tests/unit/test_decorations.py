"""Unit tests for decoration building and atomic suggestion application."""

from __future__ import annotations

import pytest

from studio.core.errors import SuggestionNotLocatedError
from studio.editor.decorations import DecorationEngine
from studio.editor.document import RichDocument
from studio.editor.locator import SuggestionLocator
from studio.protocol.messages import Suggestion


def _suggestion(suggestion_id: str, original: str, suggested: str, description: str | None = None) -> Suggestion:
    return Suggestion(
        id=suggestion_id,
        document_id="doc-1",
        original_text=original,
        suggested_text=suggested,
        description=description,
    )


def test_build_emits_highlight_and_apply_widget() -> None:
    document = RichDocument.from_content("The cat sat.")
    located = SuggestionLocator().project(document, [_suggestion("s1", "cat", "dog", "Use a dog")])

    decorations = DecorationEngine().build(located, document)

    highlight, widget = decorations.for_suggestion("s1")
    assert (highlight.kind, highlight.start, highlight.end) == ("highlight", 4, 7)
    assert (widget.kind, widget.start, widget.end, widget.action) == ("widget", 4, 4, "apply")
    assert widget.label == "Use a dog"
    assert decorations.revision == document.revision


def test_apply_replaces_text_and_drops_its_decorations() -> None:
    document = RichDocument.from_content("The cat sat.")
    engine = DecorationEngine()
    located = SuggestionLocator().locate(document, _suggestion("s1", "cat", "dog"))
    decorations = engine.build([located], document)

    applied = engine.apply(located, document, decorations)

    assert applied.document.to_content() == "The dog sat."
    assert applied.decorations.for_suggestion("s1") == ()
    assert len(applied.decorations) == 0
    assert document.to_content() == "The cat sat."


def test_apply_shifts_decorations_after_the_edit() -> None:
    document = RichDocument.from_content("The cat sat.")
    locator = SuggestionLocator()
    engine = DecorationEngine(locator)
    located = locator.project(
        document,
        [_suggestion("s1", "cat", "kitten"), _suggestion("s2", "sat", "sits")],
    )
    decorations = engine.build(located, document)

    applied = engine.apply(located[0], document, decorations)

    highlight, widget = applied.decorations.for_suggestion("s2")
    assert (highlight.start, highlight.end) == (11, 14)
    assert widget.start == 11
    assert applied.document.text_between(11, 14) == "sat"
    assert applied.decorations.revision == applied.document.revision


def test_stale_location_is_recomputed_before_apply() -> None:
    document = RichDocument.from_content("The cat sat.")
    engine = DecorationEngine()
    stale = SuggestionLocator().locate(document, _suggestion("s1", "sat", "stood"))
    edited = document.replace(0, 3, "A")

    applied = engine.apply(stale, edited, engine.build([stale], edited))

    assert applied.document.to_content() == "A cat stood."


def test_apply_fails_without_side_effects_when_text_is_gone() -> None:
    document = RichDocument.from_content("The cat sat.")
    engine = DecorationEngine()
    located = SuggestionLocator().locate(document, _suggestion("s1", "cat", "dog"))
    edited = document.replace(4, 7, "cow")
    decorations = engine.build([located], edited)

    with pytest.raises(SuggestionNotLocatedError):
        engine.apply(located, edited, decorations)

    assert len(decorations) == 0
    assert edited.to_content() == "The cow sat."
