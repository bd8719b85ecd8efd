"""Editor binding: document tree, suggestions and decorations for one artifact."""

from __future__ import annotations

from studio.artifacts.state_machine import ArtifactStateMachine
from studio.core.errors import SuggestionNotLocatedError
from studio.editor.decorations import AppliedSuggestion, DecorationEngine, DecorationSet
from studio.editor.document import RichDocument
from studio.editor.locator import LocatedSuggestion, SuggestionLocator
from studio.infra.observability.logger import get_logger
from studio.persistence.controller import PersistenceController
from studio.protocol.messages import Suggestion

logger = get_logger(__name__)


class DocumentEditor:
    """Keep the editor view of an artifact in sync with its state machine.

    Content coming from the stream only refreshes the tree. User edits go
    through the debounced save path; applying a suggestion saves at once.
    """

    def __init__(
        self,
        machine: ArtifactStateMachine,
        persistence: PersistenceController,
        *,
        locator: SuggestionLocator | None = None,
        engine: DecorationEngine | None = None,
        suggestions: list[Suggestion] | None = None,
    ) -> None:
        self._machine = machine
        self._persistence = persistence
        self._locator = locator or SuggestionLocator()
        self._engine = engine or DecorationEngine(self._locator)
        self._suggestions: list[Suggestion] = list(suggestions or [])
        self._document = RichDocument.from_content(machine.content)
        self._decorations = self._engine.build(self.located(), self._document)

    @property
    def document(self) -> RichDocument:
        return self._document

    @property
    def decorations(self) -> DecorationSet:
        return self._decorations

    @property
    def suggestions(self) -> list[Suggestion]:
        return list(self._suggestions)

    def located(self) -> list[LocatedSuggestion]:
        return self._locator.project(self._document, self._suggestions)

    def sync_from_machine(self) -> bool:
        """Reload the tree when the artifact content moved on; no save."""
        if self._machine.content == self._document.to_content():
            return False
        self._document = RichDocument.from_content(
            self._machine.content,
            revision=self._document.revision + 1,
        )
        self._rebuild()
        return True

    def add_suggestion(self, suggestion: Suggestion) -> None:
        self._suggestions = [item for item in self._suggestions if item.id != suggestion.id]
        self._suggestions.append(suggestion)
        self._rebuild()

    def edit(self, content: str, *, debounce: bool = True) -> bool:
        """Apply a user edit; returns False when no write was scheduled.

        Typing back to the latest saved version drops a pending debounced
        save. A write already queued or in flight is followed by one for
        this content so the store ends on what the user sees.
        """
        document_id = self._machine.document_id
        latest = self._machine.version_content(self._machine.version_count - 1)
        self._machine.update_content(content)
        self.sync_from_machine()
        if content == latest:
            self._persistence.cancel(document_id)
            if not self._persistence.has_pending(document_id):
                return False
            debounce = False
        self._persistence.save(
            document_id,
            content,
            debounce=debounce,
            title=self._machine.title,
            kind=self._machine.kind,
        )
        return True

    def apply_suggestion(self, suggestion_id: str) -> AppliedSuggestion:
        """Apply one suggestion in a single transaction and write immediately."""
        suggestion = next((item for item in self._suggestions if item.id == suggestion_id), None)
        if suggestion is None:
            raise SuggestionNotLocatedError(suggestion_id)
        located = self._locator.locate(self._document, suggestion)
        applied = self._engine.apply(located, self._document, self._decorations)
        content = applied.document.to_content()

        # Raises before anything is swapped when the artifact rejects edits.
        self._machine.update_content(content)
        self._document = applied.document
        self._decorations = applied.decorations
        self._suggestions = [item for item in self._suggestions if item.id != suggestion_id]
        logger.info(
            "editor.suggestion.applied document_id=%s suggestion_id=%s range=%s:%s",
            self._machine.document_id,
            suggestion_id,
            applied.start,
            applied.end,
        )
        self._persistence.save(
            self._machine.document_id,
            content,
            debounce=False,
            title=self._machine.title,
            kind=self._machine.kind,
        )
        return applied

    def _rebuild(self) -> None:
        self._decorations = self._engine.build(self.located(), self._document)
