"""Error taxonomy shared by stream, artifact, editor and persistence layers."""

from __future__ import annotations


class MalformedEventError(ValueError):
    """Raised when a raw stream event cannot be classified into a delta."""

    def __init__(self, reason: str, *, raw: object = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class InvalidStateTransitionError(RuntimeError):
    """Raised when an artifact operation is called from a state that forbids it."""

    def __init__(self, *, document_id: str, status: str, operation: str) -> None:
        super().__init__(f"invalid_transition:{operation} document_id={document_id} status={status}")
        self.document_id = document_id
        self.status = status
        self.operation = operation


class SuggestionNotLocatedError(LookupError):
    """Raised when a suggestion's original text is absent from the document."""

    def __init__(self, suggestion_id: str) -> None:
        super().__init__(f"suggestion_not_located:{suggestion_id}")
        self.suggestion_id = suggestion_id


class PersistenceWriteError(RuntimeError):
    """Raised when a document write keeps failing after all retry attempts."""

    def __init__(self, document_id: str, attempts: int, cause: BaseException | None = None) -> None:
        super().__init__(f"persistence_write_failed:{document_id} attempts={attempts}")
        self.document_id = document_id
        self.attempts = attempts
        self.cause = cause


class StreamDisconnectedError(ConnectionError):
    """Raised when the upstream stream ends without an `end` event."""


class ConfirmationError(ValueError):
    """Raised for decisions that do not match a pending confirmation request."""
