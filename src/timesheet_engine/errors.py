"""Engine error taxonomy.

- Input errors: a request is malformed; rejected before anything is written.
- Conflicts: a request collides with an existing record; the message names
  the blocking record.
- Resolution gaps are NOT errors. They are processing statuses on the
  snapshot (see ``services.state_machine.ProcessingStatus``).
"""

from __future__ import annotations

from uuid import UUID


class EngineError(Exception):
    """Base class for errors raised to engine callers."""


class InvalidRequestError(EngineError):
    """Raised when a write request fails field-level validation."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid '{field}': {reason}")


class NotFoundError(EngineError):
    """Raised when a referenced record does not exist."""

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class ConflictError(EngineError):
    """Raised when a write collides with an existing record."""

    def __init__(self, message: str, blocking_id: UUID | None = None):
        self.blocking_id = blocking_id
        if blocking_id is not None:
            message = f"{message} (blocked by {blocking_id})"
        super().__init__(message)


class DuplicateWindowStartError(ConflictError):
    """A window for the same scope already starts on the requested date."""


class BackCutError(ConflictError):
    """A new window would cut into a closed part of the timeline."""


class OverrideOutsideWindowError(ConflictError):
    """A candidate override is not covered by an active client window."""


class SnapshotLockConflictError(ConflictError):
    """A snapshot was locked by another invoice during selection."""


class MultipleClientsError(ConflictError):
    """Snapshots selected for one invoice belong to more than one client."""


class CreditNoteExistsError(ConflictError):
    """The invoice has already been credited."""
