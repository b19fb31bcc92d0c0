"""Error hierarchy for stageflow.

Every error carries a stable ``code`` string. The tool layer turns an
error into ``{"error": code, "message": ...}`` and the REST layer maps the
code to an HTTP status. Nothing in this hierarchy is retried.
"""

from typing import Any


class StageflowError(Exception):
    """Base exception for all stageflow errors."""

    code = "error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class NotFoundError(StageflowError):
    """A referenced workflow, stage, status, task or project does not exist."""

    code = "not_found"


class ValidationError(StageflowError):
    """Client-correctable input error."""

    code = "invalid_input"


class InvalidTransitionError(ValidationError):
    """Raised when a status transition is not allowed by the state machine."""

    code = "invalid_transition"


class ConflictError(StageflowError):
    """Stale write, or a delete that would orphan dependent rows."""

    code = "conflict"


class PersistenceError(StageflowError):
    """The underlying store call failed."""

    code = "persistence_error"
