"""Service-layer exceptions.

Services raise these; the API layer translates them into HTTP responses.
The message is safe to show to the caller.
"""

from __future__ import annotations


class ExamServiceError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ExamServiceError):
    """Attempt, assessment, question or option is missing or out of scope."""


class ForbiddenError(ExamServiceError):
    """Identity mismatch, or the action falls outside the time window."""


class InvalidStateError(ExamServiceError):
    """The attempt or assessment is in a state that forbids the action."""


class ConflictError(ExamServiceError):
    """A concurrent writer got there first."""


class ValidationError(ExamServiceError):
    """An authoring payload breaks a structural rule."""
