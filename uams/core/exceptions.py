"""
Scheduler exception hierarchy.

Only precondition violations raise. Degraded operation (filters that empty a
candidate set, queue generation failures) falls back and logs instead.
"""
from __future__ import annotations


class UAMSError(Exception):
    """Base error for the adaptive memory scheduler."""


class NoCandidatesError(UAMSError):
    """Card selection was requested with an empty candidate set."""

    def __init__(self, message: str = "No cards available for selection"):
        super().__init__(message)


class InsufficientDataError(UAMSError):
    """Not enough review history to fit personal parameters."""

    def __init__(self, available: int, required: int, message: str | None = None):
        self.available = available
        self.required = required
        super().__init__(
            message
            or f"Insufficient data for optimization: {available} data points "
            f"(minimum {required})"
        )


class ParameterValidationError(UAMSError):
    """An FSRS weight vector failed validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class SessionNotFoundError(UAMSError):
    """No persisted session exists for the requested id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")
