"""
Error types raised by the tutoring engine.

ValidationError, NotFoundError, InvalidStateError and QueueFullError reach
callers. GenerationFailure is recovered inside the response dispatcher and
turned into an apology reply. ConnectivityDeferred is not an exception at all:
it is returned when an operation was queued instead of applied.
"""

from dataclasses import dataclass


class TutoringError(Exception):
    """Base exception for tutoring engine errors."""

    code = "tutoring_error"


class ValidationError(TutoringError):
    """Raised for bad input (empty subject, end date before start date, ...)."""

    code = "validation_error"


class NotFoundError(TutoringError):
    """Raised when a session, plan, study session or queued item is unknown."""

    code = "not_found"


class InvalidStateError(TutoringError):
    """Raised when operating on a session that is no longer active."""

    code = "invalid_state"


class GenerationFailure(TutoringError):
    """Raised by response generators when no usable reply was produced."""

    code = "generation_failure"


class QueueFullError(TutoringError):
    """Raised when the offline queue is at capacity and rejects new work."""

    code = "offline_queue_full"


@dataclass(frozen=True)
class ConnectivityDeferred:
    """Signal that an operation was queued for replay rather than applied."""

    operation_id: str
    kind: str
    session_id: str
