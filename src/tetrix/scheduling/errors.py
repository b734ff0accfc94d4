"""
Typed failures raised by the scheduling engine.

Soft outcomes (past-date warnings, detected conflicts) are returned as data
on results; only hard failures are raised.
"""

from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class carrying a machine-readable code."""

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidInputError(SchedulingError, ValueError):
    """Malformed or out-of-range request. Not retried."""
    code = "INVALID_INPUT"


class NotFoundError(SchedulingError, LookupError):
    code = "NOT_FOUND"


class InfeasibleError(SchedulingError):
    """No allocation satisfies capacity and calendar constraints."""
    code = "INFEASIBLE"


class CapacityExceededError(SchedulingError):
    """A write would overbook a day and was not forced."""
    code = "CAPACITY_EXCEEDED"


class StaleVersionError(SchedulingError):
    """Optimistic-lock mismatch on a task update."""
    code = "STALE_VERSION"
