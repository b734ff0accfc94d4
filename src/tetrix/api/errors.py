"""
Mapping of engine failures to HTTP errors.
"""

from fastapi import HTTPException

from tetrix.scheduling.errors import CapacityExceededError, SchedulingError

STATUS_BY_CODE = {
    "INVALID_INPUT": 400,
    "NOT_FOUND": 404,
    "CAPACITY_EXCEEDED": 409,
    "STALE_VERSION": 409,
    "INFEASIBLE": 422,
}


def http_error(exc: SchedulingError) -> HTTPException:
    """Translate a SchedulingError into an HTTPException with a typed payload."""
    detail = exc.to_dict()
    if isinstance(exc, CapacityExceededError):
        # Availability conflicts keep the code existing clients switch on
        detail["error"] = "CONFLIT_DISPONIBILITE"
    return HTTPException(status_code=STATUS_BY_CODE.get(exc.code, 400), detail=detail)
