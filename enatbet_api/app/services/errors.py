"""
Exceptions raised by the service layer.

All of them derive from ``ValueError`` so callers that only care about
"the request could not be honoured" can catch a single type; routers
use ``http_error`` to pick the matching status code.
"""

from fastapi import HTTPException, status


class NotFoundError(ValueError):
    """The requested object does not exist."""


class PermissionDeniedError(ValueError):
    """The caller is authenticated but not allowed to touch the object."""


class ConflictError(ValueError):
    """The request clashes with current state (taken dates, wrong status)."""


def http_error(exc: ValueError) -> HTTPException:
    """Translate a service exception into an ``HTTPException``."""
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))
