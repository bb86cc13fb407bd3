"""
Shared route dependencies and error mapping.
"""

from fastapi import HTTPException

from timewellspent.sync.engine import SyncEngine, sync_engine
from timewellspent.sync.errors import (
    AuthorizationError, ConflictError, NotAuthenticatedError, NotConfiguredError,
    NotFoundError, RemoteError, SyncError, ValidationError,
)

# Most specific first: NotFoundError is a ConflictError.
_STATUS_CODES = (
    (NotAuthenticatedError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 400),
    (NotConfiguredError, 503),
    (RemoteError, 502),
)


def get_engine() -> SyncEngine:
    """FastAPI dependency; tests override it with an isolated engine."""
    return sync_engine


def http_error(e: SyncError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
