"""
Error taxonomy for sync and the friends graph.

Sync passes catch everything at the orchestrator boundary; friend-graph
mutations raise these to the HTTP/CLI layer, which turns them into
user-facing messages.
"""

from typing import Optional


class SyncError(Exception):
    pass


class NotConfiguredError(SyncError):
    def __init__(self, message: str = "Remote sync not configured"):
        super().__init__(message)


class NotAuthenticatedError(SyncError):
    def __init__(self, message: str = "Not signed in"):
        super().__init__(message)


class AuthorizationError(SyncError):
    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class ConflictError(SyncError):
    pass


class NotFoundError(ConflictError):
    pass


class ValidationError(SyncError):
    pass


UNIQUE_VIOLATION = "23505"


class RemoteError(SyncError):
    """Transport failure or an error response from the remote store."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION or self.status_code == 409
