"""
Client Errors
=============

Failure categories the offline client distinguishes. Each one is
handled differently by the workspace and the reconciler.
"""

from typing import Optional


class ClientError(Exception):
    """Base class for client-side failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthorizationError(ClientError):
    """The session is missing or expired. Never retried automatically."""


class TransientNetworkError(ClientError):
    """Transport failure, timeout or 5xx. The operation is queued and retried."""


class TaskValidationError(ClientError):
    """Task fields were rejected, locally or by the server."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.field = field


class NotFoundError(ClientError):
    """The server has no such task for this account."""


class StorageError(ClientError):
    """Local durable storage refused a write the caller depends on."""
