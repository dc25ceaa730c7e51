"""
Error taxonomy for the message delivery core.

Only durable store failures on writes may abort an operation. Cache and
notification failures are raised by their adapters so callers can log them,
but the orchestrator never lets them escape.
"""
from typing import Optional


class ChatCoreError(Exception):
    """Base class for all errors raised by the core."""

    status_code: int = 500

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(ChatCoreError):
    """Malformed input or dangling reference, rejected before any write."""

    status_code = 400


class PermissionDeniedError(ValidationError):
    """Actor is not allowed to perform the operation."""

    status_code = 403


class NotFoundError(ChatCoreError):
    """Message, conversation or recipient is absent."""

    status_code = 404


class ConflictError(ChatCoreError):
    """Duplicate message identifier on insert."""

    status_code = 409


class StoreUnavailable(ChatCoreError):
    """Durable store could not complete the request."""

    status_code = 503


class CacheUnavailable(ChatCoreError):
    """Fast cache or conversation index could not complete the request."""

    status_code = 503


class NotifyUnavailable(ChatCoreError):
    """Real-time transport failed while emitting an event."""

    status_code = 503
