# cratesync/domain/common/errors.py
from __future__ import annotations

from enum import Enum
from typing import Optional


class SyncError(Exception):
    """Base for every failure the core knows how to resolve."""
    code: str = "ERROR"

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AuthorizationError(SyncError):
    code = "BANNED"


class ConflictError(SyncError):
    """Local cache is wrong about the entry or the session. Resync, never roll back alone."""
    code = "CONFLICT"


class RateLimitError(SyncError):
    code = "RATE_LIMITED"

    def __init__(self, message: str = "", *, retry_after_ms: int = 0, code: Optional[str] = None) -> None:
        super().__init__(message, code=code)
        self.retry_after_ms = retry_after_ms


class QuotaExhaustedError(SyncError):
    code = "QUOTA_EXHAUSTED"


class NetworkError(SyncError):
    code = "NETWORK"


class ConnectionTimeout(NetworkError):
    code = "TIMEOUT"


class AuthorityError(SyncError):
    """Authority answered with a failure we have no finer class for."""
    code = "FAILED"


class Resolution(str, Enum):
    ROLLBACK = "rollback"
    RESYNC = "resync"
    BOTH = "both"

    @property
    def rolls_back(self) -> bool:
        return self in (Resolution.ROLLBACK, Resolution.BOTH)

    @property
    def resyncs(self) -> bool:
        return self in (Resolution.RESYNC, Resolution.BOTH)


def resolve(error: SyncError) -> Resolution:
    """Map a confirmation failure to exactly one resolution."""
    if isinstance(error, ConflictError):
        return Resolution.RESYNC
    if isinstance(error, (AuthorizationError, RateLimitError)):
        return Resolution.ROLLBACK
    if isinstance(error, (NetworkError, QuotaExhaustedError)):
        return Resolution.BOTH
    return Resolution.ROLLBACK
