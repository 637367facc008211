# src/vitordo/core/errors.py

"""
Error taxonomy used at every boundary of the core.

Transport and storage failures are converted into one of these classes as
close to the source as possible, so the classifier can rely on a stable
`code` instead of sniffing message text.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    QUOTA = "quota"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class CoreError(Exception):
    """Base class for classified failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_code: str = "UNKNOWN_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.code = code or self.default_code
        self.status_code = status_code
        self.details = dict(details or {})

    def __str__(self) -> str:
        return self.message


class NetworkError(CoreError):
    kind = ErrorKind.NETWORK
    default_code = "NETWORK_ERROR"


class RequestTimeoutError(CoreError):
    """Outbound call did not complete in time (the taxonomy's TimeoutError)."""

    kind = ErrorKind.TIMEOUT
    default_code = "TIMEOUT"


class AuthError(CoreError):
    kind = ErrorKind.AUTH
    default_code = "UNAUTHORIZED"


class QuotaError(CoreError):
    kind = ErrorKind.QUOTA
    default_code = "QUOTA_EXCEEDED"


class StorageError(CoreError):
    """Persistence failure. Never fatal: the in-memory store stays authoritative."""

    kind = ErrorKind.STORAGE
    default_code = "STORAGE_ERROR"


class UnknownError(CoreError):
    kind = ErrorKind.UNKNOWN
    default_code = "UNKNOWN_ERROR"


class InvalidResponseError(UnknownError):
    """The collaborator answered, but the answer is unusable (success=false or malformed)."""

    default_code = "INVALID_RESPONSE"


class InvalidTaskError(ValueError):
    """Task data violates a store invariant (e.g. start_time > end_time)."""


# HTTP status -> normalized error code.
HTTP_STATUS_CODES: dict[int, str] = {
    400: "INVALID_REQUEST",
    401: "UNAUTHORIZED",
    402: "QUOTA_EXCEEDED",
    403: "FORBIDDEN",
    408: "TIMEOUT",
    429: "RATE_LIMIT",
    500: "INTERNAL_SERVER_ERROR",
    502: "SERVICE_UNAVAILABLE",
    503: "SERVICE_UNAVAILABLE",
    504: "SERVICE_UNAVAILABLE",
}


def code_for_status(status_code: int) -> str:
    return HTTP_STATUS_CODES.get(int(status_code), "UNKNOWN_ERROR")


def error_from_status(status_code: int, message: str = "", **details: Any) -> CoreError:
    """Build the taxonomy exception for a non-2xx HTTP response."""
    code = code_for_status(status_code)
    cls: type[CoreError]
    if code in ("UNAUTHORIZED", "FORBIDDEN"):
        cls = AuthError
    elif code in ("RATE_LIMIT", "QUOTA_EXCEEDED"):
        cls = QuotaError
    elif code == "TIMEOUT":
        cls = RequestTimeoutError
    elif code == "SERVICE_UNAVAILABLE":
        cls = NetworkError
    else:
        cls = UnknownError
    return cls(message or f"HTTP {status_code}", code=code, status_code=status_code, details=details)
