# src/vitordo/resilience/classifier.py

"""Deterministic failure classification for the retry controller."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.errors import HTTP_STATUS_CODES, CoreError, ErrorKind

ERROR_CLASSIFIER_VERSION = 1


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class ClassificationRule:
    kind: ErrorKind
    retryable: bool
    severity: Severity


# Normalized error code -> classification. This is the primary contract with
# collaborators; everything below it is a fallback.
CODE_RULES: dict[str, ClassificationRule] = {
    "RATE_LIMIT": ClassificationRule(ErrorKind.QUOTA, True, Severity.MEDIUM),
    "QUOTA_EXCEEDED": ClassificationRule(ErrorKind.QUOTA, False, Severity.HIGH),
    "UNAUTHORIZED": ClassificationRule(ErrorKind.AUTH, False, Severity.CRITICAL),
    "FORBIDDEN": ClassificationRule(ErrorKind.AUTH, False, Severity.CRITICAL),
    "TIMEOUT": ClassificationRule(ErrorKind.TIMEOUT, True, Severity.LOW),
    "ETIMEDOUT": ClassificationRule(ErrorKind.TIMEOUT, True, Severity.LOW),
    "NETWORK_ERROR": ClassificationRule(ErrorKind.NETWORK, True, Severity.MEDIUM),
    "ECONNREFUSED": ClassificationRule(ErrorKind.NETWORK, True, Severity.MEDIUM),
    "ECONNRESET": ClassificationRule(ErrorKind.NETWORK, True, Severity.MEDIUM),
    "ENOTFOUND": ClassificationRule(ErrorKind.NETWORK, True, Severity.MEDIUM),
    "SERVICE_UNAVAILABLE": ClassificationRule(ErrorKind.NETWORK, True, Severity.MEDIUM),
    "STORAGE_ERROR": ClassificationRule(ErrorKind.STORAGE, False, Severity.LOW),
    "INTERNAL_SERVER_ERROR": ClassificationRule(ErrorKind.UNKNOWN, True, Severity.LOW),
    "INVALID_REQUEST": ClassificationRule(ErrorKind.UNKNOWN, False, Severity.HIGH),
    "INVALID_RESPONSE": ClassificationRule(ErrorKind.UNKNOWN, False, Severity.LOW),
    "UNKNOWN_ERROR": ClassificationRule(ErrorKind.UNKNOWN, False, Severity.LOW),
}

# Provider-specific spellings that mean one of the codes above.
CODE_ALIASES: dict[str, str] = {
    "RATE_LIMITED": "RATE_LIMIT",
    "RATE_LIMIT_EXCEEDED": "RATE_LIMIT",
    "TOO_MANY_REQUESTS": "RATE_LIMIT",
    "INSUFFICIENT_QUOTA": "QUOTA_EXCEEDED",
    "INVALID_API_KEY": "UNAUTHORIZED",
    "PERMISSION_DENIED": "FORBIDDEN",
    "REQUEST_TIMEOUT": "TIMEOUT",
    "CONNECTION_ERROR": "NETWORK_ERROR",
}

# Exception class names (anywhere in the MRO) -> code, checked in precedence order.
_TYPE_RULES: tuple[tuple[str, frozenset[str]], ...] = (
    ("RATE_LIMIT", frozenset({"RateLimitError", "TooManyRequestsError"})),
    ("UNAUTHORIZED", frozenset({"AuthenticationError", "PermissionDeniedError", "UnauthorizedError"})),
    (
        "TIMEOUT",
        frozenset(
            {
                "TimeoutError",
                "APITimeoutError",
                "TimeoutException",
                "ConnectTimeout",
                "ReadTimeout",
                "WriteTimeout",
                "PoolTimeout",
            }
        ),
    ),
    (
        "NETWORK_ERROR",
        frozenset(
            {
                "ConnectionError",
                "APIConnectionError",
                "ConnectError",
                "NetworkError",
                "RemoteProtocolError",
                "ReadError",
                "WriteError",
            }
        ),
    ),
)

_KIND_DEFAULT_CODES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "NETWORK_ERROR",
    ErrorKind.TIMEOUT: "TIMEOUT",
    ErrorKind.AUTH: "UNAUTHORIZED",
    ErrorKind.QUOTA: "QUOTA_EXCEEDED",
}

# Best-effort message heuristics, in precedence order: quota/rate-limit, auth, timeout, network.
TEXT_RULES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("rate_limit", "RATE_LIMIT", ("rate limit", "rate-limit", "too many requests", "429")),
    ("quota", "QUOTA_EXCEEDED", ("quota", "insufficient", "billing", "credits", "usage limit")),
    (
        "auth",
        "UNAUTHORIZED",
        ("unauthorized", "forbidden", "permission denied", "invalid api key", "authentication"),
    ),
    ("timeout", "TIMEOUT", ("timeout", "timed out", "deadline exceeded")),
    (
        "network",
        "NETWORK_ERROR",
        ("network", "fetch", "connection", "could not resolve host", "dns", "unreachable", "offline"),
    ),
)

_FRIENDLY_BY_CODE: dict[str, str] = {
    "RATE_LIMIT": "Too many requests. Please try again later.",
    "QUOTA_EXCEEDED": "API quota exceeded. Please try again later or upgrade your plan.",
    "UNAUTHORIZED": "Invalid API key. Please check your configuration.",
    "FORBIDDEN": "Access denied. Please check your API key permissions.",
    "TIMEOUT": "Request timed out. Please try again.",
    "ETIMEDOUT": "Request timed out. Please try again.",
    "NETWORK_ERROR": "Network connection failed. Please check your internet connection.",
    "ECONNREFUSED": "Connection refused. Please check if the service is available.",
    "ENOTFOUND": "Service not found. Please check your network connection.",
    "SERVICE_UNAVAILABLE": "The service is temporarily unavailable. Please try again.",
    "INVALID_REQUEST": "Invalid request format. Please try rephrasing your input.",
    "STORAGE_ERROR": "Changes could not be saved. They are kept until the app closes.",
    "INVALID_RESPONSE": "Could not understand the response. Please try rephrasing your input.",
}

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request. Please try again."


@dataclass(slots=True, frozen=True)
class ErrorClassification:
    """Normalized failure classification result."""

    kind: ErrorKind
    retryable: bool
    severity: Severity
    code: str
    matched_rule: str
    matched_pattern: str | None = None

    def to_details(self) -> dict[str, object]:
        return {
            "classifier_version": ERROR_CLASSIFIER_VERSION,
            "kind": self.kind.value,
            "retryable": self.retryable,
            "severity": self.severity.value,
            "code": self.code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_error(error: Any) -> ErrorClassification:
    """
    Classify a raw failure.

    Accepts exceptions (taxonomy, builtin, httpx/openai) and plain mappings such
    as {"code": "RATE_LIMIT"} or {"status": 503, "message": "..."}.
    """
    code = _normalize_code(_extract_code(error))
    if code is not None:
        return _from_code(code, matched_rule="code")

    status = _extract_status(error)
    if status is not None and status in HTTP_STATUS_CODES:
        return _from_code(HTTP_STATUS_CODES[status], matched_rule="http_status")

    if isinstance(error, BaseException):
        type_code = _code_from_type(error)
        if type_code is not None:
            return _from_code(type_code, matched_rule="exception_type")

    haystack = _extract_message(error).lower()
    for rule_name, rule_code, patterns in TEXT_RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return _from_code(rule_code, matched_rule=f"text_{rule_name}", matched_pattern=pattern)

    return _from_code("UNKNOWN_ERROR", matched_rule="fallback_unknown")


def is_retryable(error: Any) -> bool:
    return classify_error(error).retryable


def friendly_error_message(classification: ErrorClassification) -> str:
    """User-facing text for a classification. Never exposes the raw error."""
    return _FRIENDLY_BY_CODE.get(classification.code, GENERIC_ERROR_MESSAGE)


def _from_code(code: str, *, matched_rule: str, matched_pattern: str | None = None) -> ErrorClassification:
    rule = CODE_RULES[code]
    return ErrorClassification(
        kind=rule.kind,
        retryable=rule.retryable,
        severity=rule.severity,
        code=code,
        matched_rule=matched_rule,
        matched_pattern=matched_pattern,
    )


def _normalize_code(raw: object) -> str | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    code = raw.strip().upper().replace("-", "_").replace(" ", "_")
    code = CODE_ALIASES.get(code, code)
    return code if code in CODE_RULES else None


def _extract_code(error: Any) -> object:
    if isinstance(error, Mapping):
        return error.get("code")
    return getattr(error, "code", None)


def _extract_status(error: Any) -> int | None:
    if isinstance(error, Mapping):
        raw = error.get("status_code", error.get("status"))
    else:
        raw = getattr(error, "status_code", None)
        if raw is None:
            response = getattr(error, "response", None)
            raw = getattr(response, "status_code", None)
    if isinstance(raw, bool):
        return None
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _code_from_type(error: BaseException) -> str | None:
    if isinstance(error, CoreError):
        default = _KIND_DEFAULT_CODES.get(error.kind)
        if default is not None:
            return default

    names = {cls.__name__ for cls in type(error).__mro__}
    for code, candidates in _TYPE_RULES:
        if names & candidates:
            return code
    return None


def _extract_message(error: Any) -> str:
    if isinstance(error, Mapping):
        return str(error.get("message") or error.get("error") or "")
    return str(error or "")


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
