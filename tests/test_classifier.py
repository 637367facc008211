# tests/test_classifier.py

from __future__ import annotations

import httpx
import pytest

from vitordo.core.errors import (
    AuthError,
    ErrorKind,
    InvalidResponseError,
    NetworkError,
    QuotaError,
    RequestTimeoutError,
    StorageError,
    error_from_status,
)
from vitordo.resilience.classifier import (
    CODE_RULES,
    GENERIC_ERROR_MESSAGE,
    ERROR_CLASSIFIER_VERSION,
    Severity,
    classify_error,
    friendly_error_message,
    is_retryable,
)


@pytest.mark.parametrize("code", sorted(CODE_RULES))
def test_every_code_in_table_classifies_to_its_rule(code: str) -> None:
    rule = CODE_RULES[code]
    c = classify_error({"code": code})
    assert (c.kind, c.retryable, c.severity) == (rule.kind, rule.retryable, rule.severity)
    assert c.code == code
    assert c.matched_rule == "code"


@pytest.mark.parametrize(
    ("error", "kind", "retryable", "severity"),
    [
        ({"code": "RATE_LIMIT"}, ErrorKind.QUOTA, True, Severity.MEDIUM),
        ({"code": "QUOTA_EXCEEDED"}, ErrorKind.QUOTA, False, Severity.HIGH),
        ({"code": "UNAUTHORIZED"}, ErrorKind.AUTH, False, Severity.CRITICAL),
        ({"code": "NETWORK_ERROR"}, ErrorKind.NETWORK, True, Severity.MEDIUM),
        ({"code": "TIMEOUT"}, ErrorKind.TIMEOUT, True, Severity.LOW),
        ({"message": "boom"}, ErrorKind.UNKNOWN, False, Severity.LOW),
    ],
)
def test_reference_classifications(error, kind, retryable, severity) -> None:
    c = classify_error(error)
    assert c.kind == kind
    assert c.retryable is retryable
    assert c.severity == severity


@pytest.mark.parametrize(
    ("status", "code", "kind"),
    [
        (401, "UNAUTHORIZED", ErrorKind.AUTH),
        (403, "FORBIDDEN", ErrorKind.AUTH),
        (429, "RATE_LIMIT", ErrorKind.QUOTA),
        (408, "TIMEOUT", ErrorKind.TIMEOUT),
        (503, "SERVICE_UNAVAILABLE", ErrorKind.NETWORK),
        (500, "INTERNAL_SERVER_ERROR", ErrorKind.UNKNOWN),
        (400, "INVALID_REQUEST", ErrorKind.UNKNOWN),
    ],
)
def test_http_status_mapping(status: int, code: str, kind: ErrorKind) -> None:
    c = classify_error({"status": status})
    assert c.code == code
    assert c.kind == kind
    assert c.matched_rule == "http_status"

    # Same result through the taxonomy exception built at the boundary.
    assert classify_error(error_from_status(status)).code == code


def test_taxonomy_exceptions_classify_by_code() -> None:
    assert classify_error(NetworkError("down")).kind == ErrorKind.NETWORK
    assert classify_error(RequestTimeoutError("slow")).kind == ErrorKind.TIMEOUT
    assert classify_error(AuthError("bad key")).severity == Severity.CRITICAL
    assert classify_error(QuotaError("slow down", code="RATE_LIMIT")).retryable is True
    assert classify_error(QuotaError("out of credits")).retryable is False
    assert classify_error(InvalidResponseError("garbage")).retryable is False

    storage = classify_error(StorageError("disk full"))
    assert storage.kind == ErrorKind.STORAGE
    assert storage.retryable is False
    assert storage.severity == Severity.LOW


def test_aliases_normalize_provider_codes() -> None:
    assert classify_error({"code": "insufficient_quota"}).code == "QUOTA_EXCEEDED"
    assert classify_error({"code": "rate-limit-exceeded"}).code == "RATE_LIMIT"


def test_builtin_and_httpx_exception_types() -> None:
    assert classify_error(TimeoutError()).kind == ErrorKind.TIMEOUT
    assert classify_error(ConnectionRefusedError()).kind == ErrorKind.NETWORK

    request = httpx.Request("GET", "http://example.invalid")
    assert classify_error(httpx.ConnectError("nope", request=request)).kind == ErrorKind.NETWORK
    assert classify_error(httpx.ReadTimeout("slow", request=request)).kind == ErrorKind.TIMEOUT


def test_response_status_is_read_from_attached_response() -> None:
    request = httpx.Request("POST", "http://example.invalid")
    response = httpx.Response(429, request=request)
    err = httpx.HTTPStatusError("too many", request=request, response=response)
    assert classify_error(err).code == "RATE_LIMIT"


@pytest.mark.parametrize(
    ("message", "kind", "pattern"),
    [
        ("Rate limit reached, retry later", ErrorKind.QUOTA, "rate limit"),
        ("You exceeded your current quota", ErrorKind.QUOTA, "quota"),
        ("Invalid API key provided", ErrorKind.AUTH, "invalid api key"),
        ("The operation timed out", ErrorKind.TIMEOUT, "timed out"),
        ("Failed to fetch", ErrorKind.NETWORK, "fetch"),
    ],
)
def test_text_heuristics_are_a_fallback(message: str, kind: ErrorKind, pattern: str) -> None:
    c = classify_error(RuntimeError(message))
    assert c.kind == kind
    assert c.matched_pattern == pattern
    assert c.matched_rule.startswith("text_")


def test_text_precedence_quota_before_network() -> None:
    c = classify_error(RuntimeError("network quota exhausted"))
    assert c.kind == ErrorKind.QUOTA


def test_code_beats_message_text() -> None:
    c = classify_error({"code": "UNAUTHORIZED", "message": "network timeout"})
    assert c.kind == ErrorKind.AUTH


def test_classification_is_deterministic() -> None:
    err = RuntimeError("connection reset by peer")
    assert classify_error(err) == classify_error(err)
    assert is_retryable(err) is True


def test_friendly_messages_never_expose_raw_text() -> None:
    c = classify_error(RuntimeError("Traceback: secret internals"))
    assert friendly_error_message(c) == GENERIC_ERROR_MESSAGE
    assert "check your internet" in friendly_error_message(classify_error({"code": "NETWORK_ERROR"}))


def test_to_details_carries_version() -> None:
    details = classify_error({"code": "TIMEOUT"}).to_details()
    assert details["classifier_version"] == ERROR_CLASSIFIER_VERSION
    assert details["kind"] == "timeout"
    assert details["retryable"] is True
