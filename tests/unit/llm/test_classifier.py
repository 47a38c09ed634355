"""
Unit tests for provider failure classification.

Coverage:
- HTTP status table, provider-native codes, keyword groups, and fallback.
- Abort/timeout coercion.
- Safe details and secret redaction in templated messages.
"""

from __future__ import annotations

import asyncio

import pytest

from promptsmith.llm.classifier import classify_error, coerce_error, read_status_code
from promptsmith.llm.errors import DEFAULT_RECOVERY_HINTS, ClassifiedError, ErrorKind


class RateLimitError(Exception):
    status_code = 429


class AuthenticationError(Exception):
    status_code = 401


class PermissionDeniedError(Exception):
    status_code = 403


class BadGatewayError(Exception):
    status_code = 502


class _Response:
    status_code = 503


class HTTPStatusError(Exception):
    response = _Response()


class CodedError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class BodyError(Exception):
    def __init__(self, message: str, body: dict[str, object]) -> None:
        super().__init__(message)
        self.body = body


class GoogleAPIError(Exception):
    def __init__(self, code: int, status: str) -> None:
        super().__init__(f"{code} {status}")
        self.code = code
        self.status = status


class AbortError(Exception):
    pass


def test_http_429_is_rate_limited_with_backoff_hint() -> None:
    error = classify_error(RateLimitError("slow down"), "openai")

    assert error.kind is ErrorKind.RATE_LIMITED
    assert error.message == "Rate limited by openai (HTTP 429)"
    assert error.recovery_hint == "Retry with exponential backoff or reduce request frequency"
    assert error.status == 429
    assert dict(error.details) == {"provider": "openai", "status": 429}


@pytest.mark.parametrize(
    ("exc", "provider", "status", "env_name"),
    [
        (AuthenticationError("nope"), "anthropic", 401, "ANTHROPIC_API_KEY"),
        (PermissionDeniedError("nope"), "google", 403, "GOOGLE_API_KEY"),
    ],
)
def test_http_auth_statuses_point_at_credential_env(
    exc: Exception, provider: str, status: int, env_name: str
) -> None:
    error = classify_error(exc, provider)

    assert error.kind is ErrorKind.AUTH_FAILED
    assert error.message == f"Authentication failed for {provider} (HTTP {status})"
    assert error.recovery_hint == f"Check {env_name} environment variable"


def test_server_statuses_are_backend_failures() -> None:
    error = classify_error(BadGatewayError("bad gateway"), "openai")
    nested = classify_error(HTTPStatusError("unavailable"), "anthropic")

    assert error.kind is ErrorKind.BACKEND_FAILED
    assert error.message == "openai service unavailable (HTTP 502)"
    assert error.recovery_hint == "Service temporarily unavailable; retry later"
    assert nested.status == 503
    assert nested.message == "anthropic service unavailable (HTTP 503)"


def test_google_integer_code_is_read_as_http_status() -> None:
    raw = GoogleAPIError(429, "RESOURCE_EXHAUSTED")

    assert read_status_code(raw) == 429
    assert classify_error(raw, "google").kind is ErrorKind.RATE_LIMITED


def test_provider_codes_map_before_keywords() -> None:
    quota = classify_error(CodedError("You exceeded your quota", "insufficient_quota"), "openai")
    limited = classify_error(CodedError("x", "rate_limit_exceeded"), "openai")
    bad_key = classify_error(CodedError("x", "invalid_api_key"), "openai")

    assert quota.kind is ErrorKind.RATE_LIMITED
    assert quota.message == "Rate limited by openai: insufficient_quota"
    assert quota.recovery_hint == "Insufficient quota: check account billing"
    assert quota.provider_code == "insufficient_quota"
    assert limited.recovery_hint == "Retry with exponential backoff or reduce request frequency"
    assert bad_key.kind is ErrorKind.AUTH_FAILED
    assert bad_key.message == "Authentication failed for openai: invalid_api_key"
    assert bad_key.recovery_hint == "Check OPENAI_API_KEY environment variable"


def test_provider_code_read_from_error_body() -> None:
    raw = BodyError("x", {"type": "error", "error": {"type": "authentication_error"}})

    error = classify_error(raw, "anthropic")

    assert error.kind is ErrorKind.AUTH_FAILED
    assert error.details["code"] == "authentication_error"


@pytest.mark.parametrize(
    ("message", "kind", "prefix"),
    [
        ("Too Many Requests", ErrorKind.RATE_LIMITED, "Rate limited by openai: "),
        (
            "permission denied for project",
            ErrorKind.AUTH_FAILED,
            "Authentication failed for openai: ",
        ),
        (
            "This model's maximum context length is 8192",
            ErrorKind.BACKEND_FAILED,
            "Context length exceeded for openai: ",
        ),
        ("response blocked by policy", ErrorKind.BACKEND_FAILED, "Content filtered by openai: "),
        ("upstream overloaded", ErrorKind.BACKEND_FAILED, "Service unavailable: openai: "),
        ("socket hang up", ErrorKind.BACKEND_FAILED, "LLM request failed (openai): "),
    ],
)
def test_message_keyword_groups(message: str, kind: ErrorKind, prefix: str) -> None:
    error = classify_error(RuntimeError(message), "openai")

    assert error.kind is kind
    assert error.message == f"{prefix}{message}"
    assert error.details == {"provider": "openai"}


def test_keyword_groups_are_ordered() -> None:
    # Matches both the rate and context groups; rate is checked first.
    error = classify_error(RuntimeError("token rate exceeded"), "google")

    assert error.kind is ErrorKind.RATE_LIMITED


def test_fallback_hint_and_reduce_prompt_hint() -> None:
    fallback = classify_error(RuntimeError("socket hang up"), "openai")
    context = classify_error(RuntimeError("prompt too long"), "openai")

    assert fallback.recovery_hint == "See provider logs or retry the request"
    assert context.recovery_hint == "Reduce prompt size"


def test_messages_are_redacted_and_bounded() -> None:
    secret = "sk-" + "A" * 40
    error = classify_error(RuntimeError(f"socket closed for {secret} " + "x" * 400), "openai")

    assert secret not in error.message
    assert "***REDACTED***" in error.message
    assert len(error.message) < 300


def test_classified_errors_pass_through_unchanged() -> None:
    original = ClassifiedError(ErrorKind.INVALID_INPUT, "bad input")

    assert classify_error(original, "openai") is original
    assert coerce_error(original, "openai") is original


def test_classify_never_raises_on_odd_inputs() -> None:
    for raw in (None, 42, RuntimeError("")):
        error = classify_error(raw, "openai")
        assert isinstance(error, ClassifiedError)
        assert error.kind is ErrorKind.BACKEND_FAILED


@pytest.mark.parametrize(
    "raw",
    [asyncio.CancelledError(), AbortError("stop"), RuntimeError("The operation was aborted")],
)
def test_abort_like_errors_become_request_aborted(raw: BaseException) -> None:
    error = coerce_error(raw, "openai")

    assert error.kind is ErrorKind.TIMEOUT
    assert error.message == "Request aborted"
    assert error.recovery_hint == DEFAULT_RECOVERY_HINTS[ErrorKind.TIMEOUT]


@pytest.mark.parametrize(
    "raw",
    [TimeoutError(), RuntimeError("Request timed out."), CodedError("connect", "ETIMEDOUT")],
)
def test_timeout_like_errors_become_request_timed_out(raw: BaseException) -> None:
    error = coerce_error(raw, "anthropic")

    assert error.kind is ErrorKind.TIMEOUT
    assert error.message == "Request timed out"


def test_coerce_falls_back_to_classification() -> None:
    error = coerce_error(RateLimitError("busy"), "openai")

    assert error.kind is ErrorKind.RATE_LIMITED


class GatewayTimeoutError(Exception):
    status_code = 504


class UpstreamError(Exception):
    status_code = 503


@pytest.mark.parametrize(
    ("raw", "status"),
    [
        (UpstreamError("upstream request timed out"), 503),
        (GatewayTimeoutError("gateway timeout"), 504),
        (UpstreamError("proxy aborted the upstream connection"), 503),
    ],
)
def test_http_status_outranks_timeout_and_abort_wording(raw: Exception, status: int) -> None:
    error = coerce_error(raw, "openai")

    assert error.kind is ErrorKind.BACKEND_FAILED
    assert error.status == status
    assert error.message == f"openai service unavailable (HTTP {status})"


def test_builtin_timeout_still_wins_over_status() -> None:
    raw = TimeoutError("read timed out")
    raw.status_code = 503  # type: ignore[attr-defined]

    error = coerce_error(raw, "openai")

    assert error.kind is ErrorKind.TIMEOUT
    assert error.message == "Request timed out"
