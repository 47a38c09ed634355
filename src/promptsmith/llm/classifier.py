"""
promptsmith — provider failure classification

File: src/promptsmith/llm/classifier.py
Last updated: 2026-10-18

Purpose
- Map arbitrary SDK/transport exceptions onto the closed ``ErrorKind`` taxonomy.

What should be included in this file
- Ordered rules: HTTP status, provider-native error code, message keywords,
  then a generic fallback.
- Abort/timeout coercion used by the execution engine.

Functional requirements
- ``classify_error`` never raises.
- Only provider, status, and provider code survive into ``details``; free-form
  messages are redacted and bounded before being templated.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from typing import Final

from promptsmith.constants import PROVIDER_ENV_KEYS
from promptsmith.llm.errors import ClassifiedError, ErrorKind
from promptsmith.security.redaction import sanitize_error_context

RETRY_HINT: Final[str] = "Retry with exponential backoff or reduce request frequency"
QUOTA_HINT: Final[str] = "Insufficient quota: check account billing"
UNAVAILABLE_HINT: Final[str] = "Service temporarily unavailable; retry later"
CONTEXT_HINT: Final[str] = "Reduce prompt size"
CONTENT_HINT: Final[str] = "Rephrase the prompt to avoid content that triggers provider filters"
FALLBACK_HINT: Final[str] = "See provider logs or retry the request"

_SERVER_STATUSES: Final[frozenset[int]] = frozenset({500, 502, 503, 504})
_RATE_LIMIT_CODES: Final[frozenset[str]] = frozenset({"rate_limit_exceeded", "insufficient_quota"})
_AUTH_CODES: Final[frozenset[str]] = frozenset({"invalid_api_key", "authentication_error"})

# Keyword groups are evaluated in this order; the first group with a hit wins.
_RATE_KEYWORDS: Final[tuple[str, ...]] = ("rate", "429", "too many requests", "quota")
_AUTH_KEYWORDS: Final[tuple[str, ...]] = ("auth", "401", "403", "invalid api key", "permission")
_CONTEXT_KEYWORDS: Final[tuple[str, ...]] = ("context", "token", "too long", "maximum")
_CONTENT_KEYWORDS: Final[tuple[str, ...]] = ("content", "filter", "safety", "blocked", "policy")
_TRANSIENT_KEYWORDS: Final[tuple[str, ...]] = ("503", "502", "500", "unavailable", "overloaded")

_ABORT_PATTERN: Final[re.Pattern[str]] = re.compile(r"\babort(ed|ing)?\b", re.IGNORECASE)
_TIMEOUT_PATTERN: Final[re.Pattern[str]] = re.compile(r"\btimed?\s*out\b", re.IGNORECASE)


def classify_error(raw: BaseException | object, provider: str) -> ClassifiedError:
    """Classify ``raw`` for ``provider``; already-classified errors pass through."""

    if isinstance(raw, ClassifiedError):
        return raw

    status = read_status_code(raw)
    code = read_provider_code(raw)
    details: dict[str, object] = {"provider": provider}
    if status is not None:
        details["status"] = status
    if code is not None:
        details["code"] = code

    by_status = _classify_status(status, provider, code, details)
    if by_status is not None:
        return by_status

    by_code = _classify_code(code, provider, status, details)
    if by_code is not None:
        return by_code

    message = _safe_message(raw)
    lowered = message.lower()

    if _contains_any(lowered, _RATE_KEYWORDS):
        return ClassifiedError(
            ErrorKind.RATE_LIMITED,
            f"Rate limited by {provider}: {message}",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=QUOTA_HINT if "quota" in lowered else RETRY_HINT,
            details=details,
        )
    if _contains_any(lowered, _AUTH_KEYWORDS):
        return ClassifiedError(
            ErrorKind.AUTH_FAILED,
            f"Authentication failed for {provider}: {message}",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=_credential_hint(provider),
            details=details,
        )
    if _contains_any(lowered, _CONTEXT_KEYWORDS):
        return ClassifiedError(
            ErrorKind.BACKEND_FAILED,
            f"Context length exceeded for {provider}: {message}",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=CONTEXT_HINT,
            details=details,
        )
    if _contains_any(lowered, _CONTENT_KEYWORDS):
        return ClassifiedError(
            ErrorKind.BACKEND_FAILED,
            f"Content filtered by {provider}: {message}",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=CONTENT_HINT,
            details=details,
        )
    if _contains_any(lowered, _TRANSIENT_KEYWORDS):
        return ClassifiedError(
            ErrorKind.BACKEND_FAILED,
            f"Service unavailable: {provider}: {message}",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=UNAVAILABLE_HINT,
            details=details,
        )

    return ClassifiedError(
        ErrorKind.BACKEND_FAILED,
        f"LLM request failed ({provider}): {message}",
        provider=provider,
        status=status,
        provider_code=code,
        recovery_hint=FALLBACK_HINT,
        details=details,
    )


def coerce_error(raw: BaseException | object, provider: str) -> ClassifiedError:
    """Classify ``raw``, mapping abort and timeout shapes onto ``TIMEOUT``.

    Cancellation and ``TimeoutError`` always win; otherwise an HTTP status
    outranks abort or timeout names and wording.
    """

    if isinstance(raw, ClassifiedError):
        return raw
    if _is_abort(raw):
        return ClassifiedError(
            ErrorKind.TIMEOUT,
            "Request aborted",
            provider=provider,
            details={"provider": provider},
        )
    if _is_timeout(raw):
        return ClassifiedError(
            ErrorKind.TIMEOUT,
            "Request timed out",
            provider=provider,
            details={"provider": provider},
        )
    return classify_error(raw, provider)


def read_status_code(raw: object) -> int | None:
    """Best-effort HTTP status lookup across SDK exception shapes."""

    for key in ("status_code", "status", "http_status"):
        value = getattr(raw, key, None)
        if _is_int(value):
            return value
    response = getattr(raw, "response", None)
    if response is not None:
        nested = getattr(response, "status_code", None)
        if _is_int(nested):
            return nested
    # google-genai APIError exposes the HTTP status as an integer ``code``.
    code = getattr(raw, "code", None)
    if _is_int(code) and 100 <= code <= 599:
        return code
    return None


def read_provider_code(raw: object) -> str | None:
    """Best-effort provider-native error code (``code`` or ``body.error.code|type``)."""

    code = getattr(raw, "code", None)
    if isinstance(code, str) and code.strip():
        return code.strip()
    body = getattr(raw, "body", None)
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping):
            for key in ("code", "type"):
                candidate = error.get(key)
                if isinstance(candidate, str) and candidate.strip():
                    return candidate.strip()
    return None


def _classify_status(
    status: int | None,
    provider: str,
    code: str | None,
    details: dict[str, object],
) -> ClassifiedError | None:
    if status is None:
        return None
    if status == 429:
        return ClassifiedError(
            ErrorKind.RATE_LIMITED,
            f"Rate limited by {provider} (HTTP 429)",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=QUOTA_HINT if code == "insufficient_quota" else RETRY_HINT,
            details=details,
        )
    if status in {401, 403}:
        return ClassifiedError(
            ErrorKind.AUTH_FAILED,
            f"Authentication failed for {provider} (HTTP {status})",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=_credential_hint(provider),
            details=details,
        )
    if status in _SERVER_STATUSES:
        return ClassifiedError(
            ErrorKind.BACKEND_FAILED,
            f"{provider} service unavailable (HTTP {status})",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=UNAVAILABLE_HINT,
            details=details,
        )
    return None


def _classify_code(
    code: str | None,
    provider: str,
    status: int | None,
    details: dict[str, object],
) -> ClassifiedError | None:
    if code is None:
        return None
    normalized = code.lower()
    if normalized in _RATE_LIMIT_CODES:
        return ClassifiedError(
            ErrorKind.RATE_LIMITED,
            f"Rate limited by {provider}: {code}",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=QUOTA_HINT if normalized == "insufficient_quota" else RETRY_HINT,
            details=details,
        )
    if normalized in _AUTH_CODES:
        return ClassifiedError(
            ErrorKind.AUTH_FAILED,
            f"Authentication failed for {provider}: {code}",
            provider=provider,
            status=status,
            provider_code=code,
            recovery_hint=_credential_hint(provider),
            details=details,
        )
    return None


def _credential_hint(provider: str) -> str:
    env_name = PROVIDER_ENV_KEYS.get(provider, f"{provider.upper()}_API_KEY")
    return f"Check {env_name} environment variable"


def _safe_message(raw: object) -> str:
    message = getattr(raw, "message", None)
    if not isinstance(message, str) or not message.strip():
        message = str(raw) if raw is not None else ""
    sanitized = sanitize_error_context(message.strip())
    return sanitized or "Unknown error"


def _is_abort(raw: object) -> bool:
    if isinstance(raw, asyncio.CancelledError):
        return True
    # An HTTP status outranks abort-like names and wording.
    if read_status_code(raw) is not None:
        return False
    if "abort" in type(raw).__name__.lower():
        return True
    if getattr(raw, "code", None) == "ABORT_ERR":
        return True
    return _ABORT_PATTERN.search(str(raw)) is not None


def _is_timeout(raw: object) -> bool:
    if isinstance(raw, TimeoutError):
        return True
    # Gateways report "timed out" alongside a retryable 5xx status.
    if read_status_code(raw) is not None:
        return False
    if "timeout" in type(raw).__name__.lower():
        return True
    if getattr(raw, "code", None) == "ETIMEDOUT":
        return True
    return _TIMEOUT_PATTERN.search(str(raw)) is not None


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


__all__ = [
    "classify_error",
    "coerce_error",
    "read_provider_code",
    "read_status_code",
]
