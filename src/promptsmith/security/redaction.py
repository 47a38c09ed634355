"""
promptsmith — secret redaction for logs and user-visible error payloads

File: src/promptsmith/security/redaction.py
Last updated: 2026-10-18

Purpose
- Keep provider credentials and bearer tokens out of logs, classified error
  messages, and error context surfaced to callers.

What should be included in this file
- Provider key patterns (OpenAI, Anthropic, Google) and generic secret assignments.
- Deterministic text and structure redaction.
- Bounded, sanitized error context for display.

Non-functional requirements
- Redaction must be idempotent: redacting already-redacted text is a no-op.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

REDACTED_VALUE: Final[str] = "***REDACTED***"
ERROR_CONTEXT_MAX_LENGTH: Final[int] = 200

DEFAULT_SENSITIVE_KEY_DENYLIST: Final[frozenset[str]] = frozenset(
    {
        "access_token",
        "api_key",
        "apikey",
        "authorization",
        "bearer_token",
        "client_secret",
        "credential",
        "credentials",
        "password",
        "private_key",
        "refresh_token",
        "secret",
        "token",
        "x_api_key",
        "x_goog_api_key",
    }
)

_SENSITIVE_KEY_SUFFIXES: Final[tuple[str, ...]] = (
    "_api_key",
    "_access_token",
    "_secret",
    "_token",
    "_password",
)

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class _TextRule:
    name: str
    pattern: re.Pattern[str]
    sensitive_group: int | None = None


# Anthropic keys share the ``sk-`` prefix, so their rule runs first.
_TEXT_RULES: Final[tuple[_TextRule, ...]] = (
    _TextRule(
        name="authorization_bearer",
        pattern=re.compile(r"(?i)(\bbearer\s+)([A-Za-z0-9\-._~+/=]{8,})"),
        sensitive_group=2,
    ),
    _TextRule(
        name="explicit_secret_assignment",
        pattern=re.compile(
            r"(?i)(\b(?:password|secret|api[_-]?key|client[_-]?secret|"
            r"access[_-]?token|x-api-key|x-goog-api-key)\b\s*[:=]\s*[\"']?)"
            r"([A-Za-z0-9._~+/=-]{6,})"
        ),
        sensitive_group=2,
    ),
    _TextRule(name="anthropic_api_key", pattern=re.compile(r"\bsk-ant-[A-Za-z0-9_-]{20,255}")),
    _TextRule(name="openai_api_key", pattern=re.compile(r"\bsk-[A-Za-z0-9_-]{20,255}")),
    _TextRule(name="google_api_key", pattern=re.compile(r"\bAIza[A-Za-z0-9_-]{35}")),
)


def is_sensitive_key(key: str) -> bool:
    """Return whether a mapping key names a credential-bearing value."""

    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if normalized in DEFAULT_SENSITIVE_KEY_DENYLIST:
        return True
    return normalized.endswith(_SENSITIVE_KEY_SUFFIXES)


def redact_text(text: str) -> str:
    """Redact secret-like substrings from ``text``."""

    if not isinstance(text, str):
        raise TypeError(f"text must be a string, got {type(text).__name__}")

    redacted = text
    for rule in _TEXT_RULES:
        redacted = _apply_text_rule(redacted, rule)
    return redacted


def redact_value(value: object) -> object:
    """Return a deep-redacted copy of nested mappings/sequences."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, Mapping):
        out: dict[object, object] = {}
        for key, item in value.items():
            if isinstance(key, str) and is_sensitive_key(key):
                out[key] = REDACTED_VALUE
            else:
                out[key] = redact_value(item)
        return out
    if isinstance(value, list):
        return [redact_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_value(item) for item in value)
    return value


def sanitize_error_context(
    context: str | None,
    *,
    max_length: int = ERROR_CONTEXT_MAX_LENGTH,
) -> str | None:
    """Redact and truncate free-form error context before it is shown to a caller."""

    if not context:
        return None
    if max_length <= 0:
        raise ValueError("max_length must be > 0")
    sanitized = redact_text(context)
    if len(sanitized) > max_length:
        sanitized = f"{sanitized[:max_length]}..."
    return sanitized


def _apply_text_rule(text: str, rule: _TextRule) -> str:
    if rule.sensitive_group is None:
        return rule.pattern.sub(REDACTED_VALUE, text)

    group = rule.sensitive_group

    def replace(match: re.Match[str]) -> str:
        start, end = match.span(group)
        match_start = match.start(0)
        whole = match.group(0)
        return f"{whole[: start - match_start]}{REDACTED_VALUE}{whole[end - match_start :]}"

    return rule.pattern.sub(replace, text)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


__all__ = [
    "DEFAULT_SENSITIVE_KEY_DENYLIST",
    "ERROR_CONTEXT_MAX_LENGTH",
    "REDACTED_VALUE",
    "is_sensitive_key",
    "redact_text",
    "redact_value",
    "sanitize_error_context",
]
