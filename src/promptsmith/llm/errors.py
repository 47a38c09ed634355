"""
promptsmith — error taxonomy for generation requests

File: src/promptsmith/llm/errors.py
Last updated: 2026-10-18

Purpose
- Define the closed error vocabulary shared by the classifier, the execution
  engine, the JSON recovery parser, and callers that branch on failures.

What should be included in this file
- ``ErrorKind`` closed enum and per-kind default recovery hints.
- ``ClassifiedError`` with deterministic machine-readable fields.
- Parse-failure and oversize-response specializations.

Functional requirements
- Every error carries a short recovery hint suitable for direct display.
- Raw provider payloads and headers are never retained; only provider, status,
  provider code, and a templated message.

Non-functional requirements
- Errors are constructed once and never mutated afterwards.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Final

from promptsmith.security.redaction import sanitize_error_context


class ErrorKind(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    BACKEND_FAILED = "BACKEND_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    AUTH_FAILED = "AUTH_FAILED"
    TIMEOUT = "TIMEOUT"


DEFAULT_RECOVERY_HINTS: Final[Mapping[ErrorKind, str]] = MappingProxyType(
    {
        ErrorKind.INVALID_INPUT: "Check the input parameters and try again.",
        ErrorKind.BACKEND_FAILED: (
            "Retry the request. If the issue persists, check LLM provider status."
        ),
        ErrorKind.RATE_LIMITED: (
            "Wait a few seconds and retry. Consider reducing request frequency."
        ),
        ErrorKind.AUTH_FAILED: "Verify your API key is correct and has sufficient permissions.",
        ErrorKind.TIMEOUT: (
            "The request timed out. Try again with a shorter prompt or increase timeout."
        ),
    }
)


class ClassifiedError(RuntimeError):
    """Normalized failure with a fixed-vocabulary kind, independent of backend."""

    def __init__(
        self,
        kind: ErrorKind | str,
        message: str,
        *,
        provider: str | None = None,
        status: int | None = None,
        provider_code: str | None = None,
        recovery_hint: str | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        self.kind = ErrorKind(kind)
        self.message = message.strip() or "unknown error"
        self.provider = provider
        self.status = status
        self.provider_code = provider_code
        self.recovery_hint = recovery_hint or DEFAULT_RECOVERY_HINTS[self.kind]
        self.details: Mapping[str, object] = MappingProxyType(dict(details or {}))

        parts = [f"kind={self.kind.value}"]
        if self.provider is not None:
            parts.append(f"provider={self.provider}")
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.provider_code is not None:
            parts.append(f"provider_code={self.provider_code}")
        parts.append(f"detail={self.message}")
        super().__init__(" ".join(parts))

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(
        self,
        *,
        include_context: bool = False,
        context: str | None = None,
    ) -> dict[str, object]:
        """Render the user-facing error payload.

        ``context`` is free-form diagnostic text; it is only included when
        ``include_context`` is set, and always redacted and truncated first.
        """

        payload: dict[str, object] = {"code": self.kind.value, "message": self.message}
        if self.recovery_hint:
            payload["hint"] = self.recovery_hint
        if self.details:
            payload["details"] = dict(self.details)
        if include_context:
            sanitized = sanitize_error_context(context)
            if sanitized is not None:
                payload["context"] = sanitized
        return payload


@dataclass(frozen=True, slots=True)
class ParseFailureDetail:
    """One failed JSON recovery stage."""

    stage: str
    message: str


class JsonRecoveryError(ClassifiedError):
    """Raised when every JSON recovery strategy failed."""

    parse_failed = True

    def __init__(
        self,
        kind: ErrorKind | str,
        label: str,
        stages: tuple[ParseFailureDetail, ...],
        *,
        preview: str | None = None,
    ) -> None:
        self.stages = stages
        self.preview = preview
        details: dict[str, object] = {
            "parse_failed": True,
            "strategies": [item.stage for item in stages],
        }
        if stages:
            details["last_stage"] = stages[-1].stage
            details["last_error"] = stages[-1].message
        if preview is not None:
            details["preview"] = preview
        super().__init__(kind, f"Failed to parse {label} as JSON", details=details)


class ResponseTooLargeError(ClassifiedError):
    """Raised before any recovery strategy when backend output exceeds the size guard."""

    parse_failed = False

    def __init__(self, kind: ErrorKind | str, length: int, max_length: int) -> None:
        self.length = length
        self.max_length = max_length
        super().__init__(
            kind,
            f"LLM response too large: {length} chars (max: {max_length})",
            details={"length": length, "max_length": max_length},
        )


def is_parse_failure(error: BaseException) -> bool:
    """Return ``True`` only for errors raised because JSON recovery failed."""

    return bool(getattr(error, "parse_failed", False))


__all__ = [
    "DEFAULT_RECOVERY_HINTS",
    "ClassifiedError",
    "ErrorKind",
    "JsonRecoveryError",
    "ParseFailureDetail",
    "ResponseTooLargeError",
    "is_parse_failure",
]
