"""
promptsmith — structured JSON recovery from free-form backend text

File: src/promptsmith/llm/json_recovery.py
Last updated: 2026-10-18

Purpose
- Locate and validate a JSON payload inside text produced by a generation
  backend, tolerating code fences and surrounding prose.

What should be included in this file
- Ordered strategies: raw, stripped markers, extracted fragment.
- A single-pass, string-aware bracket scanner.
- Size guard applied before any strategy.

Functional requirements
- A strategy succeeds only when the candidate parses as JSON and the caller's
  validator accepts the parsed value.
- Terminal failures report every failed stage; raw text is attached only as a
  bounded preview and only in debug mode.

Non-functional requirements
- Linear-time scan; no regex backtracking over untrusted output.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, Final, TypeVar

import structlog

from promptsmith.constants import LLM_ERROR_PREVIEW_CHARS, LLM_MAX_RESPONSE_LENGTH
from promptsmith.llm.errors import (
    ErrorKind,
    JsonRecoveryError,
    ParseFailureDetail,
    ResponseTooLargeError,
)

T = TypeVar("T")

STAGE_RAW: Final[str] = "raw"
STAGE_STRIPPED: Final[str] = "stripped markers"
STAGE_EXTRACTED: Final[str] = "extracted fragment"

CODE_FENCE: Final[str] = "```"
_FENCE_LANGUAGE: Final[str] = "json"
_OPENERS: Final[dict[str, str]] = {"{": "}", "[": "]"}
_CLOSERS: Final[frozenset[str]] = frozenset({"}", "]"})

JsonValidator = Callable[[Any], T]


def recover_json(
    text: str,
    validate: JsonValidator[T],
    *,
    error_kind: ErrorKind | str = ErrorKind.BACKEND_FAILED,
    label: str = "LLM response",
    max_length: int = LLM_MAX_RESPONSE_LENGTH,
    preview_chars: int = LLM_ERROR_PREVIEW_CHARS,
    debug: bool = False,
    logger: Any | None = None,
) -> T:
    """Return ``validate(parsed)`` for the first strategy that yields valid JSON.

    Raises ``ResponseTooLargeError`` before scanning oversized input and
    ``JsonRecoveryError`` when every strategy failed.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    if len(text) > max_length:
        raise ResponseTooLargeError(error_kind, len(text), max_length)

    trimmed = text.strip()
    failures: list[ParseFailureDetail] = []

    for stage, candidate in _candidates(trimmed):
        if candidate is None:
            failures.append(ParseFailureDetail(stage, "no balanced JSON fragment found"))
            log.debug("json_recovery_stage_failed", label=label, stage=stage)
            continue
        try:
            value = validate(_loads(candidate))
        except Exception as exc:  # noqa: BLE001
            message = _describe_failure(exc)
            failures.append(ParseFailureDetail(stage, message))
            log.debug("json_recovery_stage_failed", label=label, stage=stage, error=message)
            continue
        log.debug("json_recovery_succeeded", label=label, stage=stage)
        return value

    preview: str | None = None
    if debug:
        preview = text[: max(0, preview_chars)]
        log.debug(f"{label}: raw response preview", label=label, preview=preview)
    raise JsonRecoveryError(error_kind, label, tuple(failures), preview=preview)


def strip_code_fences(text: str) -> str:
    """Remove a leading ```` ``` ```` / ```` ```json ```` fence and a trailing fence."""

    return _strip_end_fence(_strip_start_fence(text)).strip()


def extract_first_json_fragment(text: str) -> str | None:
    """Return the first top-level balanced ``{...}`` or ``[...]`` span, if any.

    Brackets inside string literals are ignored; escapes inside strings are
    honored. A closing bracket that does not match the innermost opener is
    skipped rather than treated as the end of the fragment.
    """

    start = -1
    stack: list[str] = []
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if start == -1:
            if char in _OPENERS:
                start = index
                stack.append(char)
            continue

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in _OPENERS:
            stack.append(char)
        elif char in _CLOSERS and stack and _OPENERS[stack[-1]] == char:
            stack.pop()
            if not stack:
                return text[start : index + 1].strip()
    return None


def _candidates(trimmed: str) -> list[tuple[str, str | None]]:
    candidates: list[tuple[str, str | None]] = []
    if not trimmed.startswith(CODE_FENCE) and trimmed[:1] in _OPENERS:
        candidates.append((STAGE_RAW, trimmed))
    stripped = strip_code_fences(trimmed)
    if stripped != trimmed:
        candidates.append((STAGE_STRIPPED, stripped))
    candidates.append((STAGE_EXTRACTED, extract_first_json_fragment(trimmed)))
    return candidates


def _strip_start_fence(text: str) -> str:
    body = text.lstrip()
    if not body.startswith(CODE_FENCE):
        return text
    rest = body[len(CODE_FENCE) :]
    token_end = 0
    while token_end < len(rest) and not rest[token_end].isspace():
        token_end += 1
    token = rest[:token_end]
    # Fences tagged with another language are left untouched.
    if token and token.lower() != _FENCE_LANGUAGE:
        return text
    return rest[token_end:].lstrip()


def _strip_end_fence(text: str) -> str:
    body = text.rstrip()
    if not body.endswith(CODE_FENCE):
        return text
    return body[: -len(CODE_FENCE)]


def _loads(candidate: str) -> Any:
    return json.loads(candidate, parse_constant=_reject_constant)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name!r}")


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, json.JSONDecodeError):
        return f"invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})"
    return f"{type(exc).__name__}: {exc}"


__all__ = [
    "CODE_FENCE",
    "STAGE_EXTRACTED",
    "STAGE_RAW",
    "STAGE_STRIPPED",
    "JsonValidator",
    "extract_first_json_fragment",
    "recover_json",
    "strip_code_fences",
]
