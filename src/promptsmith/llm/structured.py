"""
promptsmith — structured JSON responses with an optional reinforced retry

File: src/promptsmith/llm/structured.py
Last updated: 2026-10-18

Purpose
- Combine generation, JSON recovery, and one optional fallback generation into
  the structured-response entry point used by higher-level tools.

What should be included in this file
- ``StructuredRequestOptions`` / ``StructuredResult``.
- ``execute_with_recovery``: generate, recover, and on parse failure optionally
  regenerate with a strict-JSON suffix.
- ``execute_llm_with_json_response`` bound to the shared client handle.

Functional requirements
- Only JSON recovery failures trigger the fallback; transport failures and
  oversized responses propagate unchanged.
- ``used_fallback`` is true only when the second generation was needed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

import structlog

from promptsmith.constants import (
    LLM_ERROR_PREVIEW_CHARS,
    LLM_MAX_RESPONSE_LENGTH,
    STRICT_JSON_SUFFIX,
    STRUCTURED_MAX_TOKENS,
    STRUCTURED_TIMEOUT_MS,
)
from promptsmith.llm.client import get_llm_client
from promptsmith.llm.errors import ErrorKind, is_parse_failure
from promptsmith.llm.json_recovery import JsonValidator, recover_json
from promptsmith.utils.concurrency import CancellationToken, deadline_token

T = TypeVar("T")


class TextGenerator(Protocol):
    async def generate_text(
        self,
        prompt: str,
        max_tokens: int | None = None,
        *,
        timeout_ms: int | None = None,
        cancel_token: CancellationToken | None = None,
        request_id: str | None = None,
        session_id: str | None = None,
    ) -> str: ...


@dataclass(frozen=True, slots=True)
class StructuredRequestOptions:
    """Per-call options for structured generation."""

    max_tokens: int = STRUCTURED_MAX_TOKENS
    timeout_ms: int = STRUCTURED_TIMEOUT_MS
    cancel_token: CancellationToken | None = None
    retry_on_parse_failure: bool = False
    retry_prompt_suffix: str = STRICT_JSON_SUFFIX
    request_id: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **overrides: Any) -> StructuredRequestOptions:
        """Build defaults from the ``[structured]`` section, then apply ``overrides``."""

        section = config.get("structured", {})
        values: dict[str, Any] = {
            "max_tokens": int(section.get("max_tokens", STRUCTURED_MAX_TOKENS)),
            "timeout_ms": int(section.get("timeout_ms", STRUCTURED_TIMEOUT_MS)),
            "retry_on_parse_failure": bool(section.get("retry_on_parse_failure", False)),
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True, slots=True)
class RecoveryLimits:
    """Guards applied to backend text before JSON recovery."""

    max_length: int = LLM_MAX_RESPONSE_LENGTH
    preview_chars: int = LLM_ERROR_PREVIEW_CHARS
    debug: bool = False

    def __post_init__(self) -> None:
        if self.max_length <= 0:
            raise ValueError("max_length must be > 0")
        if self.preview_chars < 0:
            raise ValueError("preview_chars must be >= 0")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> RecoveryLimits:
        llm_section = config.get("llm", {})
        observability = config.get("observability", {})
        return cls(
            max_length=int(llm_section.get("max_response_length", LLM_MAX_RESPONSE_LENGTH)),
            preview_chars=int(llm_section.get("error_preview_chars", LLM_ERROR_PREVIEW_CHARS)),
            debug=bool(observability.get("debug", False)),
        )


@dataclass(frozen=True, slots=True)
class StructuredResult(Generic[T]):
    value: T
    used_fallback: bool


async def execute_with_recovery(
    client: TextGenerator,
    prompt: str,
    validate: JsonValidator[T],
    *,
    error_kind: ErrorKind | str = ErrorKind.BACKEND_FAILED,
    label: str = "LLM response",
    options: StructuredRequestOptions | None = None,
    limits: RecoveryLimits | None = None,
    logger: Any | None = None,
) -> StructuredResult[T]:
    """Generate and recover JSON, regenerating once with a strict suffix if allowed."""

    resolved = options if options is not None else StructuredRequestOptions()
    guards = limits if limits is not None else RecoveryLimits()
    log = logger if logger is not None else structlog.get_logger(__name__)

    try:
        value = await _generate_and_recover(
            client, prompt, validate, error_kind, label, resolved, guards, log
        )
        return StructuredResult(value=value, used_fallback=False)
    except Exception as exc:
        if not (resolved.retry_on_parse_failure and is_parse_failure(exc)):
            raise
        log.info("json_recovery_fallback", label=label, error_kind=str(error_kind))

    value = await _generate_and_recover(
        client,
        f"{prompt}{resolved.retry_prompt_suffix}",
        validate,
        error_kind,
        label,
        resolved,
        guards,
        log,
    )
    return StructuredResult(value=value, used_fallback=True)


async def execute_llm_with_json_response(
    prompt: str,
    validate: JsonValidator[T],
    error_kind: ErrorKind | str,
    label: str,
    options: StructuredRequestOptions | None = None,
    *,
    limits: RecoveryLimits | None = None,
) -> StructuredResult[T]:
    """Structured-response entry point backed by the shared client handle.

    Options and limits the caller leaves unset come from the config the shared
    client was built with (``[structured]``, ``llm.max_response_length``,
    ``llm.error_preview_chars``, ``observability.debug``).
    """

    client = await get_llm_client()
    config = client.config
    return await execute_with_recovery(
        client,
        prompt,
        validate,
        error_kind=error_kind,
        label=label,
        options=options if options is not None else StructuredRequestOptions.from_config(config),
        limits=limits if limits is not None else RecoveryLimits.from_config(config),
    )


async def _generate_and_recover(
    client: TextGenerator,
    prompt: str,
    validate: JsonValidator[T],
    error_kind: ErrorKind | str,
    label: str,
    options: StructuredRequestOptions,
    limits: RecoveryLimits,
    logger: Any,
) -> T:
    # Each generation is bounded by its own deadline combined with the caller's token.
    with deadline_token(options.timeout_ms / 1000.0, options.cancel_token) as token:
        text = await client.generate_text(
            prompt,
            options.max_tokens,
            timeout_ms=options.timeout_ms,
            cancel_token=token,
            request_id=options.request_id,
            session_id=options.session_id,
        )
    return recover_json(
        text,
        validate,
        error_kind=error_kind,
        label=label,
        max_length=limits.max_length,
        preview_chars=limits.preview_chars,
        debug=limits.debug,
        logger=logger,
    )


__all__ = [
    "RecoveryLimits",
    "StructuredRequestOptions",
    "StructuredResult",
    "TextGenerator",
    "execute_llm_with_json_response",
    "execute_with_recovery",
]
