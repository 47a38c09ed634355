"""Unit tests for structured generation with the optional strict-JSON fallback."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import pytest

from promptsmith.constants import STRICT_JSON_SUFFIX
from promptsmith.llm.errors import (
    ClassifiedError,
    ErrorKind,
    JsonRecoveryError,
    ResponseTooLargeError,
)
from promptsmith.llm.structured import (
    RecoveryLimits,
    StructuredRequestOptions,
    execute_with_recovery,
)
from promptsmith.utils.concurrency import CancellationToken


@dataclass(slots=True)
class _ScriptedGenerator:
    outputs: deque[str | BaseException]
    prompts: list[str] = field(default_factory=list)
    max_tokens: list[int | None] = field(default_factory=list)
    timeouts: list[int | None] = field(default_factory=list)
    tokens: list[CancellationToken | None] = field(default_factory=list)

    async def generate_text(
        self,
        prompt: str,
        max_tokens: int | None = None,
        *,
        timeout_ms: int | None = None,
        cancel_token: CancellationToken | None = None,
        request_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        self.timeouts.append(timeout_ms)
        self.tokens.append(cancel_token)
        outcome = self.outputs.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@dataclass(slots=True)
class _RecordingLogger:
    events: list[str] = field(default_factory=list)

    def debug(self, event: str, **kwargs: object) -> None:
        self.events.append(event)

    def info(self, event: str, **kwargs: object) -> None:
        self.events.append(event)


def _plan(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict) or not isinstance(value.get("steps"), list):
        raise ValueError("plan requires a steps list")
    return value


_RETRYING = StructuredRequestOptions(retry_on_parse_failure=True)


async def test_first_attempt_success_does_not_use_fallback() -> None:
    generator = _ScriptedGenerator(deque(['Plan: {"steps": ["a"]}']))

    result = await execute_with_recovery(generator, "make a plan", _plan, options=_RETRYING)

    assert result.value == {"steps": ["a"]}
    assert result.used_fallback is False
    assert generator.prompts == ["make a plan"]
    assert generator.max_tokens == [1500]
    assert generator.timeouts == [60000]
    assert isinstance(generator.tokens[0], CancellationToken)


async def test_parse_failure_triggers_one_strict_regeneration() -> None:
    generator = _ScriptedGenerator(deque(["I cannot format that.", '{"steps": []}']))
    logger = _RecordingLogger()

    result = await execute_with_recovery(
        generator, "make a plan", _plan, label="plan", options=_RETRYING, logger=logger
    )

    assert result.value == {"steps": []}
    assert result.used_fallback is True
    assert generator.prompts == ["make a plan", f"make a plan{STRICT_JSON_SUFFIX}"]
    assert "json_recovery_fallback" in logger.events


async def test_parse_failure_without_fallback_propagates() -> None:
    generator = _ScriptedGenerator(deque(["not json", '{"steps": []}']))

    with pytest.raises(JsonRecoveryError) as excinfo:
        await execute_with_recovery(
            generator, "p", _plan, error_kind=ErrorKind.INVALID_INPUT, label="plan"
        )

    assert excinfo.value.kind is ErrorKind.INVALID_INPUT
    assert len(generator.prompts) == 1


async def test_second_parse_failure_is_terminal() -> None:
    generator = _ScriptedGenerator(deque(["nope", '{"wrong": true}']))

    with pytest.raises(JsonRecoveryError):
        await execute_with_recovery(generator, "p", _plan, options=_RETRYING)

    assert len(generator.prompts) == 2


async def test_transport_failures_never_trigger_fallback() -> None:
    generator = _ScriptedGenerator(
        deque([ClassifiedError(ErrorKind.RATE_LIMITED, "Rate limited by openai (HTTP 429)"), "{}"])
    )

    with pytest.raises(ClassifiedError) as excinfo:
        await execute_with_recovery(generator, "p", _plan, options=_RETRYING)

    assert excinfo.value.kind is ErrorKind.RATE_LIMITED
    assert len(generator.prompts) == 1


async def test_oversized_output_never_triggers_fallback() -> None:
    generator = _ScriptedGenerator(deque(['{"steps": []}' + " " * 64, '{"steps": []}']))

    with pytest.raises(ResponseTooLargeError):
        await execute_with_recovery(
            generator, "p", _plan, options=_RETRYING, limits=RecoveryLimits(max_length=32)
        )

    assert len(generator.prompts) == 1


async def test_caller_token_cancellation_reaches_the_generation() -> None:
    caller = CancellationToken()
    caller.cancel("user closed the tab")
    generator = _ScriptedGenerator(deque(['{"steps": []}']))

    await execute_with_recovery(
        generator, "p", _plan, options=StructuredRequestOptions(cancel_token=caller)
    )

    linked = generator.tokens[0]
    assert linked is not None
    assert linked is not caller
    assert linked.is_cancelled


async def test_each_generation_has_its_own_deadline() -> None:
    class _WaitsForDeadline:
        def __init__(self) -> None:
            self.reasons: list[str | None] = []

        async def generate_text(self, prompt: str, max_tokens: int | None = None, **kwargs: Any) -> str:
            token: CancellationToken = kwargs["cancel_token"]
            await asyncio.wait_for(token.wait(), timeout=5)
            self.reasons.append(token.reason)
            raise ClassifiedError(ErrorKind.TIMEOUT, "Request aborted")

    generator = _WaitsForDeadline()

    with pytest.raises(ClassifiedError) as excinfo:
        await execute_with_recovery(
            generator, "p", _plan, options=StructuredRequestOptions(timeout_ms=20)
        )

    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert generator.reasons == ["deadline exceeded"]


def test_options_and_limits_read_config_sections() -> None:
    config = {
        "structured": {"max_tokens": 900, "timeout_ms": 30000, "retry_on_parse_failure": True},
        "llm": {"max_response_length": 1000, "error_preview_chars": 50},
        "observability": {"debug": True},
    }

    options = StructuredRequestOptions.from_config(config, request_id="req-7")
    limits = RecoveryLimits.from_config(config)

    assert options.max_tokens == 900
    assert options.timeout_ms == 30000
    assert options.retry_on_parse_failure is True
    assert options.request_id == "req-7"
    assert limits == RecoveryLimits(max_length=1000, preview_chars=50, debug=True)


def test_options_reject_non_positive_budgets() -> None:
    with pytest.raises(ValueError):
        StructuredRequestOptions(max_tokens=0)
    with pytest.raises(ValueError):
        RecoveryLimits(max_length=0)
