"""
promptsmith — execution engine for generation attempts

File: src/promptsmith/llm/retry.py
Last updated: 2026-10-18

Purpose
- Run one logical generation request as a bounded sequence of attempts with
  classified, selective retries.

What should be included in this file
- ``RetrySettings`` snapshot read once per top-level call.
- ``AttemptOutcome`` variants (``Success`` / ``Retry`` / ``Fail``).
- Equal-jitter exponential backoff.
- Total deadline enforcement and cooperative cancellation of backoff sleeps.

Functional requirements
- ``AUTH_FAILED`` and ``INVALID_INPUT`` are never retried; ``RATE_LIMITED`` always
  is; other kinds only with a transient HTTP status.
- A deadline overrun is always reported as ``TIMEOUT``.
- Empty or whitespace-only output is a failure, never a success.

Non-functional requirements
- Clock, sleep, and randomness are injectable for deterministic tests.
"""

from __future__ import annotations

import asyncio
import random as random_module
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final, TypeAlias

import structlog

from promptsmith.constants import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TOTAL_TIMEOUT_MS,
)
from promptsmith.llm.classifier import coerce_error
from promptsmith.llm.errors import ClassifiedError, ErrorKind
from promptsmith.utils.concurrency import CancellationToken, sleep_with_cancel

RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})
NON_RETRYABLE_KINDS: Final[frozenset[ErrorKind]] = frozenset(
    {ErrorKind.AUTH_FAILED, ErrorKind.INVALID_INPUT}
)
EMPTY_RESPONSE_MESSAGE: Final[str] = "LLM returned empty response (possibly blocked or filtered)"

RequestFn: TypeAlias = Callable[[], Awaitable[str]]
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
ClockFn: TypeAlias = Callable[[], float]
RandomIntFn: TypeAlias = Callable[[int, int], int]


@dataclass(frozen=True, slots=True)
class RetrySettings:
    """Retry budget for one top-level call."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    total_timeout_ms: int = DEFAULT_TOTAL_TIMEOUT_MS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be > 0")
        if self.max_delay_ms <= 0:
            raise ValueError("max_delay_ms must be > 0")
        if self.total_timeout_ms <= 0:
            raise ValueError("total_timeout_ms must be > 0")
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError("base_delay_ms must be <= max_delay_ms")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> RetrySettings:
        """Build settings from the ``[retry]`` section of a loaded config."""

        section = config.get("retry", {})
        return cls(
            max_retries=int(section.get("max_retries", DEFAULT_MAX_RETRIES)),
            base_delay_ms=int(section.get("base_delay_ms", DEFAULT_BASE_DELAY_MS)),
            max_delay_ms=int(section.get("max_delay_ms", DEFAULT_MAX_DELAY_MS)),
            total_timeout_ms=int(section.get("total_timeout_ms", DEFAULT_TOTAL_TIMEOUT_MS)),
        )


@dataclass(frozen=True, slots=True)
class Success:
    text: str


@dataclass(frozen=True, slots=True)
class Retry:
    delay_ms: int
    error: ClassifiedError


@dataclass(frozen=True, slots=True)
class Fail:
    error: ClassifiedError


AttemptOutcome: TypeAlias = Success | Retry | Fail


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    text: str
    attempts: int


def compute_backoff_delay(
    attempt: int,
    settings: RetrySettings,
    random_fn: RandomIntFn = random_module.randint,
) -> int:
    """Return the equal-jitter delay in ms for ``attempt`` (0-based).

    The result lies in ``[capped // 2, capped]`` where ``capped`` is the
    exponential delay clamped to ``max_delay_ms``.
    """

    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    # 2**62 ms already exceeds any valid max_delay_ms.
    exponent = min(attempt, 62)
    capped = min(settings.base_delay_ms * (2**exponent), settings.max_delay_ms)
    floor = capped // 2
    delay = floor + random_fn(0, capped - floor)
    return max(floor, min(capped, delay))


def is_retryable(error: ClassifiedError) -> bool:
    if error.kind in NON_RETRYABLE_KINDS:
        return False
    if error.kind is ErrorKind.RATE_LIMITED:
        return True
    return error.status is not None and error.status in RETRYABLE_STATUS


def total_timeout_error(settings: RetrySettings, provider: str | None = None) -> ClassifiedError:
    return ClassifiedError(
        ErrorKind.TIMEOUT,
        f"Total retry timeout exceeded ({settings.total_timeout_ms}ms)",
        provider=provider,
    )


def resolve_attempt_outcome(
    raw_error: BaseException | ClassifiedError,
    *,
    provider: str,
    attempt: int,
    settings: RetrySettings,
    elapsed_ms: float,
    random_fn: RandomIntFn = random_module.randint,
    logger: Any | None = None,
) -> AttemptOutcome:
    """Decide whether a failed attempt is retried, and after which delay."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    error = coerce_error(raw_error, provider)
    if not is_retryable(error):
        return Fail(error)
    if attempt >= settings.max_retries:
        return Fail(error)

    delay_ms = compute_backoff_delay(attempt, settings, random_fn)
    if elapsed_ms + delay_ms > settings.total_timeout_ms:
        log.warning(
            "Retry loop would exceed total timeout, aborting",
            provider=provider,
            attempt=attempt + 1,
            delay_ms=delay_ms,
            elapsed_ms=round(elapsed_ms, 3),
            total_timeout_ms=settings.total_timeout_ms,
        )
        return Fail(total_timeout_error(settings, provider))

    log.warning(
        f"Retry {attempt + 1}/{settings.max_retries + 1} in {delay_ms}ms: {error.message}",
        provider=provider,
        error_kind=error.kind.value,
        status=error.status,
        delay_ms=delay_ms,
    )
    return Retry(delay_ms=delay_ms, error=error)


async def execute_with_retries(
    request_fn: RequestFn,
    *,
    provider: str,
    settings: RetrySettings | None = None,
    cancel_token: CancellationToken | None = None,
    sleep: SleepFn = asyncio.sleep,
    clock: ClockFn = time.monotonic,
    random_fn: RandomIntFn = random_module.randint,
    logger: Any | None = None,
) -> ExecutionResult:
    """Run ``request_fn`` until it yields non-empty text or fails terminally.

    Raises ``ClassifiedError`` on terminal failure. ``asyncio.CancelledError``
    propagates unchanged unless it was caused by ``cancel_token``.
    """

    resolved = settings if settings is not None else RetrySettings()
    log = logger if logger is not None else structlog.get_logger(__name__)
    started = clock()

    for attempt in range(resolved.max_retries + 1):
        elapsed_ms = (clock() - started) * 1000.0
        if elapsed_ms > resolved.total_timeout_ms:
            raise total_timeout_error(resolved, provider)
        if cancel_token is not None and cancel_token.is_cancelled:
            raise _aborted(provider, "Request aborted")

        outcome = await _run_attempt(
            request_fn,
            provider=provider,
            attempt=attempt,
            settings=resolved,
            started=started,
            cancel_token=cancel_token,
            clock=clock,
            random_fn=random_fn,
            logger=log,
        )

        if isinstance(outcome, Success):
            return ExecutionResult(text=outcome.text, attempts=attempt + 1)
        if isinstance(outcome, Fail):
            raise outcome.error

        try:
            await sleep_with_cancel(outcome.delay_ms / 1000.0, cancel_token, sleep=sleep)
        except asyncio.CancelledError:
            if cancel_token is not None and cancel_token.is_cancelled:
                raise _aborted(provider, "Request aborted during retry backoff") from None
            raise

    raise ClassifiedError(
        ErrorKind.BACKEND_FAILED,
        f"LLM request failed ({provider}): Unknown error",
        provider=provider,
    )


async def _run_attempt(
    request_fn: RequestFn,
    *,
    provider: str,
    attempt: int,
    settings: RetrySettings,
    started: float,
    cancel_token: CancellationToken | None,
    clock: ClockFn,
    random_fn: RandomIntFn,
    logger: Any,
) -> AttemptOutcome:
    attempt_started = clock()
    failure: BaseException
    try:
        text = await request_fn()
    except asyncio.CancelledError:
        if cancel_token is None or not cancel_token.is_cancelled:
            raise
        return Fail(_aborted(provider, "Request aborted"))
    except Exception as exc:  # noqa: BLE001
        failure = exc
    else:
        if isinstance(text, str) and text.strip():
            logger.debug(
                "llm_attempt_completed",
                provider=provider,
                attempt=attempt + 1,
                duration_ms=round((clock() - attempt_started) * 1000.0, 2),
            )
            return Success(text)
        failure = ClassifiedError(
            ErrorKind.BACKEND_FAILED,
            EMPTY_RESPONSE_MESSAGE,
            provider=provider,
            details={"provider": provider},
        )

    return resolve_attempt_outcome(
        failure,
        provider=provider,
        attempt=attempt,
        settings=settings,
        elapsed_ms=(clock() - started) * 1000.0,
        random_fn=random_fn,
        logger=logger,
    )


def _aborted(provider: str, message: str) -> ClassifiedError:
    return ClassifiedError(ErrorKind.TIMEOUT, message, provider=provider)


__all__ = [
    "EMPTY_RESPONSE_MESSAGE",
    "NON_RETRYABLE_KINDS",
    "RETRYABLE_STATUS",
    "AttemptOutcome",
    "ExecutionResult",
    "Fail",
    "Retry",
    "RetrySettings",
    "Success",
    "compute_backoff_delay",
    "execute_with_retries",
    "is_retryable",
    "resolve_attempt_outcome",
    "total_timeout_error",
]
