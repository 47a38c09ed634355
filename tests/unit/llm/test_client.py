"""
Unit tests for the generation client and the shared client handle.

Coverage:
- ``generate_text`` success, retry, per-attempt timeout, and cancellation.
- Telemetry events and correlation fields.
- Construction from config and the lazily built process-wide handle.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest

from promptsmith.config import default_config, merge_config
from promptsmith.llm.client import (
    LLMClient,
    ProviderInfo,
    SharedClientHandle,
    build_client_from_config,
    get_llm_client,
    get_provider_info,
    reset_llm_client,
)
from promptsmith.llm.errors import ClassifiedError, ErrorKind
from promptsmith.llm.retry import RetrySettings
from promptsmith.observability.logging import get_correlation_context
from promptsmith.observability.telemetry import LLMRequestEvent, TelemetryBus
from promptsmith.utils.concurrency import CancellationToken


class RateLimitError(Exception):
    status_code = 429


class AuthenticationError(Exception):
    status_code = 401


@dataclass(slots=True)
class _ScriptedAdapter:
    outcomes: deque[object]
    name: str = "openai"
    model: str = "gpt-test"
    timeout_ms: int = 5_000
    payloads: list[dict[str, object]] = field(default_factory=list)
    contexts: list[dict[str, str]] = field(default_factory=list)

    def build_request(self, prompt: str, max_tokens: int) -> dict[str, object]:
        return {"prompt": prompt, "max_tokens": max_tokens}

    async def invoke(self, payload: dict[str, object]) -> object:
        self.payloads.append(payload)
        self.contexts.append(get_correlation_context())
        outcome = self.outcomes.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return outcome

    def extract_text(self, response: object) -> str:
        return str(response).strip()


@dataclass(slots=True)
class _SleepRecorder:
    calls: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@dataclass(slots=True)
class _RecordingLogger:
    events: list[tuple[str, str, dict[str, object]]] = field(default_factory=list)

    def debug(self, event: str, **kwargs: object) -> None:
        self.events.append(("debug", event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self.events.append(("info", event, kwargs))

    def warning(self, event: str, **kwargs: object) -> None:
        self.events.append(("warning", event, kwargs))


def _client(
    adapter: _ScriptedAdapter,
    *,
    telemetry: TelemetryBus | None = None,
    sleep: _SleepRecorder | None = None,
    logger: _RecordingLogger | None = None,
    retry_settings: Any = None,
) -> LLMClient:
    return LLMClient(
        adapter,  # type: ignore[arg-type]
        retry_settings=retry_settings,
        max_tokens=256,
        max_prompt_length=1_000,
        telemetry=telemetry if telemetry is not None else TelemetryBus(),
        sleep=sleep if sleep is not None else _SleepRecorder(),
        random_fn=lambda low, high: high,
        logger=logger if logger is not None else _RecordingLogger(),
    )


async def _hang_forever() -> object:
    await asyncio.Event().wait()
    return "unreachable"


async def test_generate_text_returns_trimmed_text_and_reports_telemetry() -> None:
    adapter = _ScriptedAdapter(deque(["  result text \n"]))
    bus = TelemetryBus()
    events: list[LLMRequestEvent] = []
    bus.subscribe(events.append)

    text = await _client(adapter, telemetry=bus).generate_text("  summarize this  ")

    assert text == "result text"
    assert adapter.payloads == [{"prompt": "summarize this", "max_tokens": 256}]
    assert len(events) == 1
    assert events[0].ok is True
    assert events[0].attempts == 1
    assert events[0].provider == "openai"
    assert events[0].model == "gpt-test"


async def test_retryable_failure_is_retried_through_the_engine() -> None:
    adapter = _ScriptedAdapter(deque([RateLimitError("busy"), "second try"]))
    sleep = _SleepRecorder()
    bus = TelemetryBus()
    events: list[LLMRequestEvent] = []
    bus.subscribe(events.append)

    text = await _client(adapter, telemetry=bus, sleep=sleep).generate_text("q", 32)

    assert text == "second try"
    assert sleep.calls == [1.0]
    assert events[0].attempts == 2
    assert adapter.payloads[0]["max_tokens"] == 32


async def test_failures_publish_kind_status_and_attempts() -> None:
    adapter = _ScriptedAdapter(deque([AuthenticationError("bad key")]))
    bus = TelemetryBus()
    events: list[LLMRequestEvent] = []
    bus.subscribe(events.append)

    with pytest.raises(ClassifiedError) as excinfo:
        await _client(adapter, telemetry=bus).generate_text("q")

    assert excinfo.value.kind is ErrorKind.AUTH_FAILED
    assert events[0].to_dict()["error_kind"] == "AUTH_FAILED"
    assert events[0].status == 401
    assert events[0].attempts == 1
    assert events[0].ok is False


async def test_invalid_prompt_never_reaches_the_backend() -> None:
    adapter = _ScriptedAdapter(deque(["unused"]))
    bus = TelemetryBus()
    events: list[LLMRequestEvent] = []
    bus.subscribe(events.append)

    with pytest.raises(ClassifiedError) as excinfo:
        await _client(adapter, telemetry=bus).generate_text("   ")

    assert excinfo.value.kind is ErrorKind.INVALID_INPUT
    assert adapter.payloads == []
    assert events[0].attempts == 0


async def test_non_positive_max_tokens_is_invalid_input() -> None:
    adapter = _ScriptedAdapter(deque(["unused"]))

    with pytest.raises(ClassifiedError) as excinfo:
        await _client(adapter).generate_text("q", 0)

    assert excinfo.value.kind is ErrorKind.INVALID_INPUT


async def test_slow_attempt_is_abandoned_with_timeout() -> None:
    adapter = _ScriptedAdapter(deque([_hang_forever]))

    with pytest.raises(ClassifiedError) as excinfo:
        await _client(adapter).generate_text("q", timeout_ms=20)

    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert excinfo.value.message == "Request timed out"
    assert len(adapter.payloads) == 1


async def test_cancel_token_aborts_in_flight_attempt() -> None:
    token = CancellationToken()

    async def cancel_then_hang() -> object:
        token.cancel("caller gave up")
        return await _hang_forever()

    adapter = _ScriptedAdapter(deque([cancel_then_hang]))

    with pytest.raises(ClassifiedError) as excinfo:
        await _client(adapter).generate_text("q", cancel_token=token)

    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert excinfo.value.message == "Request aborted"


async def test_correlation_fields_are_bound_during_the_call() -> None:
    adapter = _ScriptedAdapter(deque(["ok"]))

    await _client(adapter).generate_text("q", request_id="req-1", session_id="sess-9")

    assert adapter.contexts[0]["request_id"] == "req-1"
    assert adapter.contexts[0]["session_id"] == "sess-9"
    assert adapter.contexts[0]["provider"] == "openai"
    assert "request_id" not in get_correlation_context()


async def test_retry_settings_are_snapshotted_per_call() -> None:
    snapshots: list[RetrySettings] = []

    def read_settings() -> RetrySettings:
        settings = RetrySettings(max_retries=0)
        snapshots.append(settings)
        return settings

    adapter = _ScriptedAdapter(deque([RateLimitError("busy"), "ok"]))
    client = _client(adapter, retry_settings=read_settings)

    with pytest.raises(ClassifiedError):
        await client.generate_text("q")
    assert await client.generate_text("q") == "ok"
    assert len(snapshots) == 2


async def test_telemetry_subscriber_failure_is_logged_not_raised() -> None:
    def broken(event: LLMRequestEvent) -> None:
        raise RuntimeError("sink offline")

    bus = TelemetryBus()
    bus.subscribe(broken)
    logger = _RecordingLogger()

    client = _client(_ScriptedAdapter(deque(["ok"])), telemetry=bus, logger=logger)
    text = await client.generate_text("q")

    assert text == "ok"
    assert ("warning", "llm_telemetry_dispatch_failed") in [
        (level, event) for level, event, _ in logger.events
    ]


def test_build_client_requires_provider_credential() -> None:
    with pytest.raises(ClassifiedError) as excinfo:
        build_client_from_config(default_config(), environ={})

    assert excinfo.value.kind is ErrorKind.INVALID_INPUT
    assert excinfo.value.message == (
        "Missing OPENAI_API_KEY environment variable for provider: openai"
    )


def test_build_client_uses_provider_default_model() -> None:
    config = merge_config(default_config(), {"llm": {"provider": "anthropic", "timeout_ms": 4_000}})
    logger = _RecordingLogger()

    client = build_client_from_config(
        config,
        environ={"ANTHROPIC_API_KEY": "test-key"},
        client=SimpleNamespace(messages=None),
        logger=logger,
    )

    assert client.provider_info() == ProviderInfo("anthropic", "claude-3-5-sonnet-20241022")
    assert client.adapter.timeout_ms == 4_000
    assert client.config is config
    assert ("info", "LLM client initialized: anthropic (claude-3-5-sonnet-20241022)") in [
        (level, event) for level, event, _ in logger.events
    ]


def test_build_client_prefers_explicit_model_and_custom_env() -> None:
    config = merge_config(
        default_config(),
        {
            "llm": {"provider": "google", "model": "gemini-pro-test"},
            "providers": {"google": {"api_key_env": "MY_GEMINI_KEY"}},
        },
    )

    client = build_client_from_config(
        config, environ={"MY_GEMINI_KEY": "k"}, logger=_RecordingLogger()
    )

    assert client.provider == "google"
    assert client.model == "gemini-pro-test"


def _counting_factory(
    calls: list[int], *, fail_first: bool = False
) -> Callable[[], Awaitable[LLMClient]]:
    async def factory() -> LLMClient:
        calls.append(len(calls) + 1)
        await asyncio.sleep(0)
        if fail_first and len(calls) == 1:
            raise ClassifiedError(
                ErrorKind.INVALID_INPUT, "Missing OPENAI_API_KEY environment variable"
            )
        return _client(_ScriptedAdapter(deque()))

    return factory


async def test_concurrent_first_users_share_one_construction() -> None:
    calls: list[int] = []
    handle = SharedClientHandle(_counting_factory(calls))

    clients = await asyncio.gather(*(handle.get() for _ in range(5)))

    assert calls == [1]
    assert all(client is clients[0] for client in clients)
    assert handle.is_initialized
    assert await handle.get() is clients[0]


async def test_failed_construction_clears_the_slot() -> None:
    calls: list[int] = []
    handle = SharedClientHandle(_counting_factory(calls, fail_first=True))

    with pytest.raises(ClassifiedError):
        await handle.get()
    assert not handle.is_initialized

    client = await handle.get()

    assert isinstance(client, LLMClient)
    assert calls == [1, 2]


async def test_reset_swaps_factory_and_drops_cached_client() -> None:
    first = _client(_ScriptedAdapter(deque(), model="first"))
    second = _client(_ScriptedAdapter(deque(), model="second"))
    handle = SharedClientHandle(lambda: first)

    assert await handle.get() is first
    handle.reset(lambda: second)

    assert await handle.get() is second


async def test_reset_during_construction_lets_waiters_finish() -> None:
    release = asyncio.Event()
    first = _client(_ScriptedAdapter(deque(), model="first"))
    second = _client(_ScriptedAdapter(deque(), model="second"))

    async def slow_factory() -> LLMClient:
        await release.wait()
        return first

    handle = SharedClientHandle(slow_factory)
    waiter = asyncio.ensure_future(handle.get())
    await asyncio.sleep(0)

    handle.reset(lambda: second)
    release.set()

    assert await waiter is first
    assert await handle.get() is second


async def test_factory_must_return_a_client() -> None:
    handle = SharedClientHandle(lambda: object())  # type: ignore[arg-type, return-value]

    with pytest.raises(TypeError):
        await handle.get()


@pytest.fixture
def shared_handle_factory() -> Iterator[None]:
    reset_llm_client(lambda: _client(_ScriptedAdapter(deque(), name="google", model="gemini-unit")))
    yield
    reset_llm_client(build_client_from_config)


@pytest.mark.usefixtures("shared_handle_factory")
async def test_module_level_handle_reports_provider_info() -> None:
    info = await get_provider_info()

    assert info == ProviderInfo(provider="google", model="gemini-unit")
    assert await get_llm_client() is await get_llm_client()
