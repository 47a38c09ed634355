"""
promptsmith — generation client and shared client handle

File: src/promptsmith/llm/client.py
Last updated: 2026-10-18

Purpose
- Expose the ``generate_text`` contract consumed by every higher-level tool,
  independent of which backend is configured.
- Own the single process-wide client handle.

What should be included in this file
- ``LLMClient`` binding one provider adapter to the execution engine.
- Per-attempt timeout and cancellation racing with drained abandoned calls.
- ``SharedClientHandle``: lazy construction, one in-flight build shared by
  concurrent first users, slot cleared when construction fails.
- Request telemetry and log correlation fields.

Functional requirements
- ``generate_text`` raises ``ClassifiedError`` and never returns empty text.
- A missing credential is reported as ``INVALID_INPUT`` naming the env var.

Non-functional requirements
- The handle is created on first use and never closed explicitly.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import random as random_module
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

import structlog

from promptsmith.config import load_config
from promptsmith.constants import (
    DEFAULT_MAX_PROMPT_LENGTH,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODELS,
    DEFAULT_TIMEOUT_MS,
    PROVIDER_ENV_KEYS,
)
from promptsmith.llm.errors import ClassifiedError, ErrorKind
from promptsmith.llm.providers import ProviderAdapter, create_adapter
from promptsmith.llm.retry import (
    ClockFn,
    RandomIntFn,
    RetrySettings,
    SleepFn,
    execute_with_retries,
)
from promptsmith.llm.validation import validate_prompt
from promptsmith.observability.logging import correlation_scope
from promptsmith.observability.telemetry import LLMRequestEvent, TelemetryBus, default_telemetry_bus
from promptsmith.utils.concurrency import CancellationToken, run_with_timeout

RetrySettingsSource: TypeAlias = RetrySettings | Callable[[], RetrySettings]
ClientFactory: TypeAlias = Callable[[], "LLMClient | Awaitable[LLMClient]"]


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Immutable parameters of one ``generate_text`` call."""

    prompt: str
    max_tokens: int
    timeout_ms: int
    cancel_token: CancellationToken | None = None
    request_id: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int):
            raise ClassifiedError(ErrorKind.INVALID_INPUT, "max_tokens must be an integer")
        if self.max_tokens <= 0:
            raise ClassifiedError(ErrorKind.INVALID_INPUT, "max_tokens must be > 0")
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int):
            raise ClassifiedError(ErrorKind.INVALID_INPUT, "timeout_ms must be an integer")
        if self.timeout_ms <= 0:
            raise ClassifiedError(ErrorKind.INVALID_INPUT, "timeout_ms must be > 0")


@dataclass(frozen=True, slots=True)
class ProviderInfo:
    provider: str
    model: str


class LLMClient:
    """Provider-bound generation client running every call through the retry engine."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        *,
        retry_settings: RetrySettingsSource | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
        telemetry: TelemetryBus | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
        random_fn: RandomIntFn = random_module.randint,
        logger: Any | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if max_prompt_length <= 0:
            raise ValueError("max_prompt_length must be > 0")
        self._adapter = adapter
        self._retry_settings = retry_settings if retry_settings is not None else RetrySettings()
        self._max_tokens = max_tokens
        self._max_prompt_length = max_prompt_length
        self._telemetry = telemetry if telemetry is not None else default_telemetry_bus()
        self._sleep = sleep
        self._clock = clock
        self._random_fn = random_fn
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._config: Mapping[str, Any] = config if config is not None else {}

    @property
    def provider(self) -> str:
        return self._adapter.name

    @property
    def model(self) -> str:
        return self._adapter.model

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    @property
    def config(self) -> Mapping[str, Any]:
        """Config this client was built from; empty when constructed directly."""

        return self._config

    def provider_info(self) -> ProviderInfo:
        return ProviderInfo(provider=self.provider, model=self.model)

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
        """Generate text for ``prompt``.

        Raises ``ClassifiedError`` on any terminal failure, including prompt
        validation, deadline overrun, and cancellation through ``cancel_token``.
        """

        started = self._clock()
        attempts = 0
        with correlation_scope(
            request_id=request_id,
            session_id=session_id,
            provider=self.provider,
            model=self.model,
        ):
            try:
                request = GenerationRequest(
                    prompt=validate_prompt(prompt, self._max_prompt_length),
                    max_tokens=max_tokens if max_tokens is not None else self._max_tokens,
                    timeout_ms=timeout_ms if timeout_ms is not None else self._adapter.timeout_ms,
                    cancel_token=cancel_token,
                    request_id=request_id,
                    session_id=session_id,
                )
                payload = self._adapter.build_request(request.prompt, request.max_tokens)
                timeout_seconds = request.timeout_ms / 1000.0

                async def request_fn() -> str:
                    nonlocal attempts
                    attempts += 1
                    response = await run_with_timeout(
                        self._adapter.invoke(payload),
                        timeout_seconds,
                        request.cancel_token,
                    )
                    return self._adapter.extract_text(response)

                result = await execute_with_retries(
                    request_fn,
                    provider=self.provider,
                    settings=self._snapshot_retry_settings(),
                    cancel_token=request.cancel_token,
                    sleep=self._sleep,
                    clock=self._clock,
                    random_fn=self._random_fn,
                    logger=self._logger,
                )
            except ClassifiedError as exc:
                self._publish(started, attempts, ok=False, error=exc)
                raise
            self._publish(started, result.attempts, ok=True, error=None)
            return result.text

    def _snapshot_retry_settings(self) -> RetrySettings:
        if isinstance(self._retry_settings, RetrySettings):
            return self._retry_settings
        return self._retry_settings()

    def _publish(
        self,
        started: float,
        attempts: int,
        *,
        ok: bool,
        error: ClassifiedError | None,
    ) -> None:
        event = LLMRequestEvent(
            provider=self.provider,
            model=self.model,
            attempts=attempts,
            duration_ms=max(0.0, (self._clock() - started) * 1000.0),
            ok=ok,
            error_kind=error.kind.value if error is not None else None,
            status=error.status if error is not None else None,
        )
        for failure in self._telemetry.publish(event):
            self._logger.warning(
                "llm_telemetry_dispatch_failed",
                subscriber=failure.subscriber,
                error_type=failure.error_type,
            )


def build_client_from_config(
    config: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    client: Any | None = None,
    telemetry: TelemetryBus | None = None,
    logger: Any | None = None,
) -> LLMClient:
    """Construct an ``LLMClient`` for the configured provider.

    ``client`` injects a pre-built SDK client into the adapter.
    """

    resolved = config if config is not None else load_config(environ=environ)
    env_map = os.environ if environ is None else environ
    llm_section = resolved.get("llm", {})
    provider = str(llm_section.get("provider", "openai"))
    provider_section = resolved.get("providers", {}).get(provider, {})

    env_name = str(
        provider_section.get("api_key_env", PROVIDER_ENV_KEYS.get(provider, "LLM_API_KEY"))
    )
    api_key = env_map.get(env_name)
    if api_key is None or not api_key.strip():
        raise ClassifiedError(
            ErrorKind.INVALID_INPUT,
            f"Missing {env_name} environment variable for provider: {provider}",
            provider=provider,
            recovery_hint=f"Set {env_name} or switch llm.provider",
        )

    model = llm_section.get("model") or provider_section.get("default_model")
    if not model:
        model = DEFAULT_MODELS.get(provider, "")
    adapter = create_adapter(
        provider,
        model=str(model),
        api_key=api_key.strip(),
        base_url=provider_section.get("base_url"),
        timeout_ms=int(llm_section.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
        safety_disabled=bool(provider_section.get("safety_disabled", False)),
        client=client,
    )
    log = logger if logger is not None else structlog.get_logger(__name__)
    llm_client = LLMClient(
        adapter,
        retry_settings=RetrySettings.from_config(resolved),
        max_tokens=int(llm_section.get("max_tokens", DEFAULT_MAX_TOKENS)),
        max_prompt_length=int(llm_section.get("max_prompt_length", DEFAULT_MAX_PROMPT_LENGTH)),
        telemetry=telemetry,
        logger=log,
        config=resolved,
    )
    log.info(
        f"LLM client initialized: {llm_client.provider} ({llm_client.model})",
        provider=llm_client.provider,
        model=llm_client.model,
    )
    return llm_client


class SharedClientHandle:
    """Process-wide slot holding one lazily built ``LLMClient``.

    Concurrent first users await the same construction. A failed construction
    empties the slot so the next caller starts from scratch.
    """

    def __init__(self, factory: ClientFactory) -> None:
        self._factory = factory
        self._client: LLMClient | None = None
        self._pending: asyncio.Future[LLMClient] | None = None

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def get(self) -> LLMClient:
        if self._client is not None:
            return self._client

        pending = self._pending
        if pending is None:
            pending = asyncio.ensure_future(self._build())
            self._pending = pending

        try:
            client = await asyncio.shield(pending)
        except Exception:
            if self._pending is pending:
                self._pending = None
            raise

        if self._pending is pending:
            self._client = client
            self._pending = None
        return client

    def reset(self, factory: ClientFactory | None = None) -> None:
        """Drop the cached client; optionally swap the factory for later builds.

        An in-flight build keeps running for the callers already awaiting it,
        but its result is no longer cached.
        """

        if factory is not None:
            self._factory = factory
        self._pending = None
        self._client = None

    async def _build(self) -> LLMClient:
        built = self._factory()
        if inspect.isawaitable(built):
            built = await built
        if not isinstance(built, LLMClient):
            raise TypeError("client factory must return an LLMClient")
        return built


_SHARED_HANDLE = SharedClientHandle(build_client_from_config)


def shared_client_handle() -> SharedClientHandle:
    return _SHARED_HANDLE


async def get_llm_client() -> LLMClient:
    return await _SHARED_HANDLE.get()


async def get_provider_info() -> ProviderInfo:
    client = await _SHARED_HANDLE.get()
    return client.provider_info()


def reset_llm_client(factory: ClientFactory | None = None) -> None:
    _SHARED_HANDLE.reset(factory)


__all__ = [
    "ClientFactory",
    "GenerationRequest",
    "LLMClient",
    "ProviderInfo",
    "SharedClientHandle",
    "build_client_from_config",
    "get_llm_client",
    "get_provider_info",
    "reset_llm_client",
    "shared_client_handle",
]
