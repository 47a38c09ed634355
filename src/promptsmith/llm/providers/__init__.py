"""Provider adapters and the factory that binds one to a configured backend."""

from __future__ import annotations

from typing import Any

from promptsmith.constants import DEFAULT_TIMEOUT_MS, SUPPORTED_PROVIDERS
from promptsmith.llm.errors import ClassifiedError, ErrorKind
from promptsmith.llm.providers.anthropic_adapter import AnthropicAdapter
from promptsmith.llm.providers.base import ProviderAdapter
from promptsmith.llm.providers.google_adapter import GoogleAdapter
from promptsmith.llm.providers.openai_adapter import OpenAIAdapter


def create_adapter(
    provider: str,
    *,
    model: str,
    api_key: str | None,
    base_url: str | None = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    safety_disabled: bool = False,
    client: Any | None = None,
) -> ProviderAdapter:
    """Build the adapter for ``provider``; unknown names raise ``INVALID_INPUT``."""

    if provider == "openai":
        return OpenAIAdapter(
            model=model, api_key=api_key, base_url=base_url, timeout_ms=timeout_ms, client=client
        )
    if provider == "anthropic":
        return AnthropicAdapter(
            model=model, api_key=api_key, base_url=base_url, timeout_ms=timeout_ms, client=client
        )
    if provider == "google":
        return GoogleAdapter(
            model=model,
            api_key=api_key,
            base_url=base_url,
            timeout_ms=timeout_ms,
            safety_disabled=safety_disabled,
            client=client,
        )
    raise ClassifiedError(
        ErrorKind.INVALID_INPUT,
        f"Unsupported LLM provider: {provider}",
        recovery_hint=f"Use one of: {', '.join(SUPPORTED_PROVIDERS)}",
    )


__all__ = [
    "AnthropicAdapter",
    "GoogleAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "create_adapter",
]
