"""
promptsmith — OpenAI chat completions adapter

File: src/promptsmith/llm/providers/openai_adapter.py
Last updated: 2026-10-18

Purpose
- Translate a prompt into a non-streaming chat completion call and read the
  first choice back as plain text.

Non-functional requirements
- The ``openai`` SDK is optional and imported on first use; an injected client
  bypasses the import entirely.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, cast

from promptsmith.constants import DEFAULT_MODELS, DEFAULT_TIMEOUT_MS
from promptsmith.llm.providers.base import (
    import_sdk,
    read_sequence,
    read_value,
    require_attr,
    validate_non_empty_str,
    validate_optional_str,
    validate_timeout_ms,
)

DEFAULT_TEMPERATURE = 0.7


class _ChatCompletionsAPI(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _ChatAPI(Protocol):
    completions: _ChatCompletionsAPI


class _OpenAIClient(Protocol):
    chat: _ChatAPI


class OpenAIAdapter:
    """OpenAI chat completions backend."""

    name = "openai"

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODELS["openai"],
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        temperature: float = DEFAULT_TEMPERATURE,
        client: _OpenAIClient | None = None,
    ) -> None:
        self.model = validate_non_empty_str(model, "model")
        self.timeout_ms = validate_timeout_ms(timeout_ms)
        self.temperature = temperature
        self._api_key = validate_optional_str(api_key, "api_key")
        self._base_url = validate_optional_str(base_url, "base_url")
        self._client = client

    def build_request(self, prompt: str, max_tokens: int) -> dict[str, object]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": self.temperature,
            "stream": False,
        }

    async def invoke(self, payload: Mapping[str, object]) -> object:
        client = self._ensure_client()
        return await client.chat.completions.create(**payload)

    def extract_text(self, response: object) -> str:
        choices = read_sequence(response, "choices")
        if not choices:
            return ""
        message = read_value(choices[0], "message")
        content = read_value(message, "content") if message is not None else None
        if not isinstance(content, str):
            return ""
        return content.strip()

    def _ensure_client(self) -> _OpenAIClient:
        if self._client is None:
            self._client = self._create_default_client()
        return self._client

    def _create_default_client(self) -> _OpenAIClient:
        openai_module = import_sdk("openai", provider=self.name, sdk_label="openai")
        async_openai = require_attr(
            openai_module, "AsyncOpenAI", provider=self.name, sdk_label="openai"
        )
        init_kwargs: dict[str, object] = {"api_key": self._api_key, "max_retries": 0}
        if self._base_url is not None:
            init_kwargs["base_url"] = self._base_url
        return cast(_OpenAIClient, async_openai(**init_kwargs))  # type: ignore[operator]


__all__ = ["DEFAULT_TEMPERATURE", "OpenAIAdapter"]
