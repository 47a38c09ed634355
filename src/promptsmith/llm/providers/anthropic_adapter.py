"""Anthropic messages adapter: one user turn in, first text block out."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, cast

from promptsmith.constants import DEFAULT_MODELS, DEFAULT_TIMEOUT_MS
from promptsmith.llm.providers.base import (
    import_sdk,
    read_sequence,
    read_str,
    require_attr,
    validate_non_empty_str,
    validate_optional_str,
    validate_timeout_ms,
)


class _MessagesAPI(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _AnthropicClient(Protocol):
    messages: _MessagesAPI


class AnthropicAdapter:
    name = "anthropic"

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODELS["anthropic"],
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        client: _AnthropicClient | None = None,
    ) -> None:
        self.model = validate_non_empty_str(model, "model")
        self.timeout_ms = validate_timeout_ms(timeout_ms)
        self._api_key = validate_optional_str(api_key, "api_key")
        self._base_url = validate_optional_str(base_url, "base_url")
        self._client = client

    def build_request(self, prompt: str, max_tokens: int) -> dict[str, object]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }

    async def invoke(self, payload: Mapping[str, object]) -> object:
        client = self._ensure_client()
        return await client.messages.create(**payload)

    def extract_text(self, response: object) -> str:
        for block in read_sequence(response, "content"):
            if read_str(block, "type") != "text":
                continue
            text = read_str(block, "text")
            return text.strip() if text is not None else ""
        return ""

    def _ensure_client(self) -> _AnthropicClient:
        if self._client is None:
            anthropic_module = import_sdk("anthropic", provider=self.name, sdk_label="anthropic")
            async_anthropic = require_attr(
                anthropic_module, "AsyncAnthropic", provider=self.name, sdk_label="anthropic"
            )
            init_kwargs: dict[str, object] = {"api_key": self._api_key, "max_retries": 0}
            if self._base_url is not None:
                init_kwargs["base_url"] = self._base_url
            self._client = cast(_AnthropicClient, async_anthropic(**init_kwargs))  # type: ignore[operator]
        return self._client


__all__ = ["AnthropicAdapter"]
