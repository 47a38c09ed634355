"""
promptsmith — Google Gemini adapter (google-genai)

File: src/promptsmith/llm/providers/google_adapter.py
Last updated: 2026-10-18

Purpose
- Call ``client.aio.models.generate_content`` with explicit safety settings.

Functional requirements
- A candidate finished for ``SAFETY`` is a failure, never an empty success.
- Safety thresholds: ``BLOCK_ONLY_HIGH`` by default, ``OFF`` when disabled.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final, Protocol, cast

from promptsmith.constants import DEFAULT_MODELS, DEFAULT_TIMEOUT_MS
from promptsmith.llm.classifier import CONTENT_HINT
from promptsmith.llm.errors import ClassifiedError, ErrorKind
from promptsmith.llm.providers.base import (
    import_sdk,
    read_sequence,
    read_str,
    read_value,
    require_attr,
    validate_non_empty_str,
    validate_optional_str,
    validate_timeout_ms,
)

SAFETY_CATEGORIES: Final[tuple[str, ...]] = (
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_CIVIC_INTEGRITY",
)
SAFETY_FILTERED_MESSAGE: Final[str] = "Content filtered by safety settings"


class _AsyncModelsAPI(Protocol):
    async def generate_content(self, **kwargs: object) -> object: ...


class _AsyncAPI(Protocol):
    models: _AsyncModelsAPI


class _GoogleClient(Protocol):
    aio: _AsyncAPI


class GoogleAdapter:
    name = "google"

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODELS["google"],
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        safety_disabled: bool = False,
        client: _GoogleClient | None = None,
    ) -> None:
        self.model = validate_non_empty_str(model, "model")
        self.timeout_ms = validate_timeout_ms(timeout_ms)
        self.safety_disabled = bool(safety_disabled)
        self._api_key = validate_optional_str(api_key, "api_key")
        self._base_url = validate_optional_str(base_url, "base_url")
        self._client = client
        self._safety_settings = build_safety_settings(disabled=self.safety_disabled)

    def build_request(self, prompt: str, max_tokens: int) -> dict[str, object]:
        return {
            "model": self.model,
            "contents": prompt,
            "config": {
                "max_output_tokens": max_tokens,
                "safety_settings": [dict(item) for item in self._safety_settings],
            },
        }

    async def invoke(self, payload: Mapping[str, object]) -> object:
        client = self._ensure_client()
        return await client.aio.models.generate_content(**payload)

    def extract_text(self, response: object) -> str:
        candidates = read_sequence(response, "candidates")
        if candidates and _finish_reason_name(read_value(candidates[0], "finish_reason")) == "SAFETY":
            raise ClassifiedError(
                ErrorKind.BACKEND_FAILED,
                SAFETY_FILTERED_MESSAGE,
                provider=self.name,
                recovery_hint=CONTENT_HINT,
                details={"provider": self.name},
            )
        text = read_str(response, "text")
        return text.strip() if text is not None else ""

    def _ensure_client(self) -> _GoogleClient:
        if self._client is None:
            genai = import_sdk("google.genai", provider=self.name, sdk_label="google-genai")
            client_cls = require_attr(genai, "Client", provider=self.name, sdk_label="google-genai")
            init_kwargs: dict[str, object] = {"api_key": self._api_key}
            if self._base_url is not None:
                init_kwargs["http_options"] = {"base_url": self._base_url}
            self._client = cast(_GoogleClient, client_cls(**init_kwargs))  # type: ignore[operator]
        return self._client


def build_safety_settings(*, disabled: bool) -> tuple[Mapping[str, str], ...]:
    threshold = "OFF" if disabled else "BLOCK_ONLY_HIGH"
    return tuple({"category": category, "threshold": threshold} for category in SAFETY_CATEGORIES)


def _finish_reason_name(reason: object) -> str | None:
    if reason is None:
        return None
    # SDK enums expose ``name``; raw payloads carry plain strings.
    name = getattr(reason, "name", None)
    if isinstance(name, str):
        return name.upper()
    value = getattr(reason, "value", reason)
    return str(value).upper()


__all__ = [
    "SAFETY_CATEGORIES",
    "SAFETY_FILTERED_MESSAGE",
    "GoogleAdapter",
    "build_safety_settings",
]
