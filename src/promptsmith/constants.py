"""Stable constants shared across the execution engine and its collaborators."""

from __future__ import annotations

from typing import Final

CONFIG_SCHEMA_VERSION: Final[int] = 1

# Supported generation backends, in deterministic order.
SUPPORTED_PROVIDERS: Final[tuple[str, ...]] = ("openai", "anthropic", "google")

# Credential env var consulted for each provider when config does not override it.
PROVIDER_ENV_KEYS: Final[dict[str, str]] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}

DEFAULT_MODELS: Final[dict[str, str]] = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
    "google": "gemini-2.0-flash-exp",
}

DEFAULT_TIMEOUT_MS: Final[int] = 60_000
DEFAULT_MAX_TOKENS: Final[int] = 8_000
DEFAULT_MAX_PROMPT_LENGTH: Final[int] = 10_000

# Retry budget defaults.
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_BASE_DELAY_MS: Final[int] = 1_000
DEFAULT_MAX_DELAY_MS: Final[int] = 10_000
DEFAULT_TOTAL_TIMEOUT_MS: Final[int] = 180_000

# JSON recovery guards.
LLM_MAX_RESPONSE_LENGTH: Final[int] = 500_000
LLM_ERROR_PREVIEW_CHARS: Final[int] = 500

# Structured-response defaults.
STRUCTURED_MAX_TOKENS: Final[int] = 1_500
STRUCTURED_TIMEOUT_MS: Final[int] = 60_000
STRICT_JSON_SUFFIX: Final[str] = (
    "\n\nSTRICT JSON: Return only valid JSON. "
    "Do not include explanations, headers, or code fences."
)

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BASE_DELAY_MS",
    "DEFAULT_MAX_DELAY_MS",
    "DEFAULT_MAX_PROMPT_LENGTH",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MODELS",
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_TOTAL_TIMEOUT_MS",
    "LLM_ERROR_PREVIEW_CHARS",
    "LLM_MAX_RESPONSE_LENGTH",
    "PROVIDER_ENV_KEYS",
    "STRICT_JSON_SUFFIX",
    "STRUCTURED_MAX_TOKENS",
    "STRUCTURED_TIMEOUT_MS",
    "SUPPORTED_PROVIDERS",
]
