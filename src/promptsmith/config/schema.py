"""
promptsmith — configuration schema and validation.

File: src/promptsmith/config/schema.py
Last updated: 2026-10-18

Purpose
- Define authoritative defaults and strict validation rules for provider
  selection, retry budgets, response guards, and observability.

What should be included in this file
- Schema versioning.
- Validation rules for required fields, types, enums, numeric minimums, and
  cross-field constraints (``retry.base_delay_ms <= retry.max_delay_ms``).
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded credentials; providers reference env var names only.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from promptsmith.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_PROMPT_LENGTH,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODELS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_TOTAL_TIMEOUT_MS,
    LLM_ERROR_PREVIEW_CHARS,
    LLM_MAX_RESPONSE_LENGTH,
    PROVIDER_ENV_KEYS,
    STRUCTURED_MAX_TOKENS,
    STRUCTURED_TIMEOUT_MS,
    SUPPORTED_PROVIDERS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

MIN_TIMEOUT_MS: Final[int] = 1_000
MIN_BASE_DELAY_MS: Final[int] = 100
MIN_MAX_DELAY_MS: Final[int] = 1_000
MIN_TOTAL_TIMEOUT_MS: Final[int] = 10_000

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "key", "apikey", "credential", "credentials", "auth"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "password",
    "secret",
)


class MetaConfig(TypedDict):
    schema_version: int


class LLMConfig(TypedDict):
    provider: Literal["openai", "anthropic", "google"]
    model: NotRequired[str]
    timeout_ms: int
    max_tokens: int
    max_prompt_length: int
    max_response_length: int
    error_preview_chars: int


class RetryConfig(TypedDict):
    max_retries: int
    base_delay_ms: int
    max_delay_ms: int
    total_timeout_ms: int


class StructuredConfig(TypedDict):
    max_tokens: int
    timeout_ms: int
    retry_on_parse_failure: bool


class ProviderSettings(TypedDict, total=False):
    api_key_env: str
    default_model: str
    base_url: str
    safety_disabled: bool


class ProvidersConfig(TypedDict):
    openai: ProviderSettings
    anthropic: ProviderSettings
    google: ProviderSettings


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    redact_secrets: bool
    debug: bool
    include_error_context: bool


class PromptsmithConfig(TypedDict):
    meta: MetaConfig
    llm: LLMConfig
    retry: RetryConfig
    structured: StructuredConfig
    providers: ProvidersConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[PromptsmithConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "llm": {
        "provider": "openai",
        "timeout_ms": DEFAULT_TIMEOUT_MS,
        "max_tokens": DEFAULT_MAX_TOKENS,
        "max_prompt_length": DEFAULT_MAX_PROMPT_LENGTH,
        "max_response_length": LLM_MAX_RESPONSE_LENGTH,
        "error_preview_chars": LLM_ERROR_PREVIEW_CHARS,
    },
    "retry": {
        "max_retries": DEFAULT_MAX_RETRIES,
        "base_delay_ms": DEFAULT_BASE_DELAY_MS,
        "max_delay_ms": DEFAULT_MAX_DELAY_MS,
        "total_timeout_ms": DEFAULT_TOTAL_TIMEOUT_MS,
    },
    "structured": {
        "max_tokens": STRUCTURED_MAX_TOKENS,
        "timeout_ms": STRUCTURED_TIMEOUT_MS,
        "retry_on_parse_failure": False,
    },
    "providers": {
        "openai": {
            "api_key_env": PROVIDER_ENV_KEYS["openai"],
            "default_model": DEFAULT_MODELS["openai"],
        },
        "anthropic": {
            "api_key_env": PROVIDER_ENV_KEYS["anthropic"],
            "default_model": DEFAULT_MODELS["anthropic"],
        },
        "google": {
            "api_key_env": PROVIDER_ENV_KEYS["google"],
            "default_model": DEFAULT_MODELS["google"],
            "safety_disabled": False,
        },
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "redact_secrets": True,
        "debug": False,
        "include_error_context": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> PromptsmithConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    sections: dict[str, Callable[[Mapping[str, object], str], dict[str, Any]]] = {
        "meta": lambda section, path: _validate_meta(section, path, issues),
        "llm": lambda section, path: _validate_llm(section, path, issues),
        "retry": lambda section, path: _validate_retry(section, path, issues),
        "structured": lambda section, path: _validate_structured(section, path, issues),
        "providers": lambda section, path: _validate_providers(section, path, issues),
        "observability": lambda section, path: _validate_observability(section, path, issues),
    }
    _reject_unknown_keys(payload, set(sections), "", issues)
    _require_keys(payload, set(sections), "", issues)

    out: dict[str, Any] = {}
    for key, validator in sections.items():
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = validator(section, key)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(
                    _join(path, "schema_version"),
                    f"unsupported schema version {parsed}; expected {ConfigSchemaVersion}",
                )
    return out


def _validate_llm(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    minimums = {
        "timeout_ms": MIN_TIMEOUT_MS,
        "max_tokens": 1,
        "max_prompt_length": 1,
        "max_response_length": 1,
        "error_preview_chars": 0,
    }
    allowed = {"provider", "model", *minimums}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed - {"model"}, path, issues)

    out: dict[str, Any] = {}
    if "provider" in payload:
        provider = _as_enum(
            payload["provider"],
            _join(path, "provider"),
            issues,
            allowed_values=SUPPORTED_PROVIDERS,
        )
        if provider is not None:
            out["provider"] = provider

    if "model" in payload:
        raw_model = payload["model"]
        # An empty model string means "use the provider default".
        if raw_model != "":
            model = _as_str(raw_model, _join(path, "model"), issues)
            if model is not None:
                out["model"] = model

    _copy_ints(payload, path, issues, minimums, out)
    return out


def _validate_retry(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    minimums = {
        "max_retries": 0,
        "base_delay_ms": MIN_BASE_DELAY_MS,
        "max_delay_ms": MIN_MAX_DELAY_MS,
        "total_timeout_ms": MIN_TOTAL_TIMEOUT_MS,
    }
    _reject_unknown_keys(payload, set(minimums), path, issues)
    _require_keys(payload, set(minimums), path, issues)

    out: dict[str, Any] = {}
    _copy_ints(payload, path, issues, minimums, out)

    base_delay = out.get("base_delay_ms")
    max_delay = out.get("max_delay_ms")
    if isinstance(base_delay, int) and isinstance(max_delay, int) and base_delay > max_delay:
        issues.add(_join(path, "base_delay_ms"), "must be <= retry.max_delay_ms")
    return out


def _validate_structured(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    minimums = {"max_tokens": 1, "timeout_ms": MIN_TIMEOUT_MS}
    allowed = {"retry_on_parse_failure", *minimums}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    _copy_ints(payload, path, issues, minimums, out)
    if "retry_on_parse_failure" in payload:
        parsed = _as_bool(
            payload["retry_on_parse_failure"], _join(path, "retry_on_parse_failure"), issues
        )
        if parsed is not None:
            out["retry_on_parse_failure"] = parsed
    return out


def _validate_providers(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(SUPPORTED_PROVIDERS), path, issues)
    _require_keys(payload, set(SUPPORTED_PROVIDERS), path, issues)

    out: dict[str, Any] = {}
    for provider_name in SUPPORTED_PROVIDERS:
        raw = payload.get(provider_name)
        if raw is None:
            continue
        section_path = _join(path, provider_name)
        section = _as_object(raw, section_path, issues)
        if section is None:
            continue
        out[provider_name] = _validate_provider_settings(
            section,
            section_path,
            issues,
            allow_safety=(provider_name == "google"),
        )
    return out


def _validate_provider_settings(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    allow_safety: bool,
) -> dict[str, Any]:
    allowed = {"api_key_env", "default_model", "base_url"}
    if allow_safety:
        allowed.add("safety_disabled")
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, {"api_key_env", "default_model"}, path, issues)

    out: dict[str, Any] = {}
    if "api_key_env" in payload:
        parsed_env = _as_env_name(payload["api_key_env"], _join(path, "api_key_env"), issues)
        if parsed_env is not None:
            out["api_key_env"] = parsed_env

    for key in ("default_model", "base_url"):
        if key in payload:
            parsed = _as_str(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed

    if "safety_disabled" in payload:
        parsed_safety = _as_bool(payload["safety_disabled"], _join(path, "safety_disabled"), issues)
        if parsed_safety is not None:
            out["safety_disabled"] = parsed_safety
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "redact_secrets", "debug", "include_error_context"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_level = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level

    if "log_dir" in payload:
        parsed_dir = _as_str(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_dir is not None:
            if "\x00" in parsed_dir:
                issues.add(_join(path, "log_dir"), "must not contain NUL bytes")
            else:
                out["log_dir"] = parsed_dir

    for key in ("redact_secrets", "debug", "include_error_context"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag
    return out


def _copy_ints(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    minimums: Mapping[str, int],
    out: dict[str, Any],
) -> None:
    for key, minimum in minimums.items():
        if key not in payload:
            continue
        parsed = _as_int(payload[key], _join(path, key), issues, minimum=minimum)
        if parsed is not None:
            out[key] = parsed


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: OPENAI_API_KEY)")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = existing if isinstance(existing, dict) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _key_is_sensitive_for_redaction(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _key_is_sensitive_for_redaction(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return True
    return _looks_sensitive_key(normalized)


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "MIN_BASE_DELAY_MS",
    "MIN_MAX_DELAY_MS",
    "MIN_TIMEOUT_MS",
    "MIN_TOTAL_TIMEOUT_MS",
    "PromptsmithConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
