"""
promptsmith — provider adapter capability set and shared helpers

File: src/promptsmith/llm/providers/base.py
Last updated: 2026-10-18

Purpose
- Describe the capability set every backend implements so that the execution
  engine never depends on a concrete provider.

What should be included in this file
- ``ProviderAdapter`` protocol: ``build_request`` / ``invoke`` / ``extract_text``.
- Lazy SDK import helper raising a classified unavailability error.
- Tolerant readers for SDK response objects and plain mappings.

Functional requirements
- Adapters carry no retry logic; retries belong to the execution engine.

Non-functional requirements
- Adding a backend must not require touching the engine or the client.
"""

from __future__ import annotations

import importlib
from collections.abc import Mapping, Sequence
from types import ModuleType
from typing import Protocol, cast, runtime_checkable

from promptsmith.llm.errors import ClassifiedError, ErrorKind


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capability set shared by all generation backends."""

    name: str
    model: str
    timeout_ms: int

    def build_request(self, prompt: str, max_tokens: int) -> dict[str, object]: ...

    async def invoke(self, payload: Mapping[str, object]) -> object: ...

    def extract_text(self, response: object) -> str: ...


def import_sdk(module_name: str, *, provider: str, sdk_label: str) -> ModuleType:
    """Import an optional provider SDK or raise ``BACKEND_FAILED``."""

    try:
        return importlib.import_module(module_name)
    except ImportError as exc:
        raise ClassifiedError(
            ErrorKind.BACKEND_FAILED,
            f"{sdk_label} SDK is not installed",
            provider=provider,
            recovery_hint=f"Install the {sdk_label} SDK (pip install 'promptsmith[{provider}]')",
            details={"provider": provider},
        ) from exc


def require_attr(module: ModuleType, attr: str, *, provider: str, sdk_label: str) -> object:
    value = getattr(module, attr, None)
    if value is None:
        raise ClassifiedError(
            ErrorKind.BACKEND_FAILED,
            f"{sdk_label} SDK does not expose {attr}",
            provider=provider,
            details={"provider": provider},
        )
    return value


def read_value(value: object, key: str, *, default: object | None = None) -> object | None:
    if isinstance(value, Mapping):
        return cast("object | None", value.get(key, default))
    return cast("object | None", getattr(value, key, default))


def read_sequence(value: object, key: str) -> tuple[object, ...]:
    candidate = read_value(value, key)
    if isinstance(candidate, Sequence) and not isinstance(candidate, (str, bytes, bytearray)):
        return tuple(candidate)
    return ()


def read_str(value: object, key: str) -> str | None:
    candidate = read_value(value, key)
    if isinstance(candidate, str):
        return candidate
    return None


def validate_non_empty_str(value: str, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{name} cannot be empty")
    return normalized


def validate_optional_str(value: str | None, name: str) -> str | None:
    if value is None:
        return None
    return validate_non_empty_str(value, name)


def validate_timeout_ms(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError("timeout_ms must be a positive integer")
    return value


__all__ = [
    "ProviderAdapter",
    "import_sdk",
    "read_sequence",
    "read_str",
    "read_value",
    "require_attr",
    "validate_non_empty_str",
    "validate_optional_str",
    "validate_timeout_ms",
]
