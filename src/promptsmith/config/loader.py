"""
promptsmith — runtime config loader.

File: src/promptsmith/config/loader.py
Last updated: 2026-10-18

Purpose
- Resolve the effective runtime config from defaults, ``promptsmith.toml``,
  ``PROMPTSMITH_*`` environment variables, and call-site overrides.

What should be included in this file
- Layer precedence: overrides > env > file > defaults.
- One env variable per scalar config leaf (``PROMPTSMITH_RETRY_MAX_RETRIES``
  for ``retry.max_retries``), coerced to the leaf's default type.
- ``observability.log_dir`` resolved relative to the config file.

Functional requirements
- Each layer is schema-validated; embedded secrets are rejected there.
- Provider credentials are never read here, only the names of their env vars.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from promptsmith.config.schema import (
    DEFAULT_CONFIG,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "promptsmith.toml"
ENV_PREFIX: Final[str] = "PROMPTSMITH_"

ConfigPath = tuple[str, ...]
_Converter = Callable[[str], object]

# Keys that are absent from the defaults but may still be set from the environment.
_OPTIONAL_STRING_KEYS: Final[tuple[ConfigPath, ...]] = (
    ("llm", "model"),
    ("providers", "openai", "base_url"),
    ("providers", "anthropic", "base_url"),
    ("providers", "google", "base_url"),
)
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when a config source cannot be read or an env value cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``config_path`` must exist when given; the implicit ``./promptsmith.toml``
    is optional. Dotted override keys (``"retry.max_retries"``) address nested
    values.
    """

    path = (
        Path(config_path).expanduser().resolve()
        if config_path is not None
        else (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    )
    env = os.environ if environ is None else environ

    effective = assert_valid_config(merge_config(default_config(), _read_toml(path, config_path)))
    effective = merge_config(effective, _env_layer(env))
    effective = merge_config(effective, _expand_overrides(overrides or {}))
    effective = assert_valid_config(effective)
    return assert_valid_config(normalize_paths(effective, base_dir=path.parent))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve ``observability.log_dir`` against ``base_dir`` into a POSIX path."""

    normalized = merge_config({}, config)
    observability = normalized.get("observability")
    if isinstance(observability, dict) and isinstance(observability.get("log_dir"), str):
        raw = Path(os.path.expandvars(observability["log_dir"])).expanduser()
        resolved = raw if raw.is_absolute() else base_dir / raw
        observability["log_dir"] = Path(os.path.normpath(resolved)).as_posix()
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Canonical JSON of the redacted config, suitable for a startup log line."""

    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_variable_name(path: ConfigPath) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path, requested: str | Path | None) -> dict[str, Any]:
    if not path.is_file():
        if requested is not None:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as stream:
            return tomllib.load(stream)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(env: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for path, convert in _env_bindings():
        name = env_variable_name(path)
        raw = env.get(name)
        if raw is None:
            continue
        try:
            value = convert(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(path)} {exc}") from exc
        _assign(layer, path, value)
    return layer


def _env_bindings() -> Iterator[tuple[ConfigPath, _Converter]]:
    for path, default in _scalar_leaves(DEFAULT_CONFIG):
        if path[0] == "meta":
            continue
        if isinstance(default, bool):
            yield path, _parse_bool
        elif isinstance(default, int):
            yield path, _parse_int
        elif isinstance(default, str):
            yield path, str
    for path in _OPTIONAL_STRING_KEYS:
        yield path, str


def _scalar_leaves(
    node: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key in sorted(node):
        value = node[key]
        if isinstance(value, Mapping):
            yield from _scalar_leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _parse_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _expand_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    expanded: dict[str, Any] = {}
    for key in sorted(overrides):
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid override key {key!r}")
        value = overrides[key]
        _assign(expanded, path, merge_config({}, value) if isinstance(value, Mapping) else value)
    return expanded


def _assign(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    *parents, leaf = path
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[leaf] = value


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_variable_name",
    "load_config",
    "normalize_paths",
]
