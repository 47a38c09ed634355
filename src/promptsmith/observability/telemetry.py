"""
promptsmith — in-process telemetry for generation requests

File: src/promptsmith/observability/telemetry.py
Last updated: 2026-10-18

Purpose
- Publish one ``LLMRequestEvent`` per ``generate_text`` call so that callers can
  track attempts, latency, and failure kinds without inspecting engine internals.

Functional requirements
- Subscriber failures must never interrupt or alter a generation call.
- Dispatch failures are kept in a bounded buffer for diagnostics.

Non-functional requirements
- Publishing with no subscribers must be effectively free.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

_DEFAULT_ERROR_BUFFER: Final[int] = 256


@dataclass(frozen=True, slots=True)
class LLMRequestEvent:
    """Outcome summary for one top-level generation call."""

    provider: str
    model: str
    attempts: int
    duration_ms: float
    ok: bool
    error_kind: str | None = None
    status: int | None = None

    def __post_init__(self) -> None:
        if self.attempts < 0:
            raise ValueError("attempts must be >= 0")
        if self.duration_ms < 0:
            raise ValueError("duration_ms must be >= 0")

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "provider": self.provider,
            "model": self.model,
            "attempts": self.attempts,
            "duration_ms": round(self.duration_ms, 3),
            "ok": self.ok,
        }
        if self.error_kind is not None:
            payload["error_kind"] = self.error_kind
        if self.status is not None:
            payload["status"] = self.status
        return payload


TelemetrySubscriber = Callable[[LLMRequestEvent], object]


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the publisher."""

    subscriber: str
    error_type: str
    message: str


class TelemetryBus:
    """Synchronous fan-out of request events to registered subscribers."""

    def __init__(self, *, error_buffer_size: int = _DEFAULT_ERROR_BUFFER) -> None:
        if error_buffer_size <= 0:
            raise ValueError("error_buffer_size must be > 0")
        self._subscribers: dict[int, TelemetrySubscriber] = {}
        self._dispatch_errors = deque[DispatchError](maxlen=error_buffer_size)
        self._next_token = 1
        self._lock = threading.Lock()

    @property
    def has_subscribers(self) -> bool:
        with self._lock:
            return bool(self._subscribers)

    def subscribe(self, callback: TelemetrySubscriber) -> int:
        """Register ``callback``; returns a token for :meth:`unsubscribe`."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscribers.pop(token, None) is not None

    def publish(self, event: LLMRequestEvent) -> tuple[DispatchError, ...]:
        if not isinstance(event, LLMRequestEvent):
            raise TypeError("event must be an LLMRequestEvent")
        with self._lock:
            subscribers = tuple(self._subscribers.values())
        if not subscribers:
            return ()

        errors: list[DispatchError] = []
        for callback in subscribers:
            try:
                callback(event)
            except Exception as exc:  # noqa: BLE001
                errors.append(
                    DispatchError(
                        subscriber=getattr(callback, "__qualname__", repr(callback)),
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)


_DEFAULT_BUS = TelemetryBus()


def default_telemetry_bus() -> TelemetryBus:
    return _DEFAULT_BUS


def publish_llm_request(event: LLMRequestEvent) -> tuple[DispatchError, ...]:
    """Publish ``event`` on the process-wide bus."""

    return _DEFAULT_BUS.publish(event)


__all__ = [
    "DispatchError",
    "LLMRequestEvent",
    "TelemetryBus",
    "TelemetrySubscriber",
    "default_telemetry_bus",
    "publish_llm_request",
]
