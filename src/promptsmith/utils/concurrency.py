"""Cooperative cancellation and timeout primitives for provider calls and backoff sleeps."""

from __future__ import annotations

import asyncio
import inspect
import weakref
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    Tokens can be linked: a token created by :func:`linked_token` is cancelled as
    soon as any of its parents is cancelled, which lets a caller-supplied token
    and an internally derived one be threaded as a single value.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self._reason or "operation cancelled")

    def _link(self, child: CancellationToken) -> None:
        self._children.add(child)
        if self.is_cancelled:
            child.cancel(self._reason)


def linked_token(*parents: CancellationToken | None) -> CancellationToken:
    """Return a token cancelled when any non-``None`` parent is cancelled."""

    child = CancellationToken()
    for parent in parents:
        if parent is not None:
            parent._link(child)
    return child


@contextmanager
def deadline_token(
    timeout_seconds: float | None,
    *parents: CancellationToken | None,
) -> Iterator[CancellationToken]:
    """Yield a token linked to ``parents`` that also fires after ``timeout_seconds``.

    Must be entered from a running event loop. The timer is disarmed on exit.
    """

    if timeout_seconds is not None and timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    token = linked_token(*parents)
    handle: asyncio.TimerHandle | None = None
    if timeout_seconds is not None:
        handle = asyncio.get_running_loop().call_later(
            timeout_seconds, token.cancel, "deadline exceeded"
        )
    try:
        yield token
    finally:
        if handle is not None:
            handle.cancel()


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float | None,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` until it finishes, times out, or ``cancel_token`` fires.

    Raises ``TimeoutError`` on timeout and ``asyncio.CancelledError`` on token
    cancellation. An abandoned task is cancelled and drained so its eventual
    outcome is always observed.
    """
    if timeout_seconds is not None and timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise asyncio.CancelledError(token.reason or "operation cancelled")

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if task in done:
            return await task

        await _drain(task)
        if cancel_wait_task in done and token.is_cancelled:
            raise asyncio.CancelledError(token.reason or "operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    except asyncio.CancelledError:
        # Outer cancellation must not leave the wrapped call running.
        if not task.done():
            await _drain(task)
        raise
    finally:
        if not cancel_wait_task.done():
            cancel_wait_task.cancel()
        await asyncio.gather(cancel_wait_task, return_exceptions=True)


async def sleep_with_cancel(
    delay_seconds: float,
    cancel_token: CancellationToken | None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Sleep for ``delay_seconds`` unless ``cancel_token`` fires first."""

    if cancel_token is None:
        await sleep(delay_seconds)
        return
    await run_with_timeout(sleep(delay_seconds), None, cancel_token)


async def _drain(task: asyncio.Task[T]) -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects rejected before scheduling so CPython does not
    # emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "deadline_token",
    "linked_token",
    "run_with_timeout",
    "sleep_with_cancel",
]
