"""Utility exports for cancellation and timeout helpers."""

from promptsmith.utils.concurrency import (
    CancellationToken,
    deadline_token,
    linked_token,
    run_with_timeout,
    sleep_with_cancel,
)

__all__ = [
    "CancellationToken",
    "deadline_token",
    "linked_token",
    "run_with_timeout",
    "sleep_with_cancel",
]
