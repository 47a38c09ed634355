"""Prompt validation applied before any provider call."""

from __future__ import annotations

from promptsmith.constants import DEFAULT_MAX_PROMPT_LENGTH
from promptsmith.llm.errors import ClassifiedError, ErrorKind


def validate_prompt(prompt: str, max_length: int = DEFAULT_MAX_PROMPT_LENGTH) -> str:
    """Return the trimmed prompt or raise ``INVALID_INPUT``.

    The untrimmed length is bounded at twice ``max_length`` before trimming.
    """

    if max_length <= 0:
        raise ValueError("max_length must be > 0")
    if not isinstance(prompt, str):
        raise ClassifiedError(
            ErrorKind.INVALID_INPUT,
            f"Prompt must be a string, got {type(prompt).__name__}",
        )

    raw_limit = max_length * 2
    if len(prompt) > raw_limit:
        raise ClassifiedError(
            ErrorKind.INVALID_INPUT,
            f"Prompt with excessive whitespace rejected ({len(prompt)} characters). "
            f"Maximum allowed: {raw_limit}",
        )

    trimmed = prompt.strip()
    if not trimmed:
        raise ClassifiedError(
            ErrorKind.INVALID_INPUT,
            "Prompt is empty or contains only whitespace. Please provide a valid prompt.",
        )
    if len(trimmed) > max_length:
        raise ClassifiedError(
            ErrorKind.INVALID_INPUT,
            f"Prompt exceeds maximum length of {max_length} characters "
            f"({len(trimmed)} provided). Please shorten your prompt.",
        )
    return trimmed


__all__ = ["validate_prompt"]
