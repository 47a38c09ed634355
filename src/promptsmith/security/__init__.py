"""Public security utilities: credential redaction for logs and error payloads."""

from promptsmith.security.redaction import (
    DEFAULT_SENSITIVE_KEY_DENYLIST,
    ERROR_CONTEXT_MAX_LENGTH,
    REDACTED_VALUE,
    is_sensitive_key,
    redact_text,
    redact_value,
    sanitize_error_context,
)

__all__ = [
    "DEFAULT_SENSITIVE_KEY_DENYLIST",
    "ERROR_CONTEXT_MAX_LENGTH",
    "REDACTED_VALUE",
    "is_sensitive_key",
    "redact_text",
    "redact_value",
    "sanitize_error_context",
]
