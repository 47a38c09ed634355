"""Public observability primitives: structured logging and request telemetry."""

from promptsmith.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from promptsmith.observability.telemetry import (
    DispatchError,
    LLMRequestEvent,
    TelemetryBus,
    default_telemetry_bus,
    publish_llm_request,
)

__all__ = [
    "DispatchError",
    "LLMRequestEvent",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "TelemetryBus",
    "configure_structlog",
    "correlation_scope",
    "default_telemetry_bus",
    "get_correlation_context",
    "publish_llm_request",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
