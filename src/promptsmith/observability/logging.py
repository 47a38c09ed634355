"""Structured logging setup: JSON lines over a queue listener, redaction, and structlog routing."""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, cast

import structlog

from promptsmith.security.redaction import REDACTED_VALUE, redact_value

JSONValue = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]

LOG_FILENAME: Final[str] = "promptsmith.jsonl"
ROOT_LOGGER_NAME: Final[str] = "promptsmith"

# Fields promoted to top-level keys of every JSON line when bound.
CORRELATION_FIELDS: Final[tuple[str, ...]] = ("request_id", "session_id", "provider", "model")

_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "correlation"}

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "promptsmith_log_correlation", default={}
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for the queue-backed JSON log pipeline.

    ``log_dir=None`` keeps output on stderr only.
    """

    log_dir: Path | str | None = None
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_to_stdout: bool = True
    redact_secrets: bool = True
    configure_structlog: bool = True

    def __post_init__(self) -> None:
        if not self.logger_name.strip():
            raise ValueError("logger_name must be a non-empty string")
        if isinstance(self.queue_size, bool) or self.queue_size <= 0:
            raise ValueError("queue_size must be a positive integer")
        if self.log_dir is None and not self.log_to_stdout:
            raise ValueError("logging needs a log_dir or log_to_stdout")

    def resolved_level(self) -> int:
        if isinstance(self.level, int):
            return self.level
        parsed = logging.getLevelName(self.level.strip().upper())
        if not isinstance(parsed, int):
            raise ValueError(f"unsupported logging level {self.level!r}")
        return parsed


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    log_dir: Path | str | None = None,
    logger_name: str = ROOT_LOGGER_NAME,
) -> logging.Logger:
    """Configure logging from an ``[observability]`` config section.

    ``debug = true`` forces the DEBUG level; ``log_dir`` overrides the configured directory.
    """

    section = dict(observability_config or {})
    level = section.get("log_level", "INFO")
    if section.get("debug") is True:
        level = "DEBUG"
    directory = log_dir if log_dir is not None else section.get("log_dir")

    handle = setup_structured_logging(
        LoggingConfig(
            log_dir=directory if isinstance(directory, (Path, str)) else None,
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            redact_secrets=bool(section.get("redact_secrets", True)),
        )
    )
    return handle.logger


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Never blocks the caller; a full queue drops the record and counts it."""

    def __init__(self, log_queue: queue.Queue[object]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see this context's correlation fields.
        bound = get_correlation_context()
        if bound:
            record.correlation = bound
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            # Called under the handler lock.
            self.dropped += 1


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, redact: bool) -> None:
        super().__init__()
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._clean(record.getMessage()),
        }
        line.update(sorted(_record_correlation(record).items()))

        fields = {
            key: _to_json(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
            and key not in CORRELATION_FIELDS
            and not key.startswith("_")
        }
        if fields:
            line["fields"] = self._clean(fields)
        if record.exc_info is not None:
            line["exception"] = self._clean(self.formatException(record.exc_info))

        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _clean(self, value: JSONValue) -> JSONValue:
        return cast("JSONValue", redact_value(value)) if self._redact else value


class StructuredLoggingHandle:
    """Owns the listener thread and sinks of one active logging setup."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path | None,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """Drain queued records into the sinks, then close them. Idempotent."""

        with self._lock:
            if self._closed:
                return
            self.logger.removeHandler(self._queue_handler)
            # QueueListener.stop() processes everything already enqueued.
            self._listener.stop()
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()
            self._closed = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install the JSON pipeline on ``config.logger_name`` and route structlog through it.

    Any previously active setup is shut down first.
    """

    shutdown_logging()
    level = config.resolved_level()
    formatter = _JsonLineFormatter(redact=config.redact_secrets)

    sinks: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_dir is not None:
        directory = Path(config.log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / LOG_FILENAME
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[object] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    if config.configure_structlog:
        configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    global _active, _atexit_registered
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def configure_structlog() -> None:
    """Send structlog events through stdlib loggers so they reach the JSON sinks.

    Key/value pairs become ``extra`` fields and land under ``fields`` in each line.
    """

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shut down ``handle``, or the active setup when omitted."""

    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is not None and target is _active:
            _active = None
    if target is not None:
        target.shutdown()


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields (``request_id``, ``session_id``, ...) for the enclosed block.

    ``None`` values are skipped so optional identifiers can be passed straight through.
    """

    bound = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            continue
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"correlation field {key!r} must be a non-empty string")
        bound[key] = value.strip()
    token = _correlation.set(bound)
    try:
        yield
    finally:
        _correlation.reset(token)


def _record_correlation(record: logging.LogRecord) -> dict[str, str]:
    snapshot = getattr(record, "correlation", None)
    merged = dict(snapshot) if isinstance(snapshot, Mapping) else {}
    for key in CORRELATION_FIELDS:
        explicit = getattr(record, key, None)
        if isinstance(explicit, str) and explicit.strip():
            merged[key] = explicit.strip()
    return merged


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else REDACTED_VALUE
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return repr(value)


__all__ = [
    "CORRELATION_FIELDS",
    "JSONValue",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
