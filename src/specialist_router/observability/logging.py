"""Structured JSON-lines logging for router sessions.

Records pass through a bounded queue to a listener thread that owns the file
(and optional stdout) sinks, so routing calls never wait on disk. Correlation
fields bound with ``correlation_scope`` are captured on the producing thread.

Components log through ``structlog``. ``configure_structlog`` feeds those events
into the queue-backed stdlib logger; ``configure_structlog_console`` is the
lightweight stderr rendering used when no session log is active.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

REDACTED: Final[str] = "***REDACTED***"
DEFAULT_LOG_FILENAME: Final[str] = "router.jsonl"
DEFAULT_LOGGER_NAME: Final[str] = "specialist_router"

# Record attributes promoted to top-level keys instead of "fields".
_CORRELATION_KEYS: Final[frozenset[str]] = frozenset(
    {"session_id", "correlation_id", "task_id", "profile_id", "event_id"}
)

_SENSITIVE_KEY: Final[re.Pattern[str]] = re.compile(
    r"(?i)secret|token|passw(or)?d|passphrase|api_?key|authorization|credential|cookie|private_key"
)
_INLINE_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b(\s*[:=]\s*)[^\s,;]+"
)
_INLINE_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_BUILTINS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}

_CORRELATION: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "router_log_correlation", default=MappingProxyType({})
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one queue-backed logging session."""

    session_id: str
    base_log_dir: Path | str = Path(".router/logs")
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = DEFAULT_LOG_FILENAME
    log_to_stdout: bool = False
    redactor: LogRedactor | None = None


class StructuredLoggingHandle:
    """Owns the queue, listener and sinks of an active session."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        log_queue: queue.Queue[logging.LogRecord],
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue = log_queue
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

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            # stop() drains whatever is still queued before joining.
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Never blocks the caller; counts records lost to a full queue."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        prepared = super().prepare(record)
        # The listener thread has its own context, so capture correlation here.
        for key, value in _CORRELATION.get().items():
            if not isinstance(getattr(prepared, key, None), str):
                setattr(prepared, key, value)
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._session_id = session_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        message = self._redactor(record.getMessage())
        line: dict[str, JSONValue] = {
            "timestamp": _utc_stamp(datetime.fromtimestamp(record.created, tz=UTC), "milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": message if isinstance(message, str) else json.dumps(message),
            "session_id": self._session_id,
        }
        fields: dict[str, JSONValue] = {}
        for key, value in vars(record).items():
            if key in _RECORD_BUILTINS or key.startswith("_"):
                continue
            if key in _CORRELATION_KEYS and isinstance(value, str) and value.strip():
                line[key] = value.strip()
            else:
                fields[key] = _to_json(value)
        if fields:
            line["fields"] = self._redactor(fields)
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Start a logging session; any previously active session is shut down first."""

    session_id = _non_blank(config.session_id, "session_id")
    logger_name = _non_blank(config.logger_name, "logger_name")
    log_filename = _non_blank(config.log_filename, "log_filename")
    if Path(log_filename).name != log_filename:
        raise ValueError("log_filename must not include path separators")
    if not isinstance(config.queue_size, int) or config.queue_size <= 0:
        raise ValueError(f"queue_size must be a positive integer, got {config.queue_size!r}")
    level = _parse_log_level(config.level)

    shutdown_logging()

    log_dir = Path(config.base_log_dir) / session_id
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_filename

    formatter = _JsonLineFormatter(
        session_id=session_id, redactor=config.redactor or default_log_redactor
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler(sys.stdout))
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        log_queue=log_queue,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    global _active, _atexit_hooked
    with _active_lock:
        _active = handle
        if not _atexit_hooked:
            atexit.register(shutdown_logging)
            _atexit_hooked = True
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = DEFAULT_LOGGER_NAME,
) -> logging.Logger:
    """Start a session from an ``[observability]`` section and bridge ``structlog`` into it."""

    section = observability_config or {}
    level = section.get("log_level", "INFO")
    base = log_dir if log_dir is not None else section.get("log_dir", ".router/logs")
    handle = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=base if isinstance(base, (str, Path)) else ".router/logs",
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(section.get("log_to_stdout", False)),
            redactor=None if section.get("redact_secrets", True) else _keep,
        )
    )
    configure_structlog()
    return handle.logger


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0
) -> None:
    """Drain and close ``handle``, or the active session when omitted."""

    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown(timeout_seconds=timeout_seconds)


def configure_structlog() -> None:
    """Hand ``structlog`` events to the stdlib logger tree, keyword args becoming extras."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def configure_structlog_console(*, level: int | str = "WARNING") -> None:
    """Send ``structlog`` events at ``level`` and above to stderr as plain key=value lines."""

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_parse_log_level(level)),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged in this context; ``None`` unbinds a key."""

    merged = dict(_CORRELATION.get())
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = _non_blank(value, f"correlation field {key!r}")
    token = _CORRELATION.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask values under secret-looking keys and inline ``key=value`` or bearer credentials."""

    if isinstance(value, str):
        masked = _INLINE_ASSIGNMENT.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", value)
        return _INLINE_BEARER.sub(f"Bearer {REDACTED}", masked)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {
            key: REDACTED if _SENSITIVE_KEY.search(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    return value


def _keep(value: JSONValue) -> JSONValue:
    return value


def _non_blank(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value.strip()


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return level


def _utc_stamp(moment: datetime, timespec: str) -> str:
    aware = moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment.astimezone(UTC)
    return aware.isoformat(timespec=timespec).replace("+00:00", "Z")


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        return _utc_stamp(value, "microseconds")
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_to_json(item) for item in value), key=repr)
    return repr(value)


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "JSONScalar",
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "REDACTED",
    "StructuredLoggingHandle",
    "configure_structlog",
    "configure_structlog_console",
    "correlation_scope",
    "default_log_redactor",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
