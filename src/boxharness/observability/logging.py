"""Queue-backed diagnostic logging with JSON-lines output and correlation fields.

Diagnostics always go to stderr (plus an optional per-component file). The
controller's stdout carries relayed box output and must never receive log lines.

Records are handed to a ``QueueListener`` thread so that a slow stderr never
stalls the event loop; when the queue is full the record is counted and dropped.
Correlation fields (``box_id``, ``peer``) live in a contextvar and are captured
on the emitting task before the record crosses to the listener thread.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import queue
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Final, Literal, TextIO

import structlog

_ROOT_LOGGER: Final[str] = "boxharness"

# Attributes every LogRecord carries; anything else on a record came from ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "correlation", "taskName"}

_CORRELATION: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "boxharness_correlation", default=MappingProxyType({})
)

_active_lock = threading.Lock()
_active: LoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one component (``controller`` or ``box``) writes diagnostics."""

    component: str
    logger_name: str = _ROOT_LOGGER
    level: int | str = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_dir: Path | str | None = None
    stream: TextIO | None = None
    queue_size: int = 4096


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    component: str,
    stream: TextIO | None = None,
    logger_name: str = _ROOT_LOGGER,
) -> logging.Logger:
    """Configure logging from an ``[observability]`` config section and return the logger."""

    section = observability_config or {}
    log_dir = section.get("log_dir")
    handle = setup_structured_logging(
        LoggingConfig(
            component=component,
            logger_name=logger_name,
            level=str(section.get("log_level", "INFO")),
            log_format="text" if section.get("log_format") == "text" else "json",
            log_dir=str(log_dir) if log_dir else None,
            stream=stream,
        )
    )
    return handle.logger


class _ContextQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._drop_lock = threading.Lock()
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        fields = _CORRELATION.get()
        if fields:
            record.correlation = dict(fields)
        return super().prepare(record)  # type: ignore[no-any-return]

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._drop_lock:
                self.dropped += 1


def _context_of(record: logging.LogRecord, component: str) -> dict[str, str]:
    context = {"component": component}
    context.update(getattr(record, "correlation", {}))
    return context


def _extras_of(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in sorted(vars(record).items())
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, component: str) -> None:
        super().__init__()
        self._component = component

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        event: dict[str, object] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_of(record, self._component),
        }
        extras = _extras_of(record)
        if extras:
            event["fields"] = extras
        if record.exc_info:
            event["exception"] = self.formatException(record.exc_info)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)


class _TextFormatter(logging.Formatter):
    """``<time> <LEVEL> <logger> <message> [key=value ...]``"""

    def __init__(self, component: str) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)s %(name)s %(message)s")
        self._component = component

    def format(self, record: logging.LogRecord) -> str:
        context: dict[str, object] = {**_context_of(record, self._component)}
        context.update(_extras_of(record))
        suffix = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{super().format(record)} [{suffix}]"


class LoggingHandle:
    """One active logging setup; :meth:`shutdown` drains the queue and closes sinks."""

    def __init__(
        self,
        logger: logging.Logger,
        log_path: Path | None,
        queue_handler: _ContextQueueHandler,
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
        with self._lock:
            if self._closed:
                return
            self._closed = True
            # stop() processes everything already queued before joining the thread.
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Install queue-backed logging for one component, replacing any previous setup."""
    global _active, _atexit_registered

    component = config.component.strip()
    if not component:
        raise ValueError("component must not be empty")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _parse_level(config.level)

    shutdown_logging()

    formatter: logging.Formatter = (
        _TextFormatter(component) if config.log_format == "text" else _JsonLineFormatter(component)
    )
    sinks: list[logging.Handler] = [logging.StreamHandler(config.stream or sys.stderr)]
    sinks[0].setFormatter(formatter)
    log_path: Path | None = None
    if config.log_dir:
        log_path = Path(config.log_dir) / f"{component}.jsonl"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_sink = logging.FileHandler(log_path, encoding="utf-8")
        file_sink.setFormatter(_JsonLineFormatter(component))
        sinks.append(file_sink)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _ContextQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = LoggingHandle(logger, log_path, queue_handler, listener, tuple(sinks))
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def configure_structlog() -> None:
    """Route structlog events through stdlib logging so they share sinks and format."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Shut down ``handle`` (default: the active setup). Safe to call repeatedly."""
    global _active

    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown()


def get_active_logging_handle() -> LoggingHandle | None:
    with _active_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str) -> Iterator[None]:
    """Bind correlation fields (``box_id``, ``peer``) for records logged in scope."""
    token = _CORRELATION.set(MappingProxyType({**_CORRELATION.get(), **fields}))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def _parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if not isinstance(parsed, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return parsed


__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
