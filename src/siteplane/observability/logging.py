"""
siteplane — structured logging

File: src/siteplane/observability/logging.py
Last updated: 2026-10-19

Purpose
- Write one JSON object per line to ``<log_dir>/<session>/siteplane.jsonl`` for every
  CLI run, with structlog keyword events and plain stdlib records side by side.
- Stamp every line with the run's session id and whatever ``operation`` /
  ``site_id`` / ``owner_id`` the control plane has bound for the current call.

Functional requirements
- Records go through a bounded queue; a full queue drops and counts, never blocks
  a registry write.
- Secret-looking keys and inline credentials are masked unless
  ``redact_secrets = false``.
"""

from __future__ import annotations

import atexit
import contextvars
import copy
import json
import logging
import logging.handlers
import queue
import re
import sys
import threading
import time
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Final

import structlog

LOG_FILENAME: Final[str] = "siteplane.jsonl"
ROOT_LOGGER_NAME: Final[str] = "siteplane"
QUEUE_SIZE: Final[int] = 4096
MAX_LOG_BYTES: Final[int] = 10_000_000
LOG_BACKUPS: Final[int] = 5
REDACTED: Final[str] = "***REDACTED***"
DRAIN_TIMEOUT_SECONDS: Final[float] = 2.0

CORRELATION_KEYS: Final[tuple[str, ...]] = ("session_id", "operation", "site_id", "owner_id")

_SECRET_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "private_key",
)
_INLINE_SECRET_RE: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_RE: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "siteplane_correlation", default=()
)

_active_lock = threading.Lock()
_active: LoggingHandle | None = None
_atexit_registered = False


class LoggingHandle:
    """One run's logging pipeline: queue handler, listener thread and file sink."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
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
        with self._lock:
            if self._closed:
                return
            # stop() needs room for its sentinel; let the listener catch up first.
            deadline = time.monotonic() + DRAIN_TIMEOUT_SECONDS
            while self._queue_handler.queue.full() and time.monotonic() < deadline:
                time.sleep(0.01)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()
            self._closed = True


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self._drop_lock = threading.Lock()
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Runs on the emitting thread, where the correlation contextvar is visible.
        record.correlation = {**get_correlation_context(), **getattr(record, "correlation", {})}
        if record.exc_info is not None and getattr(record, "exception_text", None) is None:
            # The base prepare() folds tracebacks into the message; keep them separate.
            record = copy.copy(record)
            record.exception_text = logging.Formatter().formatException(record.exc_info)
            record.exc_info = None
            record.exc_text = None
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._drop_lock:
                self.dropped += 1


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redact_secrets: bool) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact = redact if redact_secrets else (lambda value: value)

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._redact(record.getMessage()),
            "session_id": self._session_id,
        }
        event.update(getattr(record, "correlation", {}))
        fields = getattr(record, "fields", None)
        if fields:
            event["fields"] = self._redact(dict(fields))
        exception_text = getattr(record, "exception_text", None)
        if record.exc_info is not None:
            exception_text = self.formatException(record.exc_info)
        if exception_text:
            event["exception"] = self._redact(exception_text)
        return json.dumps(
            event, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_json_default
        )


def setup_logging(
    observability: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = ROOT_LOGGER_NAME,
    queue_size: int = QUEUE_SIZE,
) -> LoggingHandle:
    """Start logging for one run from the ``[observability]`` config section.

    Replaces any pipeline a previous call started, and routes ``structlog`` loggers
    into it.
    """

    settings = dict(observability or {})
    session_id = session_id.strip()
    if not session_id:
        raise ValueError("session_id must not be empty")
    if queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _parse_level(settings.get("log_level", "INFO"))

    _shutdown_active()

    base_dir = Path(log_dir if log_dir is not None else str(settings.get("log_dir", "logs")))
    log_path = base_dir / session_id / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _JsonLineFormatter(
        session_id=session_id, redact_secrets=bool(settings.get("redact_secrets", True))
    )
    sinks: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
    ]
    if settings.get("log_to_stdout", False):
        sinks.append(logging.StreamHandler(sys.stdout))
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    handle = LoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    _configure_structlog()

    global _active, _atexit_registered
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Drain and close ``handle`` (default: the active one). Safe to call twice."""

    global _active
    with _active_lock:
        resolved = handle if handle is not None else _active
        if resolved is _active:
            _active = None
    if resolved is not None:
        resolved.shutdown()


def get_active_logging_handle() -> LoggingHandle | None:
    with _active_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged in this block; ``None`` unbinds one."""

    state = get_correlation_context()
    for key, value in fields.items():
        if value is None or not value.strip():
            state.pop(key, None)
        else:
            state[key] = value.strip()
    token = _correlation.set(tuple(state.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def redact(value: Any) -> Any:
    """Mask secret-looking keys and inline credentials anywhere inside ``value``."""

    if isinstance(value, str):
        masked = _INLINE_SECRET_RE.sub(lambda match: f"{match.group(1)}{match.group(2)}{REDACTED}", value)
        return _BEARER_RE.sub(f"Bearer {REDACTED}", masked)
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if _is_secret_key(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            _render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _render_to_log_kwargs(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> dict[str, Any]:
    # Keyword fields travel under one attribute so they never collide with LogRecord slots.
    message = str(event_dict.pop("event", ""))
    exception = event_dict.pop("exception", None)
    correlation = {
        key: str(event_dict.pop(key)).strip()
        for key in CORRELATION_KEYS
        if isinstance(event_dict.get(key), str) and str(event_dict[key]).strip()
    }
    extra: dict[str, object] = {"fields": dict(event_dict), "correlation": correlation}
    if exception is not None:
        extra["exception_text"] = str(exception)
    return {"msg": message, "extra": extra}


def _shutdown_active() -> None:
    global _active
    with _active_lock:
        previous, _active = _active, None
    if previous is not None:
        previous.shutdown()


def _parse_level(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    parsed = logging.getLevelName(str(value).strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(term in lowered for term in _SECRET_KEY_TERMS)


def _json_default(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, PurePath):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(str(item) for item in value)
    return repr(value)


__all__ = [
    "CORRELATION_KEYS",
    "LOG_FILENAME",
    "LoggingHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact",
    "setup_logging",
    "shutdown_logging",
]
