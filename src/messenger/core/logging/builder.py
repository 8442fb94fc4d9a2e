# src/messenger/core/logging/builder.py
"""
Logging builder: create and apply a dictConfig logging configuration and optionally
move log IO to a background QueueListener.

 - `make_dict_config(settings)` builds the dictConfig mapping.
 - `setup_logging(settings)` applies it; with LOG_USE_QUEUE the real handlers
   are detached from the loggers and driven by a QueueListener thread while the
   event loop only enqueues records.
 - `stop_queue_logging()` flushes and stops the listener at shutdown.

Queue knobs (read with getattr so duck-typed settings objects work in tests):
 - LOG_USE_QUEUE: bool
 - LOG_QUEUE_MAX_SIZE: int; > 0 means a bounded queue
 - LOG_QUEUE_BLOCKING: bool; with a bounded queue, False drops records when full
"""

from __future__ import annotations

from pathlib import Path
import logging
import logging.config
import queue as _queue
import threading
from typing import Optional
from logging.handlers import QueueHandler, QueueListener

from messenger.utils.logging import get_project_name
from messenger.config.settings import Settings

from .formatters import JsonFormatter, ColorFormatter
from .filters import CorrelationIdFilter, RedactFilter
from .handlers import (
    get_console_handler,
    get_file_handler,
    get_error_file_handler,
    get_error_console_handler,
)

_QUEUE_LISTENER: Optional[QueueListener] = None
_QUEUE: Optional[_queue.Queue] = None

_DROPPED_LOGS_COUNT = 0
_DROPPED_LOGS_LOCK = threading.Lock()


class NonBlockingQueueHandler(QueueHandler):
    """
    QueueHandler that drops records instead of blocking when a bounded queue is full.

    Producers here are coroutines on the event loop; blocking on a full queue
    would stall every conversation on that loop.
    """

    def emit(self, record: logging.LogRecord) -> None:
        global _DROPPED_LOGS_COUNT
        try:
            self.queue.put_nowait(self.prepare(record))
        except _queue.Full:
            with _DROPPED_LOGS_LOCK:
                _DROPPED_LOGS_COUNT += 1
            self.handleError(record)


def get_queue_stats() -> dict:
    """Return small diagnostics about queue usage (dropped logs count)."""
    with _DROPPED_LOGS_LOCK:
        return {"dropped_logs": _DROPPED_LOGS_COUNT, "queue_present": _QUEUE is not None}


def _file_logging_enabled(settings: Settings) -> bool:
    return (not settings.LOG_TO_STDOUT) and bool(settings.LOG_DIR)


def make_dict_config(settings: Settings) -> dict:
    """
    Build the dictConfig mapping using the provided settings.

    The returned mapping includes:
      - formatters: "standard" (color in text mode) and "json"
      - filters: "correlation_id", "redact"
      - handlers: console, plus file/error_file when writing to LOG_DIR,
        otherwise error_console
      - loggers: root, messenger, uvicorn.error, uvicorn.access, sqlalchemy.engine
    """
    formatters = {
        "standard": {
            "()": ColorFormatter if settings.LOG_FORMAT == "text" else logging.Formatter,
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(correlation_id)s | %(message)s",
        },
        "json": {
            "()": JsonFormatter,
            "env": settings.ENV,
            "service": get_project_name(),
        },
    }

    filters = {
        "correlation_id": {"()": CorrelationIdFilter},
        "redact": {"()": RedactFilter},
    }

    handlers: dict[str, dict] = {"console": get_console_handler(settings)}
    if _file_logging_enabled(settings):
        handlers["file"] = get_file_handler(settings)
        handlers["error_file"] = get_error_file_handler(settings)
    else:
        handlers["error_console"] = get_error_console_handler(settings)

    handler_names = list(handlers.keys())

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": filters,
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": handler_names,
                "level": settings.LOG_LEVEL,
                "propagate": True,
            },
            "messenger": {
                "level": settings.LOG_LEVEL,
                "propagate": True,
            },
            "uvicorn.error": {
                "level": settings.LOG_LEVEL,
                "handlers": handler_names,
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            # Bound parameters carry message bodies.
            "sqlalchemy.engine": {
                "level": "DEBUG" if settings.ENABLE_SQL_LOGGING else "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging(settings: Settings) -> None:
    """
    Apply the dictConfig for `settings`; with LOG_USE_QUEUE, hand the configured
    handlers to a QueueListener thread.
    """
    if _file_logging_enabled(settings):
        Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(make_dict_config(settings))
    logging.getLogger().addFilter(CorrelationIdFilter())

    if getattr(settings, "LOG_USE_QUEUE", False):
        _start_queue_logging(
            max_size=getattr(settings, "LOG_QUEUE_MAX_SIZE", 0) or 0,
            blocking=bool(getattr(settings, "LOG_QUEUE_BLOCKING", False)),
        )


def _detach_everywhere(handlers: set[logging.Handler]) -> None:
    """Remove `handlers` from the root logger and from every named logger holding them."""
    loggers = [logging.getLogger()] + [
        obj for obj in logging.Logger.manager.loggerDict.values() if isinstance(obj, logging.Logger)
    ]
    for logger_obj in loggers:
        for handler in list(logger_obj.handlers):
            if handler in handlers:
                logger_obj.removeHandler(handler)


def _start_queue_logging(*, max_size: int, blocking: bool) -> None:
    """
    Move the root handlers behind a queue. The producer-side QueueHandler runs
    the correlation and redaction filters, since the contextvars only exist on
    the event loop's side.
    """
    global _QUEUE_LISTENER, _QUEUE

    root_logger = logging.getLogger()
    sinks = list(root_logger.handlers)
    if not sinks:
        return
    _detach_everywhere(set(sinks))

    log_queue: _queue.Queue = _queue.Queue(max_size) if max_size > 0 else _queue.Queue()
    handler_cls = NonBlockingQueueHandler if max_size > 0 and not blocking else QueueHandler

    listener = QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()

    producer = handler_cls(log_queue)
    producer.addFilter(CorrelationIdFilter())
    producer.addFilter(RedactFilter())
    root_logger.addHandler(producer)

    _QUEUE_LISTENER = listener
    _QUEUE = log_queue


def stop_queue_logging() -> None:
    """Flush and stop the QueueListener, if one is running."""
    global _QUEUE_LISTENER, _QUEUE
    listener, _QUEUE_LISTENER, _QUEUE = _QUEUE_LISTENER, None, None
    if listener is None:
        return
    try:
        listener.stop()
    except Exception:
        logging.getLogger(__name__).exception("logging.queue.stop_failed")
