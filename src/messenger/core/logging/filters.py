# src/messenger/core/logging/filters.py
"""
Logging filters

Correlation id filter, redaction filter and the contextvar helpers behind them.

A correlation id ties together every log line produced by one logical flow:
an HTTP request (set by `CorrelationIdMiddleware` from `X-Request-ID`), a
websocket change-feed connection, or a client-side messaging operation
(send, start conversation, mark read) started by the gateway. The id lives in
a `contextvars.ContextVar` so it follows `await` boundaries and is copied into
tasks created with `asyncio.create_task`.

`CorrelationIdFilter` guarantees every record has a `correlation_id`
attribute (the explicit `extra` value, else the context value, else "-"), so
format strings referencing `%(correlation_id)s` never fail.

`RedactFilter` masks record attributes whose names are known to carry
secrets or private message bodies. Call sites log ids and lengths, never
message text; the filter is the backstop when an `extra` slips through.
"""

import logging
from logging import LogRecord
import contextvars

_correlation_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(correlation_id: str | None):
    """
    Set the correlation id in the current context.

    Returns:
        token: contextvars.Token which can be passed to reset_correlation_id(token)
    """
    return _correlation_id_ctx.set(correlation_id)


def reset_correlation_id(token) -> None:
    """
    Restore the value that was current before the matching set_correlation_id().
    """
    _correlation_id_ctx.reset(token)


def get_correlation_id() -> str | None:
    """
    Retrieve the current context's correlation id, or None when unset.
    """
    return _correlation_id_ctx.get()


class CorrelationIdFilter(logging.Filter):
    """
    Logging filter that guarantees every LogRecord has a `correlation_id` attribute.

    Resolution order:
      - record.correlation_id when passed explicitly via `extra`
      - the contextvar value
      - the sentinel "-"

    Always returns True; the filter only annotates.
    """

    def filter(self, record: LogRecord) -> bool:
        record.correlation_id = (
            getattr(record, "correlation_id", None) or get_correlation_id() or "-"
        )
        return True


class RedactFilter(logging.Filter):
    """Mask sensitive record attributes (credentials and message bodies)."""

    SENSITIVE = {
        "password",
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "authorization",
        "content",
        "initial_message",
        "last_message",
        "redis_url",
    }
    MASK = "***REDACTED***"

    def filter(self, record: LogRecord) -> bool:
        for key in list(record.__dict__.keys()):
            if key.lower() in self.SENSITIVE:
                record.__dict__[key] = self.MASK
        return True
