# src/messenger/tests/test_logging/test_filters.py
import logging

from messenger.core.logging.filters import (
    CorrelationIdFilter,
    RedactFilter,
    reset_correlation_id,
    set_correlation_id,
)


def make_record():
    # name, level, pathname, lineno, msg, args, exc_info
    return logging.LogRecord("messenger", logging.INFO, __file__, 1, "hello %s", ("world",), None)


def test_correlation_id_filter_defaults_to_dash():
    rec = make_record()
    token = set_correlation_id(None)
    try:
        f = CorrelationIdFilter()
        assert f.filter(rec) is True
        assert rec.correlation_id == "-"  # fallback sentinel
    finally:
        reset_correlation_id(token)


def test_correlation_id_filter_uses_contextvar():
    rec = make_record()
    token = set_correlation_id("abc-123")
    try:
        CorrelationIdFilter().filter(rec)
    finally:
        reset_correlation_id(token)
    assert rec.correlation_id == "abc-123"


def test_correlation_id_filter_respects_record_extra():
    rec = make_record()
    rec.correlation_id = "explicit"
    token = set_correlation_id("context-id")
    try:
        CorrelationIdFilter().filter(rec)
    finally:
        reset_correlation_id(token)
    # explicit extra wins over the context value
    assert rec.correlation_id == "explicit"


def test_redact_filter_masks_message_bodies_and_secrets():
    rec = make_record()
    rec.content = "my phone number is 555-0100"
    rec.Authorization = "Bearer abc"
    rec.conversation_id = "c-1"

    assert RedactFilter().filter(rec) is True

    assert rec.content == RedactFilter.MASK
    assert rec.Authorization == RedactFilter.MASK
    # ids are left alone
    assert rec.conversation_id == "c-1"
