# src/messenger/tests/test_logging/test_formatters.py
import json
import logging
import uuid

from messenger.core.logging.formatters import ColorFormatter, JsonFormatter


def make_record():
    # create a LogRecord that simulates formatting with args
    return logging.LogRecord("messenger", logging.INFO, __file__, 10, "hello %s", ("tester",), None)


def test_json_formatter_basic_fields():
    rec = make_record()
    # attach an extra (simulate extra param)
    rec.custom = "value"
    rec.correlation_id = "req-1"
    fmt = JsonFormatter(env="testing", service="svc")
    data = json.loads(fmt.format(rec))

    assert data["message"] == "hello tester"
    assert data["level"] == "INFO"
    assert data["service"] == "svc"
    assert data["env"] == "testing"
    assert "timestamp" in data
    assert data["correlation_id"] == "req-1"
    assert data["custom"] == "value"
    assert "version" in data


def test_json_formatter_stringifies_uuid_and_unknown_extras():
    rec = make_record()

    class X:
        def __repr__(self):
            return "<X>"

    conversation_id = uuid.uuid4()
    rec.obj = X()
    rec.conversation_id = conversation_id
    data = json.loads(JsonFormatter(env="dev", service="svc").format(rec))

    assert isinstance(data["obj"], str)
    assert data["conversation_id"] == str(conversation_id)


def test_json_formatter_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        import sys
        rec = logging.LogRecord("messenger", logging.ERROR, __file__, 10, "failed", (), sys.exc_info())

    data = json.loads(JsonFormatter(env="dev").format(rec))
    assert "ValueError: boom" in data["exc_info"]


def test_color_formatter_layout():
    rec = make_record()
    rec.correlation_id = "cid-9"
    line = ColorFormatter().format(rec)

    assert "hello tester" in line
    assert "cid-9" in line
    assert ColorFormatter.COLOR_CODES["INFO"] in line
