# src/messenger/tests/test_logging/test_middleware_integration.py
import json
import logging

from fastapi import FastAPI
from starlette.testclient import TestClient

from messenger.core.logging.builder import setup_logging
from messenger.core.logging.middleware import REQUEST_ID_HEADER, CorrelationIdMiddleware, resolve_request_id


class StdoutSettings:
    LOG_FORMAT = "json"
    LOG_LEVEL = "INFO"
    LOG_TO_STDOUT = True
    LOG_DIR = None
    LOG_MAX_BYTES = 1000
    LOG_BACKUP_COUNT = 1
    ENV = "production"
    ENABLE_SQL_LOGGING = False


def make_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/hello")
    def hello():
        logging.getLogger("messenger.test").info("handling hello")
        return {"ok": True}

    return app


def test_correlation_id_in_response_and_logs(capsys):
    setup_logging(StdoutSettings())
    client = TestClient(make_app())

    resp = client.get("/hello")
    assert resp.status_code == 200
    rid = resp.headers.get(REQUEST_ID_HEADER)
    assert rid is not None

    stderr = capsys.readouterr().err.strip()
    assert stderr, "Expected logs on stderr but nothing was captured."

    found = False
    for line in stderr.splitlines():
        try:
            rec = json.loads(line)
        except ValueError:
            continue
        if rec.get("message") == "handling hello" and rec.get("correlation_id") == rid:
            found = True
            break
    assert found, "No log line with the response's correlation id"


def test_incoming_request_id_is_echoed():
    client = TestClient(make_app())
    resp = client.get("/hello", headers={REQUEST_ID_HEADER: "client-abc.1"})
    assert resp.headers[REQUEST_ID_HEADER] == "client-abc.1"


def test_malformed_request_id_is_replaced():
    assert resolve_request_id("has spaces and ;") != "has spaces and ;"
    assert resolve_request_id(None)
    assert resolve_request_id("ok_id-1") == "ok_id-1"
