# src/messenger/core/logging/middleware.py
"""
Correlation id middleware for FastAPI / Starlette.

Each HTTP request gets the id from the incoming `X-Request-ID` header, or a
fresh UUID4 when the header is missing or malformed. The id is stored in the
correlation contextvar for the duration of the request and echoed back in the
response header.
"""

import re
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from .filters import set_correlation_id, reset_correlation_id

REQUEST_ID_HEADER = "X-Request-ID"

# Opaque ids only: letters, digits, dash, underscore, dot; bounded length.
_VALID_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def resolve_request_id(incoming: str | None) -> str:
    """Return `incoming` when it is a safe opaque id, otherwise a new UUID4."""
    if incoming and _VALID_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Starlette / FastAPI middleware that sets a correlation id for each request.
    """

    async def dispatch(self, request: Request, call_next):
        """
        Dispatch a request.

        Args:
            request: Starlette Request object.
            call_next: function that executes the next handler in the chain.

        Returns:
            Response: The downstream response, with X-Request-ID set.
        """
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = set_correlation_id(rid)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            return response
        finally:
            reset_correlation_id(token)
