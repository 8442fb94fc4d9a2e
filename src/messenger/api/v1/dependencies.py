from uuid import UUID

from fastapi import Header
from fastapi.requests import HTTPConnection

from messenger.exceptions.base import UnauthenticatedError
from messenger.realtime.bus import RealtimeBus
from messenger.store.conversation_store import ConversationStore

VIEWER_HEADER = "X-User-ID"


def get_store(connection: HTTPConnection) -> ConversationStore:
    return connection.app.state.store


def get_realtime_bus(connection: HTTPConnection) -> RealtimeBus:
    return connection.app.state.bus


def parse_viewer_id(raw: str | None) -> UUID:
    """
    Viewer identity from the X-User-ID header, standing in for a real session.

    Raises:
        UnauthenticatedError: header missing or not a UUID.
    """
    if not raw:
        raise UnauthenticatedError()
    try:
        return UUID(raw)
    except ValueError as exc:
        raise UnauthenticatedError("Invalid viewer id") from exc


async def get_viewer_id(x_user_id: str | None = Header(default=None, alias=VIEWER_HEADER)) -> UUID:
    return parse_viewer_id(x_user_id)
