"""
Websocket change feed.

`/v1/realtime/{kind}/{target_id}` streams change events for one topic:
`viewer/{user_id}` (the caller's own conversation events) or
`conversation/{id}` (messages of a conversation the caller takes part in).
Each frame is one JSON-encoded change event.

Browsers cannot set headers on websocket requests, so the viewer id is read
from the X-User-ID header or the `user_id` query parameter.
"""

import asyncio
import logging
from uuid import UUID, uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from messenger.core.logging.filters import reset_correlation_id, set_correlation_id
from messenger.exceptions.base import UnauthenticatedError
from messenger.exceptions.client import RealtimeDisconnected
from messenger.realtime.bus import Subscription
from messenger.schemas.events import conversation_topic, dump_change_event, viewer_topic
from .dependencies import VIEWER_HEADER, get_realtime_bus, get_store, parse_viewer_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

CLOSE_UNAUTHENTICATED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_UNKNOWN_TOPIC = 4404
CLOSE_UPSTREAM_LOST = 1011


async def forward_events(subscription: Subscription, websocket) -> None:
    """Send every event from `subscription` to `websocket` until either side ends."""
    async for event in subscription:
        await websocket.send_text(dump_change_event(event))


async def _drain_client(websocket: WebSocket) -> None:
    # The feed is one-way; reading only detects the client going away.
    while True:
        await websocket.receive_text()


@router.websocket("/{kind}/{target_id}")
async def change_feed(websocket: WebSocket, kind: str, target_id: UUID):
    try:
        viewer_id = parse_viewer_id(
            websocket.headers.get(VIEWER_HEADER) or websocket.query_params.get("user_id")
        )
    except UnauthenticatedError:
        await websocket.close(code=CLOSE_UNAUTHENTICATED)
        return

    store = get_store(websocket)
    bus = get_realtime_bus(websocket)

    if kind == "viewer":
        allowed = target_id == viewer_id
        topic = viewer_topic(target_id)
    elif kind == "conversation":
        allowed = await store.can_access(viewer_id, target_id)
        topic = conversation_topic(target_id)
    else:
        await websocket.close(code=CLOSE_UNKNOWN_TOPIC)
        return

    if not allowed:
        logger.info("ws.forbidden", extra={"viewer_id": viewer_id, "kind": kind, "target_id": target_id})
        await websocket.close(code=CLOSE_FORBIDDEN)
        return

    token = set_correlation_id(uuid4().hex)
    subscription = None
    try:
        subscription = await bus.subscribe(topic)
        await websocket.accept()
        logger.info("ws.connected", extra={"viewer_id": viewer_id, "topic": topic})

        pump = asyncio.create_task(forward_events(subscription, websocket))
        reader = asyncio.create_task(_drain_client(websocket))
        done, pending = await asyncio.wait({pump, reader}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            exc = task.exception()
            if isinstance(exc, RealtimeDisconnected):
                logger.warning("ws.upstream_lost", extra={"topic": topic})
                await websocket.close(code=CLOSE_UPSTREAM_LOST)
            elif exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    except RealtimeDisconnected:
        logger.warning("ws.subscribe_failed", extra={"topic": topic})
        await websocket.close(code=CLOSE_UPSTREAM_LOST)
    finally:
        if subscription is not None:
            await subscription.close()
        logger.info("ws.closed", extra={"topic": topic})
        reset_correlation_id(token)
