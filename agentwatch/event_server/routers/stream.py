"""Live event streams.

Every connection owns one hub subscription for its lifetime.  The first
message is always ``{"type": "subscribed", "subscription_id": ...}``; after
that the client receives ``event`` messages in commit order, preceded by an
``overrun`` notice whenever the server had to drop events because the
client was reading too slowly.

WebSocket clients may send anything (it is ignored); closing the socket
releases the subscription immediately.  On server shutdown the stream ends
with close code 1001 once already-queued events have been delivered.
"""

from __future__ import annotations

import asyncio
import contextlib

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from loguru import logger
from sse_starlette.sse import EventSourceResponse

from agentwatch.event_server.deps import Hub
from agentwatch.event_server.hub import BroadcastHub, HubClosedError, Subscription, SubscriptionFilter
from agentwatch.event_server.models.enums import StreamMessageType
from agentwatch.event_server.models.events import StreamMessage

router = APIRouter(prefix="/stream", tags=["stream"])

_SSE_PING_SECONDS = 15


def _subscribed(subscription: Subscription) -> StreamMessage:
    return StreamMessage(type=StreamMessageType.SUBSCRIBED, subscription_id=subscription.id)


def _encode(message: StreamMessage) -> str:
    return message.model_dump_json(exclude_none=True)


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


async def _send_messages(websocket: WebSocket, subscription: Subscription) -> None:
    async for message in subscription:
        await websocket.send_text(_encode(message))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _serve_websocket(websocket: WebSocket, subscription_filter: SubscriptionFilter) -> None:
    hub: BroadcastHub | None = getattr(websocket.app.state, "hub", None)
    if hub is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return
    try:
        subscription = hub.subscribe(subscription_filter)
    except HubClosedError:
        await websocket.close(code=status.WS_1001_GOING_AWAY)
        return

    await websocket.accept()
    sender: asyncio.Task[None] | None = None
    receiver: asyncio.Task[None] | None = None
    try:
        await websocket.send_text(_encode(_subscribed(subscription)))
        sender = asyncio.create_task(_send_messages(websocket, subscription))
        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)

        if sender in done and sender.exception() is None:
            # Subscription closed by the server (shutdown).
            receiver.cancel()
            await websocket.close(code=status.WS_1001_GOING_AWAY)
    except WebSocketDisconnect:
        pass
    finally:
        hub.unsubscribe(subscription)
        for task in (sender, receiver):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                    await task
        logger.debug("Stream: websocket {} closed (dropped={})", subscription.id, subscription.dropped)


@router.websocket("")
async def stream_all(websocket: WebSocket) -> None:
    """Unfiltered live stream of every committed event."""
    await _serve_websocket(websocket, SubscriptionFilter())


@router.websocket("/filtered")
async def stream_filtered(
    websocket: WebSocket,
    platform: str | None = None,
    session_id: str | None = None,
    event_type: str | None = None,
    severity: str | None = None,
) -> None:
    """Live stream restricted by comma-separated filter query parameters.

    ``event_type`` entries may end in ``.*`` to match a whole category.
    """
    try:
        subscription_filter = SubscriptionFilter.from_params(
            platform=platform,
            session_id=session_id,
            event_type=event_type,
            severity=severity,
        )
    except ValueError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(exc))
        return
    await _serve_websocket(websocket, subscription_filter)


# ---------------------------------------------------------------------------
# Server-sent events
# ---------------------------------------------------------------------------


async def _sse_messages(hub: BroadcastHub, subscription: Subscription):
    try:
        yield {"event": StreamMessageType.SUBSCRIBED.value, "data": _encode(_subscribed(subscription))}
        async for message in subscription:
            yield {"event": message.type.value, "data": _encode(message)}
    finally:
        hub.unsubscribe(subscription)
        logger.debug("Stream: SSE {} closed (dropped={})", subscription.id, subscription.dropped)


@router.get("/sse")
async def stream_sse(
    request: Request,
    hub: Hub,
    platform: str | None = Query(None),
    session_id: str | None = Query(None),
    event_type: str | None = Query(None),
    severity: str | None = Query(None),
) -> EventSourceResponse:
    """Same stream as the WebSocket endpoints, as ``text/event-stream``."""
    try:
        subscription_filter = SubscriptionFilter.from_params(
            platform=platform,
            session_id=session_id,
            event_type=event_type,
            severity=severity,
        )
    except ValueError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None
    try:
        subscription = hub.subscribe(subscription_filter)
    except HubClosedError:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server is shutting down.") from None

    logger.debug("Stream: SSE {} opened by {}", subscription.id, request.client.host if request.client else "-")
    return EventSourceResponse(_sse_messages(hub, subscription), ping=_SSE_PING_SECONDS)
