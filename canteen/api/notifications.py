"""
Canteen API — Real-time order updates (SSE over Redis pub/sub)

Architecture:
  - Services publish state changes to Redis channels order:{order_id} and orders:admin
  - SSE endpoints subscribe and stream them to the browser EventSource
  - The per-order stream ends once the order reaches a terminal status
"""
import asyncio
import json
import logging
from typing import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from canteen.api.deps import get_lifecycle
from canteen.core.config import get_settings
from canteen.core.redis_client import get_redis
from canteen.core.security import require_admin
from canteen.models.order import OrderStatus
from canteen.services.lifecycle import OrderLifecycle
from canteen.services.notifier import ADMIN_CHANNEL, order_channel

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])

TERMINAL = {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable Nginx buffering
    "Connection": "keep-alive",
}


def format_event(message_data: str) -> tuple[str, dict]:
    try:
        envelope = json.loads(message_data)
    except ValueError:
        return "message", {"raw": message_data}
    if isinstance(envelope, dict) and "event" in envelope:
        return envelope["event"], envelope.get("data") or {}
    return "message", envelope if isinstance(envelope, dict) else {"raw": envelope}


async def sse_stream(
    redis: aioredis.Redis,
    channel: str,
    request: Request,
    stop_on_terminal: bool = False,
) -> AsyncGenerator[str, None]:
    """Subscribe to one Redis channel and yield SSE frames."""
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    loop = asyncio.get_running_loop()
    last_keepalive = loop.time()

    try:
        yield f": connected to {channel}\n\n"
        yield f"retry: {settings.SSE_RETRY_MILLISECONDS}\n\n"

        while True:
            if await request.is_disconnected():
                break

            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message["type"] == "message":
                event, payload = format_event(message["data"])
                yield f"event: {event}\ndata: {json.dumps(payload)}\n\n"

                if stop_on_terminal and payload.get("status") in TERMINAL:
                    break
            elif loop.time() - last_keepalive >= settings.SSE_KEEPALIVE_INTERVAL_SECONDS:
                last_keepalive = loop.time()
                yield ": keepalive\n\n"

    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()


@router.get("/orders/{order_id}/stream")
async def stream_order(order_id: str, request: Request, lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    """
    SSE endpoint for the customer tracking page.
    Streams status changes for one order until it is completed or cancelled.
    """
    order = await lifecycle.get(order_id)
    if order.is_terminal:
        status = order.status.value

        async def closed() -> AsyncGenerator[str, None]:
            yield f"event: order-status-update\ndata: {json.dumps({'order_id': order_id, 'status': status})}\n\n"

        return StreamingResponse(closed(), media_type="text/event-stream", headers=SSE_HEADERS)

    return StreamingResponse(
        sse_stream(get_redis(), order_channel(order_id), request, stop_on_terminal=True),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/admin/stream", dependencies=[Depends(require_admin)])
async def stream_admin(request: Request):
    """SSE endpoint for kitchen screens: every new order and status change."""
    return StreamingResponse(
        sse_stream(get_redis(), ADMIN_CHANNEL, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
