"""
Canteen API — Notification fanout (Redis pub/sub)

Channels:
  order:{order_id}   customer tracking page for one order
  orders:admin       every kitchen/admin screen

Publishing is fire-and-forget and always happens after the mutation has
committed: a Redis outage is logged and never reaches the caller.
"""
import json
import logging

import redis.asyncio as aioredis

from canteen.core.redis_client import get_redis
from canteen.models.order import Order

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = "orders:admin"
STATUS_EVENT = "order-status-update"
NEW_ORDER_EVENT = "new-order"


def order_channel(order_id: str) -> str:
    return f"order:{order_id}"


def status_payload(order: Order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "estimated_time": order.estimated_time,
    }


class Notifier:
    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    async def publish(self, channel: str, event: str, data: dict) -> bool:
        try:
            await self.redis.publish(channel, json.dumps({"event": event, "data": data}))
            return True
        except Exception as exc:
            logger.warning("Publish to %s failed: %s", channel, exc)
            return False

    async def order_status(self, order: Order) -> None:
        payload = status_payload(order)
        await self.publish(order_channel(order.id), STATUS_EVENT, payload)
        await self.publish(ADMIN_CHANNEL, STATUS_EVENT, payload)

    async def new_order(self, order: Order) -> None:
        payload = status_payload(order)
        payload.update(
            payment_method=order.payment_method.value,
            order_type=order.order_type.value,
            table_number=order.table_number,
            total_amount=str(order.total_amount),
        )
        await self.publish(ADMIN_CHANNEL, NEW_ORDER_EVENT, payload)


def get_notifier() -> Notifier:
    return Notifier(get_redis())
