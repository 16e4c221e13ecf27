"""
Campus Canteen test fixtures

Everything runs in-process:
  - SQLite (aiosqlite) in memory, one shared connection per test
  - FakeRedis for pub/sub + idempotency cache
  - FakeGateway standing in for the payment gateway
"""
import os

# must be set before canteen.* reads its settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["METRICS_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["OPT_LOCK_BASE_DELAY_MS"] = "1"
os.environ["OPT_LOCK_MAX_DELAY_MS"] = "5"
os.environ["OPT_LOCK_JITTER_MS"] = "1"

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from canteen.core import redis_client
from canteen.core.config import get_settings
from canteen.db.database import Base, get_db
from canteen.models.feedback import Feedback  # noqa: F401
from canteen.models.menu import MenuCategory, MenuItem
from canteen.models.order import (
    CustomerKind,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from canteen.services.notifier import Notifier, get_notifier
from canteen.services.payments import GatewayOrder, get_gateway, sign, to_paise

settings = get_settings()

DOSA = "item-dosa"
BIRYANI = "item-biryani"
THALI = "item-thali"
COFFEE = "item-coffee"
JAMUN = "item-jamun"


# ─── Fakes ─────────────────────────────────────────────────────────────────────

class FakePubSub:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.channels: set[str] = set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels.update(channels)
        self.redis.subscribers.append(self)

    async def unsubscribe(self, *channels):
        self.channels.difference_update(channels)

    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        try:
            return self.queue.get_nowait()
        except asyncio.QueueEmpty:
            await asyncio.sleep(0)
            return None

    async def aclose(self):
        self.closed = True
        if self in self.redis.subscribers:
            self.redis.subscribers.remove(self)


class FakeRedis:
    """The subset of redis.asyncio.Redis the service uses."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.subscribers: list[FakePubSub] = []

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    async def ping(self):
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        receivers = 0
        for sub in self.subscribers:
            if channel in sub.channels:
                sub.queue.put_nowait({"type": "message", "channel": channel, "data": message})
                receivers += 1
        return receivers

    def pubsub(self):
        return FakePubSub(self)

    def channel_messages(self, channel: str) -> list[str]:
        return [message for name, message in self.published if name == channel]


class BrokenRedis(FakeRedis):
    async def publish(self, channel, message):
        raise ConnectionError("redis is down")


class FakeGateway:
    """Records gateway orders in memory; amounts are in paise."""

    def __init__(self):
        self.orders: dict[str, GatewayOrder] = {}
        self.created: list[GatewayOrder] = []
        self.fetched: list[str] = []

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> GatewayOrder:
        handle = GatewayOrder(
            id=f"order_test{len(self.orders) + 1:04d}",
            amount=to_paise(amount),
            currency=currency,
            receipt=receipt,
            status="created",
        )
        self.orders[handle.id] = handle
        self.created.append(handle)
        return handle

    async def fetch_order(self, gateway_order_id: str) -> GatewayOrder:
        self.fetched.append(gateway_order_id)
        return self.orders[gateway_order_id]


# ─── Helpers ───────────────────────────────────────────────────────────────────

def make_token(sub: str = "user-42", is_admin: bool = False, **claims) -> str:
    payload = {"sub": sub, "is_admin": is_admin, "exp": datetime.now(timezone.utc) + timedelta(hours=1), **claims}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth_header(**kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


def gateway_signature(gateway_order_id: str, gateway_payment_id: str) -> str:
    return sign(gateway_order_id, gateway_payment_id, settings.RAZORPAY_KEY_SECRET)


_order_numbers = itertools.count(100001)

GUEST = {"name": "Asha Rao", "phone": "9876543210", "email": "asha@example.com"}


def cart(*lines, payment_method="cash", order_type="pickup", guest=GUEST, **extra) -> dict:
    body = {
        "items": [{"menu_item_id": item_id, "quantity": qty} for item_id, qty in lines],
        "payment_method": payment_method,
        "order_type": order_type,
        "guest": guest,
    }
    body.update(extra)
    return body


# ─── Database ──────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def menu(session_factory) -> dict[str, str]:
    """Seed the menu; returns name → id."""
    async with session_factory() as session:
        session.add_all([
            MenuItem(id=DOSA, name="Masala Dosa", price=Decimal("60.00"), category=MenuCategory.MEALS,
                     preparation_time=15, daily_stock=10, current_stock=10),
            MenuItem(id=BIRYANI, name="Veg Biryani", price=Decimal("125.00"), category=MenuCategory.MEALS,
                     preparation_time=20, daily_stock=10, current_stock=10),
            MenuItem(id=THALI, name="Paneer Thali", price=Decimal("150.00"), category=MenuCategory.MEALS,
                     preparation_time=25, daily_stock=20, current_stock=3),
            MenuItem(id=COFFEE, name="Filter Coffee", price=Decimal("25.00"), category=MenuCategory.DRINKS,
                     preparation_time=5, daily_stock=0, current_stock=0),
            MenuItem(id=JAMUN, name="Gulab Jamun", price=Decimal("40.00"), category=MenuCategory.DESSERTS,
                     preparation_time=5, daily_stock=0, current_stock=0, is_available=False),
        ])
        await session.commit()
    return {"dosa": DOSA, "biryani": BIRYANI, "thali": THALI, "coffee": COFFEE, "jamun": JAMUN}


async def stock_of(session_factory, item_id: str) -> MenuItem:
    async with session_factory() as session:
        return await session.get(MenuItem, item_id)


@pytest.fixture
def make_order(session_factory, menu):
    """Persist an order directly, bypassing checkout."""

    async def _make(
        lines=((BIRYANI, 2),),
        status=OrderStatus.CONFIRMED,
        payment_status=PaymentStatus.COMPLETED,
        payment_method=PaymentMethod.UPI,
        created_at: datetime | None = None,
        max_preparation_time: int = 20,
        stock_committed: bool = False,
        user_id: str | None = None,
        order_number: str | None = None,
    ) -> Order:
        async with session_factory() as session:
            prices = {DOSA: Decimal("60.00"), BIRYANI: Decimal("125.00"), THALI: Decimal("150.00"),
                      COFFEE: Decimal("25.00"), JAMUN: Decimal("40.00")}
            items = [
                OrderItem(position=i, menu_item_id=item_id, name=item_id, quantity=qty, customizations={},
                          unit_price=prices[item_id], line_total=prices[item_id] * qty)
                for i, (item_id, qty) in enumerate(lines)
            ]
            subtotal = sum((item.line_total for item in items), Decimal("0"))
            tax = (subtotal * Decimal("0.05")).quantize(Decimal("0.01"))
            order = Order(
                order_number=order_number or f"CC-20240501-{next(_order_numbers)}",
                customer_kind=CustomerKind.REGISTERED if user_id else CustomerKind.GUEST,
                user_id=user_id,
                guest_name=None if user_id else GUEST["name"],
                guest_phone=None if user_id else GUEST["phone"],
                guest_email=None if user_id else GUEST["email"],
                order_type=OrderType.PICKUP,
                payment_method=payment_method,
                payment_status=payment_status,
                status=status,
                subtotal=subtotal,
                tax=tax,
                total_amount=subtotal + tax,
                estimated_time=max(15, max_preparation_time + 5),
                max_preparation_time=max_preparation_time,
                stock_committed=stock_committed,
                items=items,
            )
            if created_at is not None:
                order.created_at = created_at
            session.add(order)
            await session.commit()
            return order

    return _make


# ─── App ───────────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def notifier(fake_redis):
    return Notifier(fake_redis)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def client(session_factory, fake_redis, gateway, menu):
    from canteen.main import app

    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_notifier] = lambda: Notifier(fake_redis)
    app.dependency_overrides[get_gateway] = lambda: gateway
    # the idempotency middleware reads the shared client directly
    redis_client._redis_client = fake_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    redis_client._redis_client = None
