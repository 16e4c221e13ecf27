"""
Canteen API — Scheduled maintenance

Three asyncio tasks owned by the FastAPI lifespan:
  - daily stock reset at STOCK_RESET_HOUR:STOCK_RESET_MINUTE (SCHEDULER_TIMEZONE)
  - low-stock sweep every LOW_STOCK_SCAN_INTERVAL_SECONDS
  - order automation every ORDER_AUTOMATION_INTERVAL_SECONDS
A failing iteration is logged and the loop keeps going.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from canteen.core.config import get_settings
from canteen.core.exceptions import InvalidTransitionError
from canteen.db.database import SessionLocal
from canteen.models.menu import utcnow
from canteen.models.order import Order, OrderStatus, PaymentStatus
from canteen.services.lifecycle import OrderLifecycle
from canteen.services.notifier import Notifier, get_notifier
from canteen.services.stock_ledger import StockLedger

settings = get_settings()
logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PREPARING)


async def run_order_automation(
    db: AsyncSession, notifier: Notifier, now: datetime | None = None
) -> list[dict[str, str]]:
    """One sweep of the time rules; each order moves at most one step."""
    now = now or utcnow()
    order_ids = (
        await db.execute(
            select(Order.id)
            .where(Order.status.in_(ACTIVE_STATUSES), Order.payment_status != PaymentStatus.FAILED)
            .order_by(Order.created_at)
        )
    ).scalars().all()

    lifecycle = OrderLifecycle(db, notifier)
    advanced = []
    for order_id in order_ids:
        try:
            order = await lifecycle.get(order_id)
            order_number = order.order_number
            target = await lifecycle.apply_due(order, now)
        except InvalidTransitionError as exc:
            logger.info("Automation skipped order %s: %s", order_id, exc.message)
            continue
        except Exception:
            logger.exception("Automation failed for order %s", order_id)
            await db.rollback()
            continue
        if target is not None:
            logger.info("Order %s moved to %s", order_number, target.value)
            advanced.append({"order_id": order_id, "order_number": order_number, "status": target.value})
    return advanced


class MaintenanceScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker = SessionLocal,
        notifier_factory: Callable[[], Notifier] = get_notifier,
        ledger_factory: Callable[[AsyncSession], StockLedger] = StockLedger,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.notifier_factory = notifier_factory
        self.ledger_factory = ledger_factory
        self.clock = clock
        self.zone = ZoneInfo(settings.SCHEDULER_TIMEZONE)
        self.last_reset_date: date | None = None
        self._tasks: list[asyncio.Task] = []

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._loop("daily-stock-reset", self.run_daily_reset, self.seconds_until_reset)),
            asyncio.create_task(
                self._loop(
                    "low-stock-scan", self.run_low_stock_scan, lambda: settings.LOW_STOCK_SCAN_INTERVAL_SECONDS
                )
            ),
            asyncio.create_task(
                self._loop(
                    "order-automation", self.run_order_automation, lambda: settings.ORDER_AUTOMATION_INTERVAL_SECONDS
                )
            ),
        ]
        logger.info(
            "Maintenance scheduler started: stock reset %02d:%02d %s, low stock every %ds, automation every %ds",
            settings.STOCK_RESET_HOUR, settings.STOCK_RESET_MINUTE, settings.SCHEDULER_TIMEZONE,
            settings.LOW_STOCK_SCAN_INTERVAL_SECONDS, settings.ORDER_AUTOMATION_INTERVAL_SECONDS,
        )

    async def shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Maintenance scheduler stopped")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _loop(self, name: str, job: Callable[[], Awaitable], delay: Callable[[], float]) -> None:
        while True:
            await asyncio.sleep(delay())
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled job %s failed", name)

    # ── Timing ────────────────────────────────────────────────────────────────

    def next_reset_at(self, now: datetime | None = None) -> datetime:
        local_now = (now or self.clock()).astimezone(self.zone)
        target = local_now.replace(
            hour=settings.STOCK_RESET_HOUR, minute=settings.STOCK_RESET_MINUTE, second=0, microsecond=0
        )
        if target <= local_now:
            target += timedelta(days=1)
        return target

    def seconds_until_reset(self) -> float:
        now = self.clock()
        return max(0.0, (self.next_reset_at(now) - now.astimezone(self.zone)).total_seconds())

    # ── Jobs ──────────────────────────────────────────────────────────────────

    async def run_daily_reset(self) -> int:
        today = self.clock().astimezone(self.zone).date()
        if self.last_reset_date == today:
            logger.info("Daily stock reset already ran for %s", today)
            return 0
        async with self.session_factory() as db:
            modified = await self.ledger_factory(db).reset_daily()
        self.last_reset_date = today
        return modified

    async def run_low_stock_scan(self) -> list[str]:
        async with self.session_factory() as db:
            items = await self.ledger_factory(db).low_stock_scan()
        alerts = [f"{item.name}: {item.current_stock}/{item.daily_stock}" for item in items]
        if alerts:
            logger.warning("Low stock alert: %s", ", ".join(alerts))
        return alerts

    async def run_order_automation(self) -> list[dict[str, str]]:
        async with self.session_factory() as db:
            return await run_order_automation(db, self.notifier_factory(), self.clock())
