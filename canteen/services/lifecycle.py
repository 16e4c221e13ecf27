"""
Canteen API — Order state machine

  pending → confirmed → preparing → ready → completed
      └──────────┴───────────┴─────────┴──→ cancelled

completed and cancelled are terminal. Every status write is conditional on
the status we read, so two writers racing the same transition cannot both
win: the loser gets InvalidTransitionError.

Post-commit hooks:
  - confirmed: the order's lines are taken out of the stock ledger, claimed
    once via stock_committed (no-op for cash orders consumed at creation)
  - any change: notification fanout
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from canteen.core.config import get_settings
from canteen.core.exceptions import InvalidTransitionError, NotFoundError
from canteen.models.menu import utcnow
from canteen.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from canteen.services.notifier import Notifier
from canteen.services.stock_ledger import StockLedger

settings = get_settings()
logger = logging.getLogger(__name__)

ALLOWED: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

NEXT_STATUS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING: OrderStatus.CONFIRMED,
    OrderStatus.CONFIRMED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.COMPLETED,
}


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def elapsed_minutes(order: Order, now: datetime) -> float:
    return (as_utc(now) - as_utc(order.created_at)).total_seconds() / 60


def check_transition(order: Order, target: OrderStatus) -> None:
    if order.is_terminal:
        raise InvalidTransitionError(f"Order {order.order_number} is {order.status.value} and can no longer change.")
    if target not in ALLOWED[order.status]:
        raise InvalidTransitionError(f"Cannot move order from '{order.status.value}' to '{target.value}'.")
    if target == OrderStatus.CONFIRMED and order.payment_status == PaymentStatus.FAILED:
        raise InvalidTransitionError("Cannot confirm an order whose payment failed.")


def due_transition(order: Order, now: datetime) -> OrderStatus | None:
    """The time rule for one order: the status it should move to now, if any."""
    if order.payment_status == PaymentStatus.FAILED:
        return None
    elapsed = elapsed_minutes(order, now)
    if order.status == OrderStatus.CONFIRMED and elapsed >= settings.AUTO_PREPARING_AFTER_MINUTES:
        return OrderStatus.PREPARING
    if (
        order.status == OrderStatus.PREPARING
        and elapsed >= settings.AUTO_READY_PREP_FRACTION * order.max_preparation_time
    ):
        return OrderStatus.READY
    return None


class OrderLifecycle:
    def __init__(self, db: AsyncSession, notifier: Notifier, ledger: StockLedger | None = None):
        self.db = db
        self.notifier = notifier
        self.ledger = ledger or StockLedger(db)

    async def get(self, order_id: str) -> Order:
        result = await self.db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found.")
        return order

    async def get_by_number(self, order_number: str) -> Order:
        result = await self.db.execute(
            select(Order).where(Order.order_number == order_number).execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found.")
        return order

    async def transition(self, order: Order, target: OrderStatus) -> Order:
        check_transition(order, target)
        previous = order.status

        values = {"status": target, "updated_at": utcnow()}
        if (
            target == OrderStatus.COMPLETED
            and order.payment_method == PaymentMethod.CASH
            and order.payment_status == PaymentStatus.PENDING
        ):
            values["payment_status"] = PaymentStatus.COMPLETED

        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == previous)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            message = (
                f"Order {order.order_number} changed concurrently; "
                f"'{previous.value}' → '{target.value}' rejected."
            )
            await self.db.rollback()
            raise InvalidTransitionError(message)
        await self.db.commit()
        for key, value in values.items():
            set_committed_value(order, key, value)

        logger.info("Order %s: %s → %s", order.order_number, previous.value, target.value)

        if target == OrderStatus.CONFIRMED:
            try:
                await self.consume_stock(order)
            except Exception:
                logger.exception("Stock update for confirmed order %s failed", order.order_number)
        elif target == OrderStatus.CANCELLED:
            logger.warning("Order %s cancelled; stock is not restored", order.order_number)

        await self.notifier.order_status(order)
        return order

    async def advance(self, order: Order) -> Order:
        """Kitchen "next stage" button."""
        if order.status not in NEXT_STATUS:
            raise InvalidTransitionError(f"Cannot advance order from status '{order.status.value}'.")
        return await self.transition(order, NEXT_STATUS[order.status])

    async def apply_due(self, order: Order, now: datetime | None = None) -> OrderStatus | None:
        target = due_transition(order, now or utcnow())
        if target is None:
            return None
        await self.transition(order, target)
        return target

    async def consume_stock(self, order: Order) -> bool:
        """
        Take the order's lines out of the ledger exactly once.
        The claim and the decrements share one transaction.
        Returns False when the stock had already been consumed.
        """
        claim = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.stock_committed.is_(False))
            .values(stock_committed=True)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount == 0:
            await self.db.commit()
            logger.info("Stock for order %s already committed", order.order_number)
            return False

        try:
            for line in order.items:
                try:
                    await self.ledger.decrement(line.menu_item_id, line.quantity)
                except NotFoundError:
                    logger.warning(
                        "Menu item %s on order %s no longer exists; skipped",
                        line.menu_item_id, order.order_number,
                    )
            await self.db.commit()
        except Exception:
            # rollback expires every loaded instance
            await self.db.rollback()
            await self.db.refresh(order)
            raise

        set_committed_value(order, "stock_committed", True)
        return True
