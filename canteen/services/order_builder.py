"""
Canteen API — Order builder

Turns a cart into a fully priced, validated order draft. Fail-fast, in order:
  1. cart must not be empty
  2. payment method and order type must be present
  3. dine-in without a table number gets the default table
  4. every line must be in stock (all shortages reported together)
  5. price from the menu snapshot, 5% tax, total = subtotal + tax
  6. order number + estimated preparation time
Nothing is persisted here; CheckoutService decides what to do with the draft.
"""
import logging
import random
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import InsufficientStockError, NotFoundError, OrderValidationError
from canteen.models.menu import MenuItem
from canteen.models.order import (
    CustomerKind,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from canteen.schemas.customer import GuestCustomer, RegisteredCustomer
from canteen.schemas.order import OrderCreateRequest
from canteen.services.stock_ledger import availability

settings = get_settings()
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def compute_totals(line_totals: list[Decimal]) -> tuple[Decimal, Decimal, Decimal]:
    """(subtotal, tax, total); tax is rounded half-up to 2 dp once, here."""
    subtotal = sum(line_totals, Decimal("0")).quantize(CENT)
    tax = (subtotal * settings.TAX_RATE).quantize(CENT, rounding=ROUND_HALF_UP)
    return subtotal, tax, subtotal + tax


def estimate_preparation(preparation_times: list[int]) -> tuple[int, int]:
    """(max_preparation_time, estimated_time) in minutes."""
    max_prep = max(preparation_times, default=0)
    return max_prep, max(settings.MIN_ESTIMATED_MINUTES, max_prep + settings.ESTIMATE_BUFFER_MINUTES)


def generate_order_number(now: datetime | None = None, rng: random.Random | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    suffix = (rng or random).randint(100000, 999999)
    return f"{settings.ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix}"


@dataclass(frozen=True)
class PricedLine:
    menu_item_id: str
    name: str
    quantity: int
    customizations: dict[str, str]
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderDraft:
    order_number: str
    lines: list[PricedLine]
    customer: GuestCustomer | RegisteredCustomer
    order_type: OrderType
    table_number: str | None
    payment_method: PaymentMethod
    subtotal: Decimal
    tax: Decimal
    total_amount: Decimal
    estimated_time: int
    max_preparation_time: int
    quantities: dict[str, int] = field(default_factory=dict)

    def with_order_number(self, order_number: str) -> "OrderDraft":
        return replace(self, order_number=order_number)

    def to_order(
        self,
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        gateway_order_id: str | None = None,
        gateway_payment_id: str | None = None,
    ) -> Order:
        order = Order(
            order_number=self.order_number,
            order_type=self.order_type,
            table_number=self.table_number,
            payment_method=self.payment_method,
            payment_status=payment_status,
            status=status,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            subtotal=self.subtotal,
            tax=self.tax,
            total_amount=self.total_amount,
            estimated_time=self.estimated_time,
            max_preparation_time=self.max_preparation_time,
            stock_committed=False,
            feedback_submitted=False,
            items=[
                OrderItem(
                    position=position,
                    menu_item_id=line.menu_item_id,
                    name=line.name,
                    quantity=line.quantity,
                    customizations=dict(line.customizations),
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                )
                for position, line in enumerate(self.lines)
            ],
        )
        if isinstance(self.customer, RegisteredCustomer):
            order.customer_kind = CustomerKind.REGISTERED
            order.user_id = self.customer.user_id
        else:
            order.customer_kind = CustomerKind.GUEST
            order.guest_name = self.customer.name
            order.guest_phone = self.customer.phone
            order.guest_email = str(self.customer.email)
        return order


class OrderBuilder:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _menu_items(self, ids: set[str]) -> dict[str, MenuItem]:
        result = await self.db.execute(
            select(MenuItem).where(MenuItem.id.in_(ids)).execution_options(populate_existing=True)
        )
        found = {item.id: item for item in result.scalars().all()}
        missing = sorted(ids - found.keys())
        if missing:
            raise NotFoundError(f"Menu item '{missing[0]}' not found.")
        return found

    async def build(
        self,
        request: OrderCreateRequest,
        customer: GuestCustomer | RegisteredCustomer,
        check_stock: bool = True,
    ) -> OrderDraft:
        # ── Step 1-2: shape ────────────────────────────────────────────────────
        if not request.items:
            raise OrderValidationError("Order must have at least one item.")
        if request.payment_method is None or request.order_type is None:
            raise OrderValidationError("Missing required fields: payment_method or order_type.")

        # ── Step 3: table ──────────────────────────────────────────────────────
        table_number = None
        if request.order_type == OrderType.DINE_IN:
            table_number = request.table_number or settings.DEFAULT_TABLE_NUMBER

        # ── Step 4: stock ──────────────────────────────────────────────────────
        requested = Counter()
        for line in request.items:
            requested[line.menu_item_id] += line.quantity
        menu = await self._menu_items(set(requested))

        if check_stock:
            stock_errors = []
            for item_id, quantity in requested.items():
                item = menu[item_id]
                check = availability(item, quantity)
                if not check.ok:
                    available = check.available or 0
                    stock_errors.append({
                        "item": item.name,
                        "requested": quantity,
                        "available": available,
                        "message": f"Only {available} {item.name} available",
                    })
            if stock_errors:
                raise InsufficientStockError(stock_errors)

        # ── Step 5: pricing (menu price is authoritative) ─────────────────────
        lines = []
        for line in request.items:
            item = menu[line.menu_item_id]
            unit_price = Decimal(item.price).quantize(CENT)
            lines.append(PricedLine(
                menu_item_id=item.id,
                name=item.name,
                quantity=line.quantity,
                customizations=dict(line.customizations),
                unit_price=unit_price,
                line_total=unit_price * line.quantity,
            ))
        subtotal, tax, total = compute_totals([line.line_total for line in lines])
        if request.total_amount is not None and request.total_amount != total:
            logger.info("Client total %s differs from computed total %s", request.total_amount, total)

        # ── Step 6: number + estimate ─────────────────────────────────────────
        max_prep, estimated = estimate_preparation([menu[i].preparation_time for i in requested])

        return OrderDraft(
            order_number=generate_order_number(),
            lines=lines,
            customer=customer,
            order_type=request.order_type,
            table_number=table_number,
            payment_method=request.payment_method,
            subtotal=subtotal,
            tax=tax,
            total_amount=total,
            estimated_time=estimated,
            max_preparation_time=max_prep,
            quantities=dict(requested),
        )
