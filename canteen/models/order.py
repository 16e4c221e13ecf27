"""
Canteen API — Order DB models

[TRANSACTIONAL DATA] — orders keep a snapshot of item names and prices so
later menu edits never change what a customer was charged.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.database import Base
from canteen.models.menu import utcnow


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, PyEnum):
    UPI = "upi"
    CASH = "cash"


class OrderType(str, PyEnum):
    PICKUP = "pickup"
    DINE_IN = "dine-in"


class CustomerKind(str, PyEnum):
    GUEST = "guest"
    REGISTERED = "registered"


class Order(Base):
    """
    Tracks an order through the kitchen pipeline.
    stock_committed flips exactly once, when the order's lines are taken
    out of the stock ledger.
    """
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "(customer_kind = 'registered' AND user_id IS NOT NULL) "
            "OR (customer_kind = 'guest' AND guest_name IS NOT NULL)",
            name="ck_orders_customer",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)

    customer_kind: Mapped[CustomerKind] = mapped_column(_enum(CustomerKind, "customer_kind"), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    guest_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guest_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    order_type: Mapped[OrderType] = mapped_column(_enum(OrderType, "order_type"), nullable=False)
    table_number: Mapped[str | None] = mapped_column(String(16), nullable=True)

    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod, "payment_method"), nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), default=PaymentStatus.PENDING, nullable=False
    )
    gateway_order_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)

    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, "order_status"), default=OrderStatus.PENDING, nullable=False
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    estimated_time: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes
    max_preparation_time: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes

    stock_committed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    feedback_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.position",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status}>"


class OrderItem(Base):
    """One priced line of an order (snapshot at order time)."""
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    menu_item_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    customizations: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")
