"""
Canteen API — Menu item model

[CONFIG DATA]        name, price, category, daily_stock — edited by kitchen admins
[TRANSACTIONAL DATA] current_stock — decremented by orders, reset every morning
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, Float, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from canteen.db.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MenuCategory(str, PyEnum):
    DRINKS = "drinks"
    MEALS = "meals"
    SNACKS = "snacks"
    DESSERTS = "desserts"


class MenuItem(Base):
    """
    daily_stock == 0 means stock is not tracked for the item; it stays
    orderable as long as is_available is set.
    version_id is the optimistic locking column — incremented on every stock write.
    """
    __tablename__ = "menu_items"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_menu_items_price"),
        CheckConstraint("daily_stock >= 0", name="ck_menu_items_daily_stock"),
        CheckConstraint("current_stock >= 0", name="ck_menu_items_current_stock"),
        CheckConstraint("preparation_time >= 5", name="ck_menu_items_preparation_time"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    category: Mapped[MenuCategory] = mapped_column(
        Enum(MenuCategory, name="menu_category", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    is_veg: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    preparation_time: Mapped[int] = mapped_column(Integer, default=15, nullable=False)  # minutes

    daily_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_out_of_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, default=1, nullable=False)  # optimistic lock

    rating_average: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def is_tracked(self) -> bool:
        return self.daily_stock > 0

    def __repr__(self) -> str:
        return f"<MenuItem name={self.name} stock={self.current_stock}/{self.daily_stock}>"
