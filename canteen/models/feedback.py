"""
Canteen API — Feedback model
"""
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from canteen.db.database import Base
from canteen.models.menu import utcnow
from canteen.models.order import CustomerKind


class Feedback(Base):
    """
    A rating of one menu item from one completed order.
    One row per (order, menu item) is the normal flow but is not enforced.
    """
    __tablename__ = "feedback"
    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_feedback_rating"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    menu_item_id: Mapped[str] = mapped_column(ForeignKey("menu_items.id", ondelete="CASCADE"), index=True, nullable=False)

    rater_kind: Mapped[CustomerKind] = mapped_column(
        Enum(CustomerKind, name="customer_kind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    guest_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
