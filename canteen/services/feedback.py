"""
Canteen API — Feedback & rating aggregation
"""
import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import NotFoundError, OrderValidationError
from canteen.models.feedback import Feedback
from canteen.models.menu import MenuItem
from canteen.models.order import CustomerKind, Order, OrderStatus
from canteen.schemas.feedback import FeedbackRequest

logger = logging.getLogger(__name__)


def _owns(order: Order, claims: dict | None, guest_email: str | None) -> bool:
    if claims and claims.get("sub") and order.user_id == str(claims["sub"]):
        return True
    email = guest_email or (claims or {}).get("email")
    return bool(email and order.guest_email and order.guest_email.lower() == email.lower())


class FeedbackService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def submit(self, request: FeedbackRequest, claims: dict | None) -> Feedback:
        order = (
            await self.db.execute(
                select(Order).where(Order.id == request.order_id).execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if order is None or not _owns(order, claims, request.guest_email):
            raise NotFoundError("Order not found.")
        if order.status != OrderStatus.COMPLETED:
            raise OrderValidationError("Feedback can only be submitted for completed orders.")
        if request.menu_item_id not in {line.menu_item_id for line in order.items}:
            raise OrderValidationError("Menu item not found in order.")
        if await self.db.get(MenuItem, request.menu_item_id) is None:
            raise NotFoundError(f"Menu item '{request.menu_item_id}' not found.")

        registered = bool(claims and claims.get("sub"))
        feedback = Feedback(
            order_id=order.id,
            menu_item_id=request.menu_item_id,
            rater_kind=CustomerKind.REGISTERED if registered else CustomerKind.GUEST,
            user_id=str(claims["sub"]) if registered else None,
            guest_name=None if registered else order.guest_name,
            guest_email=None if registered else order.guest_email,
            rating=request.rating,
            comment=request.comment,
        )
        self.db.add(feedback)
        await self.db.flush()

        await self._recompute_rating(request.menu_item_id)

        submitted = (
            await self.db.execute(select(func.count()).select_from(Feedback).where(Feedback.order_id == order.id))
        ).scalar_one()
        if submitted >= len(order.items) and not order.feedback_submitted:
            order.feedback_submitted = True
            logger.info("All items rated for order %s", order.order_number)

        await self.db.commit()
        return feedback

    async def _recompute_rating(self, menu_item_id: str) -> tuple[float, int]:
        average, count = (
            await self.db.execute(
                select(func.avg(Feedback.rating), func.count(Feedback.id)).where(Feedback.menu_item_id == menu_item_id)
            )
        ).one()
        average = round(float(average or 0), 1)
        await self.db.execute(
            update(MenuItem)
            .where(MenuItem.id == menu_item_id)
            .values(rating_average=average, rating_count=count)
            .execution_options(synchronize_session=False)
        )
        return average, count

    async def summary(self, menu_item_id: str, limit: int = 10) -> tuple[float, int, list[Feedback]]:
        item = await self.db.get(MenuItem, menu_item_id, populate_existing=True)
        if item is None:
            raise NotFoundError(f"Menu item '{menu_item_id}' not found.")
        recent = (
            await self.db.execute(
                select(Feedback)
                .where(Feedback.menu_item_id == menu_item_id)
                .order_by(Feedback.created_at.desc())
                .limit(limit)
            )
        ).scalars().all()
        return item.rating_average, item.rating_count, list(recent)
