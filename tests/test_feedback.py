"""
Feedback: completed orders only, ownership, rating recompute.
"""
import pytest

from canteen.core.exceptions import NotFoundError, OrderValidationError
from canteen.models.order import CustomerKind, OrderStatus
from canteen.schemas.feedback import FeedbackRequest
from canteen.services.feedback import FeedbackService
from canteen.services.lifecycle import OrderLifecycle
from tests.conftest import BIRYANI, DOSA, GUEST, THALI, stock_of


def rating(order_id, item_id, stars, email=GUEST["email"], comment=None) -> FeedbackRequest:
    return FeedbackRequest(order_id=order_id, menu_item_id=item_id, rating=stars, guest_email=email, comment=comment)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [OrderStatus.CONFIRMED, OrderStatus.READY, OrderStatus.CANCELLED])
async def test_only_completed_orders_accept_feedback(db, make_order, status):
    order = await make_order(status=status)
    with pytest.raises(OrderValidationError):
        await FeedbackService(db).submit(rating(order.id, BIRYANI, 5), None)


@pytest.mark.asyncio
async def test_rating_average_and_count_are_recomputed(db, session_factory, make_order):
    service = FeedbackService(db)
    for stars in (5, 4, 4):
        order = await make_order(status=OrderStatus.COMPLETED)
        await service.submit(rating(order.id, BIRYANI, stars), None)

    item = await stock_of(session_factory, BIRYANI)
    assert item.rating_count == 3
    assert item.rating_average == 4.3


@pytest.mark.asyncio
async def test_feedback_submitted_once_every_item_is_rated(db, session_factory, make_order):
    order = await make_order(lines=((BIRYANI, 1), (DOSA, 2)), status=OrderStatus.COMPLETED)
    service = FeedbackService(db)
    lifecycle = OrderLifecycle(db, notifier=None)

    await service.submit(rating(order.id, BIRYANI, 5), None)
    assert (await lifecycle.get(order.id)).feedback_submitted is False

    await service.submit(rating(order.id, DOSA, 3, comment="a bit cold"), None)
    assert (await lifecycle.get(order.id)).feedback_submitted is True


@pytest.mark.asyncio
async def test_guest_feedback_snapshots_identity(db, make_order):
    order = await make_order(status=OrderStatus.COMPLETED)
    feedback = await FeedbackService(db).submit(rating(order.id, BIRYANI, 4, email="ASHA@example.com"), None)

    assert feedback.rater_kind == CustomerKind.GUEST
    assert feedback.guest_name == GUEST["name"]
    assert feedback.guest_email == GUEST["email"]


@pytest.mark.asyncio
async def test_registered_feedback_requires_matching_user(db, make_order):
    order = await make_order(status=OrderStatus.COMPLETED, user_id="user-42")
    service = FeedbackService(db)

    with pytest.raises(NotFoundError):
        await service.submit(rating(order.id, BIRYANI, 4, email=None), {"sub": "user-99"})

    feedback = await service.submit(rating(order.id, BIRYANI, 4, email=None), {"sub": "user-42"})
    assert feedback.rater_kind == CustomerKind.REGISTERED
    assert feedback.user_id == "user-42"


@pytest.mark.asyncio
async def test_wrong_guest_email_hides_order(db, make_order):
    order = await make_order(status=OrderStatus.COMPLETED)
    with pytest.raises(NotFoundError):
        await FeedbackService(db).submit(rating(order.id, BIRYANI, 4, email="someone@else.com"), None)


@pytest.mark.asyncio
async def test_item_must_belong_to_order(db, make_order):
    order = await make_order(status=OrderStatus.COMPLETED)
    with pytest.raises(OrderValidationError):
        await FeedbackService(db).submit(rating(order.id, THALI, 4), None)


@pytest.mark.asyncio
async def test_summary_lists_recent_feedback(db, make_order):
    service = FeedbackService(db)
    order = await make_order(status=OrderStatus.COMPLETED)
    await service.submit(rating(order.id, BIRYANI, 2, comment="too spicy"), None)

    average, count, recent = await service.summary(BIRYANI)

    assert (average, count) == (2.0, 1)
    assert [f.comment for f in recent] == ["too spicy"]


@pytest.mark.asyncio
async def test_summary_unknown_item(db, menu):
    with pytest.raises(NotFoundError):
        await FeedbackService(db).summary("ghost")
