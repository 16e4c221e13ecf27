"""
Canteen API — Request-scoped service wiring
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.db.database import get_db
from canteen.services.checkout import CheckoutService
from canteen.services.feedback import FeedbackService
from canteen.services.lifecycle import OrderLifecycle
from canteen.services.notifier import Notifier, get_notifier
from canteen.services.payments import RazorpayGateway, get_gateway
from canteen.services.stock_ledger import StockLedger


def get_checkout(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    gateway: RazorpayGateway = Depends(get_gateway),
) -> CheckoutService:
    return CheckoutService(db, notifier, gateway)


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> OrderLifecycle:
    return OrderLifecycle(db, notifier)


def get_ledger(db: AsyncSession = Depends(get_db)) -> StockLedger:
    return StockLedger(db)


def get_feedback_service(db: AsyncSession = Depends(get_db)) -> FeedbackService:
    return FeedbackService(db)
