"""
Canteen API — Kitchen/admin order controls
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import get_lifecycle
from canteen.core.security import require_admin
from canteen.db.database import get_db
from canteen.schemas.order import AutomationRunResponse, OrderResponse, StatusUpdateRequest
from canteen.services.lifecycle import OrderLifecycle
from canteen.services.maintenance import run_order_automation
from canteen.services.notifier import Notifier, get_notifier

router = APIRouter(prefix="/admin/orders", tags=["admin"], dependencies=[Depends(require_admin)])


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_status(
    order_id: str,
    payload: StatusUpdateRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Move an order to a new status. Illegal transitions → 409."""
    order = await lifecycle.get(order_id)
    return OrderResponse.from_order(await lifecycle.transition(order, payload.status))


@router.post("/{order_id}/advance", response_model=OrderResponse)
async def advance_order(order_id: str, lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    """Manually advance an order to the next stage (kitchen staff action)."""
    order = await lifecycle.get(order_id)
    return OrderResponse.from_order(await lifecycle.advance(order))


@router.post("/automation/run", response_model=AutomationRunResponse)
async def run_automation(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Apply the time rules now instead of waiting for the next scheduled sweep."""
    return AutomationRunResponse(advanced=await run_order_automation(db, notifier))
