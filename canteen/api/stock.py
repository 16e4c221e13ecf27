"""
Canteen API — Stock management (kitchen admins)
"""
from fastapi import APIRouter, Depends

from canteen.api.deps import get_ledger
from canteen.core.security import require_admin
from canteen.schemas.stock import (
    BulkStockUpdateRequest,
    StockItem,
    StockStatusResponse,
    StockSummary,
    StockUpdateRequest,
    StockWriteResponse,
)
from canteen.services.stock_ledger import StockLedger

router = APIRouter(prefix="/admin/stock", tags=["stock"], dependencies=[Depends(require_admin)])


@router.get("/status", response_model=StockStatusResponse)
async def stock_status(ledger: StockLedger = Depends(get_ledger)):
    status = await ledger.stock_status()
    return StockStatusResponse(
        low_stock=[StockItem.model_validate(i) for i in status.low_stock],
        out_of_stock=[StockItem.model_validate(i) for i in status.out_of_stock],
        all_tracked_items=[StockItem.model_validate(i) for i in status.all_tracked],
        summary=StockSummary(**status.summary),
    )


# declared before /{item_id} so "bulk-update" is not taken for an item id
@router.put("/bulk-update", response_model=StockWriteResponse)
async def bulk_update(payload: BulkStockUpdateRequest, ledger: StockLedger = Depends(get_ledger)):
    modified = await ledger.bulk_set_daily([(u.item_id, u.daily_stock) for u in payload.updates])
    return StockWriteResponse(message="Daily stock updated", modified_count=modified)


@router.put("/{item_id}", response_model=StockItem)
async def update_item_stock(
    item_id: str,
    payload: StockUpdateRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    item = await ledger.set_item_stock(item_id, payload.daily_stock, payload.current_stock)
    return StockItem.model_validate(item)


@router.post("/reset", response_model=StockWriteResponse)
async def reset_stock(ledger: StockLedger = Depends(get_ledger)):
    """Refill every tracked item now (same as the morning job)."""
    modified = await ledger.reset_daily()
    return StockWriteResponse(message="Daily stock reset", modified_count=modified)
