"""
Canteen API — Stock Pydantic Schemas
"""
from pydantic import BaseModel, Field


class StockItem(BaseModel):
    id: str
    name: str
    daily_stock: int
    current_stock: int
    is_available: bool
    is_out_of_stock: bool

    model_config = {"from_attributes": True}


class StockSummary(BaseModel):
    total_tracked: int
    low_stock: int
    out_of_stock: int
    in_stock: int


class StockStatusResponse(BaseModel):
    low_stock: list[StockItem]
    out_of_stock: list[StockItem]
    all_tracked_items: list[StockItem]
    summary: StockSummary


class StockUpdateRequest(BaseModel):
    daily_stock: int = Field(..., ge=0)
    current_stock: int = Field(..., ge=0)


class DailyStockUpdate(BaseModel):
    item_id: str
    daily_stock: int = Field(..., ge=0)


class BulkStockUpdateRequest(BaseModel):
    updates: list[DailyStockUpdate] = Field(..., min_length=1, max_length=500)


class StockWriteResponse(BaseModel):
    message: str
    modified_count: int
