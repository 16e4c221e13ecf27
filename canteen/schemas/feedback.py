"""
Canteen API — Feedback Pydantic Schemas
"""
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class FeedbackRequest(BaseModel):
    order_id: str
    menu_item_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=1000)
    guest_email: EmailStr | None = Field(None, description="Required when submitting without a token.")


class FeedbackResponse(BaseModel):
    id: str
    order_id: str
    menu_item_id: str
    rating: int
    comment: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class MenuItemFeedbackResponse(BaseModel):
    menu_item_id: str
    average: float
    count: int
    feedback: list[FeedbackResponse]
