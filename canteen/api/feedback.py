"""
Canteen API — Feedback
"""
from fastapi import APIRouter, Depends, Query, Request, status

from canteen.api.deps import get_feedback_service
from canteen.core.security import current_claims
from canteen.schemas.feedback import FeedbackRequest, FeedbackResponse, MenuItemFeedbackResponse
from canteen.services.feedback import FeedbackService

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post("", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    payload: FeedbackRequest,
    request: Request,
    service: FeedbackService = Depends(get_feedback_service),
):
    """Rate one item of a completed order. Guests identify with the order's email."""
    feedback = await service.submit(payload, current_claims(request))
    return FeedbackResponse.model_validate(feedback)


@router.get("/menu-item/{item_id}", response_model=MenuItemFeedbackResponse)
async def menu_item_feedback(
    item_id: str,
    limit: int = Query(10, ge=1, le=50),
    service: FeedbackService = Depends(get_feedback_service),
):
    average, count, recent = await service.summary(item_id, limit)
    return MenuItemFeedbackResponse(
        menu_item_id=item_id,
        average=average,
        count=count,
        feedback=[FeedbackResponse.model_validate(f) for f in recent],
    )
