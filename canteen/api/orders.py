"""
Canteen API — Orders API

Flow:
  1. Caller identity set by JWTAuthMiddleware (None → guest)
  2. Idempotency enforced by IdempotencyMiddleware
  3. CheckoutService validates, prices and either persists (cash) or opens
     a gateway order (UPI)
  4. The payment callback persists the UPI order once verified
"""
import math
from datetime import timedelta

from fastapi import APIRouter, Depends, Request, Response, status

from canteen.api.deps import get_checkout, get_lifecycle
from canteen.core.security import current_claims
from canteen.models.menu import utcnow
from canteen.models.order import Order
from canteen.schemas.order import (
    GatewayOrderResponse,
    OrderCreateRequest,
    OrderResponse,
    OrderTrackingResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)
from canteen.services.checkout import CheckoutService
from canteen.services.lifecycle import OrderLifecycle, as_utc

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse | GatewayOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreateRequest,
    request: Request,
    response: Response,
    checkout: CheckoutService = Depends(get_checkout),
):
    """
    Place an order.
    Cash → 201 with the persisted order.
    UPI  → 200 with the gateway handle; nothing is stored until /orders/verify.
    """
    result = await checkout.place_order(payload, current_claims(request))
    if isinstance(result, Order):
        return OrderResponse.from_order(result)
    response.status_code = status.HTTP_200_OK
    return result


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    payload: PaymentVerifyRequest,
    request: Request,
    checkout: CheckoutService = Depends(get_checkout),
):
    """Gateway callback relayed by the client after checkout."""
    order = await checkout.confirm_payment(payload, current_claims(request))
    return PaymentVerifyResponse(
        success=True,
        message="Payment verified and order placed",
        order=OrderResponse.from_order(order),
    )


@router.get("/track/{order_number}", response_model=OrderTrackingResponse)
async def track_order(order_number: str, lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    order = await lifecycle.get_by_number(order_number)
    estimated_completion = as_utc(order.created_at) + timedelta(minutes=order.estimated_time)
    remaining = (estimated_completion - utcnow()).total_seconds() / 60
    return OrderTrackingResponse.from_order(
        order,
        estimated_completion=estimated_completion,
        time_remaining=max(0, math.ceil(remaining)),
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    return OrderResponse.from_order(await lifecycle.get(order_id))
