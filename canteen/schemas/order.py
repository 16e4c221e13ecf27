"""
Canteen API — Order Pydantic Schemas
"""
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, Field

from canteen.models.order import Order, OrderStatus, OrderType, PaymentMethod, PaymentStatus
from canteen.schemas.customer import Customer, GuestInfo, customer_from_row


class CartLine(BaseModel):
    menu_item_id: str = Field(..., validation_alias=AliasChoices("menu_item_id", "item"), examples=["item-001"])
    name: str | None = Field(None, max_length=255)
    quantity: int = Field(..., ge=1, le=50)
    customizations: dict[str, str] = Field(default_factory=dict)
    price: Decimal | None = Field(None, ge=0, description="Advisory only; the menu price is charged.")


class OrderCreateRequest(BaseModel):
    items: list[CartLine] = Field(default_factory=list, max_length=30)
    payment_method: PaymentMethod | None = None
    order_type: OrderType | None = None
    table_number: str | None = Field(None, max_length=16)
    guest: GuestInfo | None = None
    total_amount: Decimal | None = Field(None, ge=0, description="Advisory only; recomputed server-side.")


class OrderItemResponse(BaseModel):
    menu_item_id: str
    name: str
    quantity: int
    customizations: dict[str, str]
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    id: str
    order_number: str
    items: list[OrderItemResponse]
    customer: Customer
    order_type: OrderType
    table_number: str | None
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    subtotal: Decimal
    tax: Decimal
    total_amount: Decimal
    estimated_time: int
    feedback_submitted: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order, **extra) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            items=[
                OrderItemResponse(
                    menu_item_id=line.menu_item_id,
                    name=line.name,
                    quantity=line.quantity,
                    customizations=line.customizations or {},
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                )
                for line in order.items
            ],
            customer=customer_from_row(order),
            order_type=order.order_type,
            table_number=order.table_number,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            status=order.status,
            subtotal=order.subtotal,
            tax=order.tax,
            total_amount=order.total_amount,
            estimated_time=order.estimated_time,
            feedback_submitted=order.feedback_submitted,
            created_at=order.created_at,
            updated_at=order.updated_at,
            **extra,
        )


class OrderTrackingResponse(OrderResponse):
    estimated_completion: datetime
    time_remaining: int  # minutes, never negative


class GatewayOrderResponse(BaseModel):
    """Handle returned for UPI orders; the client opens the gateway checkout with it."""
    id: str
    amount: int  # paise
    currency: str
    receipt: str
    key_id: str
    order_number: str
    order_details: OrderCreateRequest


class PaymentVerifyRequest(BaseModel):
    gateway_order_id: str = Field(..., validation_alias=AliasChoices("gateway_order_id", "razorpay_order_id"))
    gateway_payment_id: str = Field(..., validation_alias=AliasChoices("gateway_payment_id", "razorpay_payment_id"))
    signature: str = Field(..., validation_alias=AliasChoices("signature", "razorpay_signature"))
    order_details: OrderCreateRequest


class PaymentVerifyResponse(BaseModel):
    success: bool
    message: str
    order: OrderResponse


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


class AutomationRunResponse(BaseModel):
    advanced: list[dict[str, str]]
