"""
Canteen API — Customer identity (tagged union)

An order or a feedback entry belongs to exactly one of:
  - GuestCustomer       contact details captured at order time
  - RegisteredCustomer  the `sub` claim of a verified JWT
"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, EmailStr, Field

from canteen.models.order import CustomerKind


class GuestInfo(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=5, max_length=32)
    email: EmailStr


class GuestCustomer(GuestInfo):
    kind: Literal["guest"] = "guest"


class RegisteredCustomer(BaseModel):
    kind: Literal["registered"] = "registered"
    user_id: str = Field(..., min_length=1, max_length=64)


Customer = Annotated[Union[GuestCustomer, RegisteredCustomer], Field(discriminator="kind")]


def customer_from_row(row) -> GuestCustomer | RegisteredCustomer:
    """Rebuild the identity from an Order row's flat customer columns."""
    if row.customer_kind == CustomerKind.REGISTERED:
        return RegisteredCustomer(user_id=row.user_id)
    return GuestCustomer.model_construct(
        kind="guest", name=row.guest_name, phone=row.guest_phone, email=row.guest_email
    )
