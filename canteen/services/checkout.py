"""
Canteen API — Checkout (order creation + payment callback)

Cash:
  build → persist pending/pending → consume stock → "new-order" broadcast
UPI:
  build → gateway order for the total (receipt_<order_number>) → nothing persisted
  callback → verify signature + amount → persist confirmed/completed and
  consume stock, or persist pending/failed for audit and reject
The signature is checked before anything is looked up. A correctly signed
callback replayed for a payment id we already recorded returns the stored
order (or the same rejection) and never touches stock again.
A failed record is only promoted by a later good payment when it holds the
cart the gateway was paid for; otherwise the paid cart is recorded anew.
"""
import logging
from collections import Counter

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from canteen.core.config import get_settings
from canteen.core.exceptions import OrderNumberConflictError, OrderValidationError, PaymentVerificationError
from canteen.models.menu import utcnow
from canteen.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from canteen.schemas.customer import GuestCustomer, RegisteredCustomer
from canteen.schemas.order import GatewayOrderResponse, OrderCreateRequest, PaymentVerifyRequest
from canteen.services.lifecycle import OrderLifecycle
from canteen.services.notifier import Notifier
from canteen.services.order_builder import OrderBuilder, OrderDraft, generate_order_number
from canteen.services.payments import (
    RazorpayGateway,
    order_number_from_receipt,
    receipt_for,
    to_paise,
    verify_signature,
)

settings = get_settings()
logger = logging.getLogger(__name__)

SIGNATURE_MISMATCH = "Signature mismatch. Payment verification failed."
AMOUNT_MISMATCH = "Paid amount does not match the order total. Payment verification failed."
PREVIOUSLY_REJECTED = "Payment was already rejected. Payment verification failed."


def resolve_customer(request: OrderCreateRequest, claims: dict | None) -> GuestCustomer | RegisteredCustomer:
    if claims and claims.get("sub"):
        return RegisteredCustomer(user_id=str(claims["sub"]))
    if request.guest is None:
        raise OrderValidationError("Guest details (name, phone, email) are required without a login.")
    return GuestCustomer(**request.guest.model_dump())


def matches_payment(order: Order, paid: int | None, draft: OrderDraft) -> bool:
    """Does a recorded order hold the cart the gateway was actually paid for?"""
    ordered = Counter()
    for line in order.items:
        ordered[line.menu_item_id] += line.quantity
    return paid == to_paise(order.total_amount) and dict(ordered) == draft.quantities


class CheckoutService:
    def __init__(self, db: AsyncSession, notifier: Notifier, gateway: RazorpayGateway):
        self.db = db
        self.notifier = notifier
        self.gateway = gateway
        self.builder = OrderBuilder(db)
        self.lifecycle = OrderLifecycle(db, notifier)

    async def _persist(self, order: Order) -> Order:
        order_number = order.order_number
        self.db.add(order)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning("Order %s collided with an existing record", order_number)
            raise OrderNumberConflictError("Order could not be recorded because of a conflicting record. Please retry.")
        return order

    async def _settle_stock(self, order: Order) -> None:
        try:
            await self.lifecycle.consume_stock(order)
        except Exception:
            logger.exception("Stock update for order %s failed", order.order_number)

    async def _find(self, *criteria) -> Order | None:
        result = await self.db.execute(
            select(Order)
            .where(*criteria)
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    # ── Order creation ────────────────────────────────────────────────────────

    async def place_order(self, request: OrderCreateRequest, claims: dict | None) -> Order | GatewayOrderResponse:
        customer = resolve_customer(request, claims)
        draft = await self.builder.build(request, customer)

        if draft.payment_method == PaymentMethod.UPI:
            receipt = receipt_for(draft.order_number)
            handle = await self.gateway.create_order(draft.total_amount, settings.PAYMENT_CURRENCY, receipt)
            return GatewayOrderResponse(
                id=handle.id,
                amount=handle.amount,
                currency=handle.currency,
                receipt=handle.receipt or receipt,
                key_id=settings.RAZORPAY_KEY_ID,
                order_number=draft.order_number,
                order_details=request,
            )

        order = await self._persist(draft.to_order())
        logger.info("Cash order %s placed (total %s)", order.order_number, order.total_amount)
        await self._settle_stock(order)
        await self.notifier.new_order(order)
        return order

    # ── Payment callback ──────────────────────────────────────────────────────

    async def confirm_payment(self, verify: PaymentVerifyRequest, claims: dict | None) -> Order:
        signature_ok = verify_signature(
            verify.gateway_order_id, verify.gateway_payment_id, verify.signature, settings.RAZORPAY_KEY_SECRET
        )

        replay = await self._find(Order.gateway_payment_id == verify.gateway_payment_id)
        if replay is not None:
            if signature_ok and replay.payment_status == PaymentStatus.COMPLETED:
                logger.info("Payment %s already recorded on %s", verify.gateway_payment_id, replay.order_number)
                return replay
            raise PaymentVerificationError(
                PREVIOUSLY_REJECTED if signature_ok else SIGNATURE_MISMATCH, replay.order_number
            )

        details = verify.order_details.model_copy(update={"payment_method": PaymentMethod.UPI})
        customer = resolve_customer(details, claims)
        # stock was checked when the gateway order was created; the customer has paid since
        draft = await self.builder.build(details, customer, check_stock=False)

        failure = None
        paid = None
        if not signature_ok:
            failure = SIGNATURE_MISMATCH
        else:
            handle = await self.gateway.fetch_order(verify.gateway_order_id)
            paid = handle.amount
            if paid != to_paise(draft.total_amount):
                failure = AMOUNT_MISMATCH
            number = order_number_from_receipt(handle.receipt)
            if number:
                draft = draft.with_order_number(number)

        prior = await self._find(Order.gateway_order_id == verify.gateway_order_id)
        if prior is not None:
            if failure or prior.payment_status == PaymentStatus.COMPLETED:
                return await self._settle_prior(prior, verify, failure)
            if matches_payment(prior, paid, draft):
                return await self._promote(prior, verify)
            # the failed attempt carried a different cart; it stays failed
            logger.warning(
                "Failed order %s does not match gateway order %s; recording the paid cart separately",
                prior.order_number, verify.gateway_order_id,
            )
            if prior.order_number == draft.order_number:
                draft = draft.with_order_number(generate_order_number())

        if failure:
            order = await self._persist(
                draft.to_order(
                    status=OrderStatus.PENDING,
                    payment_status=PaymentStatus.FAILED,
                    gateway_order_id=verify.gateway_order_id,
                    gateway_payment_id=verify.gateway_payment_id,
                )
            )
            logger.warning("Payment %s rejected: %s (order %s)", verify.gateway_payment_id, failure, order.order_number)
            raise PaymentVerificationError(failure, order.order_number)

        order = await self._persist(
            draft.to_order(
                status=OrderStatus.CONFIRMED,
                payment_status=PaymentStatus.COMPLETED,
                gateway_order_id=verify.gateway_order_id,
                gateway_payment_id=verify.gateway_payment_id,
            )
        )
        logger.info("Payment verified and order %s saved", order.order_number)
        await self._settle_stock(order)
        await self.notifier.new_order(order)
        await self.notifier.order_status(order)
        return order

    async def _settle_prior(self, prior: Order, verify: PaymentVerifyRequest, failure: str | None) -> Order:
        """A gateway order we already have a record for: a retried payment attempt."""
        if failure:
            raise PaymentVerificationError(failure, prior.order_number)
        logger.warning(
            "Gateway order %s already paid on %s; payment %s not applied",
            verify.gateway_order_id, prior.order_number, verify.gateway_payment_id,
        )
        return prior

    async def _promote(self, prior: Order, verify: PaymentVerifyRequest) -> Order:
        """A failed attempt followed by a good payment for the same cart."""
        values = {
            "status": OrderStatus.CONFIRMED,
            "payment_status": PaymentStatus.COMPLETED,
            "gateway_payment_id": verify.gateway_payment_id,
            "updated_at": utcnow(),
        }
        order_number = prior.order_number
        result = await self.db.execute(
            update(Order)
            .where(Order.id == prior.id, Order.payment_status == PaymentStatus.FAILED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise OrderNumberConflictError(f"Order {order_number} changed concurrently. Please retry.")
        await self.db.commit()
        for key, value in values.items():
            set_committed_value(prior, key, value)

        logger.info("Order %s paid on retry with payment %s", prior.order_number, verify.gateway_payment_id)
        await self._settle_stock(prior)
        await self.notifier.new_order(prior)
        await self.notifier.order_status(prior)
        return prior
