"""
Canteen API — Payment verification and gateway client

verify_signature is pure: the gateway signs "<order_id>|<payment_id>" with
our key secret (HMAC-SHA256, hex digest).

RazorpayGateway talks to the gateway's REST API over httpx. Timeouts and
transport errors are surfaced as domain errors (504 / 503); nothing is
retried automatically.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

import httpx

from canteen.core.config import get_settings
from canteen.core.exceptions import (
    PaymentGatewayError,
    PaymentGatewayTimeout,
    PaymentGatewayUnavailable,
)

settings = get_settings()
logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "receipt_"


def sign(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(gateway_order_id: str, gateway_payment_id: str, signature: str, secret: str) -> bool:
    expected = sign(gateway_order_id, gateway_payment_id, secret)
    return hmac.compare_digest(expected, signature or "")


def to_paise(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def receipt_for(order_number: str) -> str:
    return f"{RECEIPT_PREFIX}{order_number}"


def order_number_from_receipt(receipt: str | None) -> str | None:
    if receipt and receipt.startswith(RECEIPT_PREFIX):
        return receipt[len(RECEIPT_PREFIX):]
    return None


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int  # paise
    currency: str
    receipt: str | None
    status: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "GatewayOrder":
        return cls(
            id=payload["id"],
            amount=int(payload["amount"]),
            currency=payload.get("currency", settings.PAYMENT_CURRENCY),
            receipt=payload.get("receipt"),
            status=payload.get("status"),
        )


class RazorpayGateway:
    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json)
        except httpx.TimeoutException:
            raise PaymentGatewayTimeout("Payment gateway did not respond in time. Please retry.")
        except httpx.RequestError as exc:
            raise PaymentGatewayUnavailable(f"Payment gateway unreachable: {exc}")

        if not response.is_success:
            logger.error("Gateway %s %s failed: %d %s", method, path, response.status_code, response.text)
            raise PaymentGatewayError(f"Payment gateway rejected the request ({response.status_code}).")
        return response.json()

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> GatewayOrder:
        payload = await self._request(
            "POST",
            "/orders",
            json={"amount": to_paise(amount), "currency": currency, "receipt": receipt, "payment_capture": 1},
        )
        handle = GatewayOrder.from_payload(payload)
        logger.info("Gateway order %s created for %s (%d paise)", handle.id, receipt, handle.amount)
        return handle

    async def fetch_order(self, gateway_order_id: str) -> GatewayOrder:
        return GatewayOrder.from_payload(await self._request("GET", f"/orders/{gateway_order_id}"))


_gateway: RazorpayGateway | None = None


def get_gateway() -> RazorpayGateway:
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway()
    return _gateway
