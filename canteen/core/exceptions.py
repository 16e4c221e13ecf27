"""
Canteen API — Domain error taxonomy

Services raise these; `canteen.main` maps them to HTTP responses.
"""


class CanteenError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class OrderValidationError(CanteenError):
    """Missing or malformed input, rejected before any mutation."""


class InsufficientStockError(CanteenError):
    """One or more cart lines exceed the remaining stock."""

    def __init__(self, errors: list[dict]):
        super().__init__("Insufficient stock for some items")
        self.errors = errors

    def to_dict(self) -> dict:
        return {"detail": self.message, "errors": self.errors}


class PaymentVerificationError(CanteenError):
    """Gateway callback failed signature or amount verification."""

    def __init__(self, message: str, order_number: str | None = None):
        super().__init__(message)
        self.order_number = order_number

    def to_dict(self) -> dict:
        return {"success": False, "detail": self.message, "order_number": self.order_number}


class NotFoundError(CanteenError):
    status_code = 404


class InvalidTransitionError(CanteenError):
    """Illegal status change, or any change to a terminal order."""

    status_code = 409


class OrderNumberConflictError(CanteenError):
    """Generated order number collided with an existing one; caller retries."""

    status_code = 409


class PaymentGatewayError(CanteenError):
    status_code = 502


class PaymentGatewayTimeout(PaymentGatewayError):
    status_code = 504


class PaymentGatewayUnavailable(PaymentGatewayError):
    status_code = 503
