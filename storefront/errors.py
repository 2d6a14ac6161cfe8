"""Typed errors raised by the storefront core.

Every error carries a short upper-case ``code`` (for example
``INSUFFICIENT_STOCK``) that the HTTP layer maps to a status code and
returns as ``detail``. ``extra()`` exposes structured context that callers
can report back to the user.
"""

from dataclasses import dataclass, asdict
from typing import Any, List, Optional


class StorefrontError(Exception):
    """Base class for every business, validation and not-found error."""

    code = "BUSINESS_ERROR"

    def __init__(self, message: str | None = None):
        self.message = message or self.code
        super().__init__(self.message)

    def extra(self) -> dict:
        """Structured context added to the error response body."""
        return {}


# ---- Validation ----

class ValidationFailed(StorefrontError):
    """Bad input shape, rejected before any side effect.

    Attributes:
        errors: Field-level details, each a dict with ``field`` and
            ``message`` keys.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(message, [{"field": field, "message": message}])

    def extra(self) -> dict:
        return {"errors": self.errors}


# ---- Not found ----

class NotFound(StorefrontError):
    code = "NOT_FOUND"


class OrderNotFound(NotFound):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_ids):
        self.product_ids = sorted(product_ids)
        ids = ", ".join(str(p) for p in self.product_ids)
        super().__init__(f"Product not found: {ids}")

    def extra(self) -> dict:
        return {"product_ids": self.product_ids}


class AddressNotFound(NotFound):
    code = "ADDRESS_NOT_FOUND"

    def __init__(self, address_id):
        self.address_id = address_id
        super().__init__(f"Shipping address {address_id} not found")


class ReservationNotFound(NotFound):
    code = "RESERVATION_NOT_FOUND"

    def __init__(self, token):
        self.token = token
        super().__init__(f"Stock reservation {token} not found")


# ---- Business rules ----

@dataclass(frozen=True)
class StockShortage:
    """One product that could not cover the requested quantity."""

    product_id: int
    product_name: str
    requested: int
    available: int


class InsufficientStock(StorefrontError):
    """Reservation rejected because one or more products are short.

    Attributes:
        shortages: Every short product with requested and available
            amounts. Empty when the rejection was caused by lock contention.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(self, shortages: List[StockShortage], message: str | None = None):
        self.shortages = list(shortages)
        if message is None:
            parts = [
                f"insufficient stock for {s.product_name}, available: {s.available}, requested: {s.requested}"
                for s in self.shortages
            ]
            message = "; ".join(parts) or "insufficient stock"
        super().__init__(message)

    def extra(self) -> dict:
        return {"shortages": [asdict(s) for s in self.shortages]}


class StockBusy(InsufficientStock):
    """The stock lock for a product could not be acquired under the wait policy."""

    code = "STOCK_BUSY"

    def __init__(self, product_ids):
        self.product_ids = sorted(product_ids)
        super().__init__([], f"stock is busy for products {self.product_ids}")

    def extra(self) -> dict:
        return {"product_ids": self.product_ids}


class ProductInactive(StorefrontError):
    code = "PRODUCT_INACTIVE"

    def __init__(self, product_id: int, product_name: str = ""):
        self.product_id = product_id
        super().__init__(f"Product {product_name or product_id} is not available for purchase")

    def extra(self) -> dict:
        return {"product_id": self.product_id}


class EmptyCart(StorefrontError):
    code = "EMPTY_CART"

    def __init__(self, message: str = "Cannot place an order with an empty cart"):
        super().__init__(message)


class AddressIncomplete(StorefrontError):
    code = "ADDRESS_INCOMPLETE"

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Shipping address is incomplete, missing: {', '.join(self.missing)}")

    def extra(self) -> dict:
        return {"missing": self.missing}


class AddressNotOwned(StorefrontError):
    code = "ADDRESS_NOT_OWNED"

    def __init__(self, address_id):
        super().__init__(f"Shipping address {address_id} does not belong to the requesting user")


class InvalidTransition(StorefrontError):
    """Status change outside the order state machine.

    Attributes:
        current: Status the order was found in.
        requested: Status the caller asked for.
    """

    code = "INVALID_TRANSITION"

    def __init__(self, current, requested, order_id=None):
        self.current = getattr(current, "value", current)
        self.requested = getattr(requested, "value", requested)
        self.order_id = order_id
        super().__init__(f"Invalid status transition: {self.current} -> {self.requested}")

    def extra(self) -> dict:
        return {"current": self.current, "requested": self.requested}


class PaymentFailed(StorefrontError):
    """The payment attempt was declined, timed out or errored.

    Attributes:
        outcome: The ``PaymentOutcome`` reported for the attempt, when any.
    """

    code = "PAYMENT_FAILED"

    def __init__(self, reason: str, outcome: Any = None):
        self.reason = reason
        self.outcome = outcome
        super().__init__(f"Payment failed: {reason}")

    def extra(self) -> dict:
        return {"reason": self.reason}


class PlacementTimeout(StorefrontError):
    code = "PLACEMENT_TIMEOUT"


class ReservationExpired(StorefrontError):
    code = "RESERVATION_EXPIRED"

    def __init__(self, token):
        self.token = token
        super().__init__(f"Stock reservation {token} was released before it could be committed")


class ReservationStateError(StorefrontError):
    code = "RESERVATION_STATE"


class IdempotencyConflict(StorefrontError):
    code = "IDEMPOTENCY_CONFLICT"


class NotAuthenticated(StorefrontError):
    code = "NOT_AUTHENTICATED"


class Forbidden(StorefrontError):
    code = "FORBIDDEN"


# ---- Infrastructure ----

class UpstreamUnavailable(StorefrontError):
    code = "UPSTREAM_UNAVAILABLE"
