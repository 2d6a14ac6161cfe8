"""Payment value objects and the gateway port.

The gateway is an external capability with a narrow contract: charge an
amount for an order and, for settled payments, refund it. Prepaid methods
settle synchronously (SUCCESS or FAILED); cash on delivery settles as
PENDING and the money is collected later.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol

from ..errors import ValidationFailed


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    PAYPAL = "PAYPAL"
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"

    @classmethod
    def parse(cls, value: str) -> "PaymentMethod":
        """Case-insensitive lookup.

        Raises:
            ValidationFailed: For an unsupported payment method.
        """
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationFailed.for_field("payment_method", f"Unsupported payment method: {value}") from None

    @property
    def gateway(self) -> str:
        return _GATEWAYS[self]


_GATEWAYS = {
    PaymentMethod.CREDIT_CARD: "stripe",
    PaymentMethod.PAYPAL: "paypal",
    PaymentMethod.CASH_ON_DELIVERY: "manual",
}


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of one gateway call.

    Attributes:
        status: SUCCESS, PENDING or FAILED (REFUNDED for refund calls).
        transaction_id: Gateway transaction id, None when nothing was charged.
        gateway: Name of the gateway that handled the call.
        gateway_payment_id: Gateway-side payment object id.
        gateway_response: Raw response body as JSON text.
        failure_reason: Short reason when ``status`` is FAILED.
    """

    status: PaymentStatus
    transaction_id: Optional[str] = None
    gateway: str = ""
    gateway_payment_id: Optional[str] = None
    gateway_response: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def proceeds(self) -> bool:
        """Whether placement may continue (SUCCESS or PENDING)."""
        return self.status in (PaymentStatus.SUCCESS, PaymentStatus.PENDING)

    @classmethod
    def failed(cls, reason: str, gateway: str = "", response: str | None = None) -> "PaymentOutcome":
        return cls(status=PaymentStatus.FAILED, gateway=gateway, failure_reason=reason, gateway_response=response)


@dataclass
class PaymentRecord:
    """The settlement attempt stored with an order (one per order)."""

    method: PaymentMethod
    amount: Decimal
    currency: str
    status: PaymentStatus
    gateway: str = ""
    transaction_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_response: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    refund_transaction_id: Optional[str] = None
    id: Optional[int] = field(default=None)

    @property
    def is_successful(self) -> bool:
        return self.status == PaymentStatus.SUCCESS

    @classmethod
    def from_outcome(
        cls,
        outcome: PaymentOutcome,
        method: PaymentMethod,
        amount: Decimal,
        currency: str,
        at: datetime,
    ) -> "PaymentRecord":
        return cls(
            method=method,
            amount=amount,
            currency=currency,
            status=outcome.status,
            gateway=outcome.gateway or method.gateway,
            transaction_id=outcome.transaction_id,
            gateway_payment_id=outcome.gateway_payment_id,
            gateway_response=outcome.gateway_response,
            failure_reason=outcome.failure_reason,
            created_at=at,
            processed_at=at if outcome.status != PaymentStatus.PENDING else None,
        )


# ---- Port ----
class PaymentGatewayPort(Protocol):
    """Port describing the payment gateway used by the placement saga."""

    def process_payment(self, amount: Decimal, method: PaymentMethod, order_ref: str) -> PaymentOutcome:
        """Charge ``amount`` for ``order_ref`` with ``method``.

        Returns:
            PaymentOutcome: SUCCESS, PENDING or FAILED.
        """
        raise NotImplementedError()

    def refund(self, transaction_id: str, amount: Decimal) -> PaymentOutcome:
        """Refund a settled transaction.

        Returns:
            PaymentOutcome: REFUNDED on success, FAILED otherwise.
        """
        raise NotImplementedError()
