"""In-process payment gateway.

Simulates the stripe/paypal/manual gateways synchronously. Useful for tests
and local development; declines can be configured per order reference or
per payment method.
"""

import json
import logging
import threading
import time
import uuid
from decimal import Decimal
from typing import Iterable

from .domain import PaymentMethod, PaymentOutcome, PaymentStatus

logger = logging.getLogger(__name__)


class SimulatedPaymentGateway:
    """Gateway stub that approves everything unless told otherwise.

    Args:
        decline_refs: Order references whose charges are declined.
        decline_methods: Payment methods whose charges are declined.
        delay: Seconds to sleep inside every charge (to exercise timeouts).
    """

    def __init__(
        self,
        decline_refs: Iterable[str] = (),
        decline_methods: Iterable[PaymentMethod] = (),
        delay: float = 0.0,
    ):
        self.decline_refs = set(str(r) for r in decline_refs)
        self.decline_methods = set(decline_methods)
        self.delay = delay
        self._lock = threading.Lock()
        self.charges: list[tuple[str, Decimal, PaymentMethod]] = []
        self.refunds: list[tuple[str, Decimal]] = []

    def process_payment(self, amount: Decimal, method: PaymentMethod, order_ref: str) -> PaymentOutcome:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.charges.append((str(order_ref), amount, method))

        if str(order_ref) in self.decline_refs or method in self.decline_methods:
            logger.info("payment declined", extra={"order_ref": str(order_ref), "method": method.value})
            return PaymentOutcome.failed(
                "card_declined",
                gateway=method.gateway,
                response=json.dumps({"status": "declined", "reason": "card_declined"}),
            )

        if method == PaymentMethod.CREDIT_CARD:
            return self._stripe(amount)
        if method == PaymentMethod.PAYPAL:
            return self._paypal(amount)
        return self._cash_on_delivery()

    def refund(self, transaction_id: str, amount: Decimal) -> PaymentOutcome:
        with self._lock:
            self.refunds.append((transaction_id, amount))
        refund_id = f"REFUND-{uuid.uuid4()}"
        return PaymentOutcome(
            status=PaymentStatus.REFUNDED,
            transaction_id=refund_id,
            gateway_response=json.dumps({"id": refund_id, "refunded": transaction_id, "amount": str(amount)}),
        )

    # ---- simulated gateways ----

    def _stripe(self, amount: Decimal) -> PaymentOutcome:
        payment_id = f"stripe_{int(time.time() * 1000)}"
        body = {
            "id": payment_id,
            "status": "succeeded",
            "amount": int(amount * 100),
            "currency": "usd",
            "created": int(time.time()),
        }
        return PaymentOutcome(
            status=PaymentStatus.SUCCESS,
            transaction_id=f"pi_{uuid.uuid4()}",
            gateway="stripe",
            gateway_payment_id=payment_id,
            gateway_response=json.dumps(body),
        )

    def _paypal(self, amount: Decimal) -> PaymentOutcome:
        payment_id = f"paypal_{int(time.time() * 1000)}"
        body = {"id": payment_id, "state": "approved", "amount": {"total": str(amount), "currency": "USD"}}
        return PaymentOutcome(
            status=PaymentStatus.SUCCESS,
            transaction_id=f"PAY-{uuid.uuid4()}",
            gateway="paypal",
            gateway_payment_id=payment_id,
            gateway_response=json.dumps(body),
        )

    def _cash_on_delivery(self) -> PaymentOutcome:
        body = {
            "method": "cash_on_delivery",
            "status": "pending",
            "note": "Payment will be collected upon delivery",
        }
        return PaymentOutcome(
            status=PaymentStatus.PENDING,
            transaction_id=f"COD-{uuid.uuid4()}",
            gateway="manual",
            gateway_response=json.dumps(body),
        )

    def charged_refs(self) -> list[str]:
        with self._lock:
            return [ref for ref, _, _ in self.charges]
