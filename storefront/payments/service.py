"""Payment service: bounded-time charges and refunds.

Gateway calls run on a small worker pool so the placement saga can give up
after a timeout. A timeout or gateway exception is reported as a FAILED
outcome, never as success. If a charge that already timed out later
succeeds, it is refunded automatically so the customer is never charged
for an order that was rolled back.
"""

import contextvars
import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from decimal import Decimal
import threading
from typing import Dict, Optional, Tuple
import uuid

from .. import settings
from ..db import utcnow
from ..errors import PaymentFailed
from .domain import PaymentGatewayPort, PaymentMethod, PaymentOutcome, PaymentRecord, PaymentStatus
from .repository import PaymentRepository

logger = logging.getLogger(__name__)

GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"
GATEWAY_ERROR = "GATEWAY_ERROR"


class PaymentService:
    """Wraps a ``PaymentGatewayPort`` with timeouts and refund bookkeeping.

    Args:
        gateway: The gateway implementation (simulated or HTTP).
        payments: Repository used by ``refund_for_order``.
        workers: Size of the charge worker pool; defaults to
            ``settings.PAYMENT_WORKERS``.
    """

    def __init__(self, gateway: PaymentGatewayPort, payments: PaymentRepository, workers: int | None = None):
        self.gateway = gateway
        self.payments = payments
        self._pool = ThreadPoolExecutor(
            max_workers=workers or getattr(settings, "PAYMENT_WORKERS", 8),
            thread_name_prefix="payments",
        )
        # order_ref -> (late charge id, refund id) not yet attached to a stored row
        self._late_refunds: Dict[str, Tuple[str, str]] = {}
        self._late_lock = threading.Lock()

    def charge(
        self,
        amount: Decimal,
        method: PaymentMethod,
        order_ref: str,
        timeout: float | None = None,
    ) -> PaymentOutcome:
        """Charge ``amount`` and wait at most ``timeout`` seconds.

        Returns:
            PaymentOutcome: The gateway outcome, or FAILED with reason
            ``GATEWAY_TIMEOUT`` / ``GATEWAY_ERROR``.
        """
        if timeout is None:
            timeout = getattr(settings, "PAYMENT_TIMEOUT_SECS", 10.0)
        ctx = contextvars.copy_context()
        future = self._pool.submit(ctx.run, self.gateway.process_payment, amount, method, order_ref)
        try:
            outcome = future.result(timeout=max(timeout, 0.0))
        except FutureTimeout:
            logger.warning("payment timed out", extra={"order_ref": str(order_ref), "timeout": timeout})
            future.add_done_callback(lambda f: self._refund_late_success(f, amount, order_ref))
            return PaymentOutcome.failed(GATEWAY_TIMEOUT, gateway=method.gateway)
        except Exception as e:
            logger.error("payment gateway error", extra={"order_ref": str(order_ref), "error": repr(e)})
            return PaymentOutcome.failed(GATEWAY_ERROR, gateway=method.gateway)

        logger.info(
            "payment processed",
            extra={"order_ref": str(order_ref), "status": outcome.status.value, "transaction_id": outcome.transaction_id},
        )
        return outcome

    def _refund_late_success(self, future: Future, amount: Decimal, order_ref: str) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        outcome = future.result()
        if outcome.status != PaymentStatus.SUCCESS or not outcome.transaction_id:
            return
        logger.warning("refunding charge that succeeded after timeout", extra={"order_ref": str(order_ref)})
        try:
            refund = self.refund(outcome.transaction_id, amount)
        except Exception:
            logger.exception("late charge refund failed", extra={"order_ref": str(order_ref)})
            return
        try:
            order_id = uuid.UUID(str(order_ref))
        except ValueError:
            return
        with self._late_lock:
            try:
                attached = self.payments.attach_late_refund(order_id, outcome.transaction_id, refund.transaction_id, utcnow())
            except Exception:
                logger.exception("late refund could not be recorded", extra={"order_ref": str(order_ref)})
                attached = False
            if not attached:
                self._late_refunds[str(order_id)] = (outcome.transaction_id, refund.transaction_id)

    def record_failed(self, order_id: uuid.UUID, record: PaymentRecord) -> int:
        """Store the FAILED payment of ``order_id``.

        A late charge already refunded for this order is written onto the
        same row, whichever of the two finishes first.
        """
        with self._late_lock:
            late = self._late_refunds.pop(str(order_id), None)
            if late is not None:
                record.transaction_id, record.refund_transaction_id = late
            return self.payments.save(order_id, record)

    def refund(self, transaction_id: str, amount: Decimal) -> PaymentOutcome:
        """Refund a settled transaction.

        Raises:
            PaymentFailed: If the gateway rejects the refund.
        """
        outcome = self.gateway.refund(transaction_id, amount)
        if outcome.status != PaymentStatus.REFUNDED:
            raise PaymentFailed(outcome.failure_reason or "refund rejected", outcome)
        logger.info("payment refunded", extra={"transaction_id": transaction_id, "refund_id": outcome.transaction_id})
        return outcome

    def refund_for_order(self, order_id: uuid.UUID) -> Optional[PaymentOutcome]:
        """Refund the order's payment if, and only if, it is SUCCESS.

        Returns:
            PaymentOutcome | None: The refund outcome, or None when there was
            nothing to refund.

        Raises:
            PaymentFailed: If the gateway rejects the refund.
        """
        record = self.payments.get_for_order(order_id)
        if record is None or record.status != PaymentStatus.SUCCESS or not record.transaction_id:
            return None
        outcome = self.refund(record.transaction_id, record.amount)
        self.payments.mark_refunded(order_id, outcome.transaction_id, utcnow())
        return outcome

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)
