"""Order lifecycle: status transitions after placement.

Every transition is one database transaction around a conditional status
update (``WHERE status = expected``), so two admins racing on the same
order cannot both win. Side effects of the target state run in the same
transaction: shipment/delivery dates, committing an outstanding
reservation on confirmation, and restoring stock on cancellation. Refunds
and notifications happen after commit and never undo the transition.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional
import uuid

from ..db import Database, utcnow
from ..errors import InvalidTransition, StorefrontError
from ..inventory.domain import ReservationStatus
from ..notifications import NotificationDispatcher
from ..payments.domain import PaymentStatus
from ..payments.service import PaymentService
from .domain import InventoryPort, Order, OrderStatus, ensure_transition
from .repository import OrderRepository

logger = logging.getLogger(__name__)

CANCELLABLE = (OrderStatus.PENDING, OrderStatus.CONFIRMED)


def _stamp(at: datetime) -> str:
    return f"[{at.isoformat(timespec='seconds')}]"


@dataclass
class BulkShipResult:
    """Outcome of ``mark_orders_as_shipped``.

    Attributes:
        shipped: Orders now SHIPPED.
        failures: One dict per rejected order with ``order_id``, ``code``
            and ``message``.
    """

    shipped: List[Order] = field(default_factory=list)
    failures: List[dict] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failures


class OrderLifecycleManager:
    def __init__(
        self,
        db: Database,
        ledger: InventoryPort,
        orders: OrderRepository,
        payments: PaymentService,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ledger = ledger
        self.orders = orders
        self.payments = payments
        self.notifier = notifier
        self._clock = clock

    def update_status(self, order_id: uuid.UUID, new_status, notes: Optional[str] = None) -> Order:
        """Apply a status transition and its side effects.

        Args:
            order_id: Order to change.
            new_status: Target ``OrderStatus`` (or its name).
            notes: Optional text appended to the audit note.

        Returns:
            Order: The order after the change.

        Raises:
            ValidationFailed: Unknown status name.
            OrderNotFound: No such order.
            InvalidTransition: The transition is not allowed from the current
                status, including when another caller changed it first.
        """
        new = OrderStatus.parse(new_status)
        order = self.orders.get(order_id)
        ensure_transition(order.status, new, order_id=order.id)

        now = self._clock()
        values = {}
        if new == OrderStatus.SHIPPED:
            values["shipped_date"] = order.shipped_date or now
        elif new == OrderStatus.DELIVERED:
            values["delivered_date"] = order.delivered_date or now

        with self.db.transaction() as s:
            if not self.orders.transition(order.id, order.status, new, now, s, **values):
                actual = self.orders.status_of(order.id, s)
                raise InvalidTransition(actual or order.status, new, order_id=order.id)
            if new == OrderStatus.CONFIRMED and order.reservation_id is not None:
                self.ledger.commit(order.reservation_id, s)
            if new == OrderStatus.CANCELLED:
                self._restore_stock(order, s)
            note = f"{_stamp(now)} Status changed from {order.status.value} to {new.value}"
            if notes:
                note = f"{note}: {notes}"
            self.orders.append_note(order.id, note, s)

        logger.info(
            "order status changed",
            extra={"order_id": str(order.id), "from": order.status.value, "to": new.value},
        )

        if new == OrderStatus.CANCELLED and order.payment is not None and order.payment.status == PaymentStatus.SUCCESS:
            self._refund(order)

        updated = self.orders.get(order.id)
        try:
            self.notifier.status_changed(updated)
        except Exception:
            logger.exception("status notification could not be queued", extra={"order_id": str(order.id)})
        return updated

    def cancel_order(self, order_id: uuid.UUID, reason: str) -> Order:
        """Cancel a PENDING or CONFIRMED order, restoring its stock.

        Raises:
            OrderNotFound: No such order.
            InvalidTransition: The order is already shipped, delivered or
                cancelled.
        """
        order = self.orders.get(order_id)
        if order.status not in CANCELLABLE:
            raise InvalidTransition(order.status, OrderStatus.CANCELLED, order_id=order.id)
        return self.update_status(order.id, OrderStatus.CANCELLED, f"Cancellation reason: {reason}" if reason else None)

    def mark_orders_as_shipped(self, order_ids: Iterable[uuid.UUID]) -> BulkShipResult:
        """Ship each order independently and collect the failures."""
        result = BulkShipResult()
        for oid in order_ids:
            try:
                result.shipped.append(self.update_status(oid, OrderStatus.SHIPPED, "Bulk shipment"))
            except StorefrontError as e:
                result.failures.append({"order_id": str(oid), "code": e.code, "message": e.message})
            except Exception as e:
                logger.exception("bulk shipment failed", extra={"order_id": str(oid)})
                result.failures.append({"order_id": str(oid), "code": "INTERNAL_ERROR", "message": str(e)})
        logger.info(
            "bulk shipment processed",
            extra={"shipped": len(result.shipped), "failed": len(result.failures)},
        )
        return result

    # ---- helpers ----

    def _restore_stock(self, order: Order, s) -> None:
        token = self.ledger.get_reservation(order.reservation_id, s) if order.reservation_id else None
        if token is not None and token.status == ReservationStatus.RESERVED:
            self.ledger.release(token.id, s)
            return
        if token is not None and token.status == ReservationStatus.RELEASED:
            # swept or compensated already
            return
        for item in order.items:
            self.ledger.increase_stock(item.product_id, item.quantity, s)

    def _refund(self, order: Order) -> None:
        now = self._clock()
        try:
            outcome = self.payments.refund_for_order(order.id)
        except Exception as e:
            logger.error("refund failed", extra={"order_id": str(order.id), "error": repr(e)})
            self.orders.append_note(order.id, f"{_stamp(now)} Refund failed: {e}")
            return
        if outcome is not None:
            self.orders.append_note(order.id, f"{_stamp(now)} Payment refunded ({outcome.transaction_id})")
