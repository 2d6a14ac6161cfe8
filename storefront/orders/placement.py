"""Order placement saga.

Placement runs as a single-process saga over the inventory ledger, the
orders table and the payment gateway::

    snapshot -> address -> reserve stock -> PENDING order -> charge
             -> [commit reservation + payment + CONFIRMED + clear cart]
             -> notify

Every step that follows a successful reservation registers its
compensation *before* it runs. On any failure the compensations run in
reverse order: refund a settled charge, cancel the pending order, release
the reservation. A crash between steps leaves a RESERVED token with an
expiry behind, which the orphan sweeper (``orders.recovery``) releases.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from .. import settings
from ..cart.snapshot import CartSnapshotBuilder
from ..db import Database, utcnow
from ..errors import AddressIncomplete, InvalidTransition, PaymentFailed, PlacementTimeout, ValidationFailed
from ..notifications import NotificationDispatcher
from ..payments.domain import PaymentMethod, PaymentOutcome, PaymentRecord, PaymentStatus
from ..payments.repository import PaymentRepository
from ..payments.service import GATEWAY_TIMEOUT, PaymentService
from .domain import (
    AddressBookPort,
    AuthenticatedUser,
    CartPort,
    Customer,
    InventoryPort,
    LineSnapshot,
    Order,
    OrderStatus,
    ShippingAddress,
)
from .repository import OrderRepository

logger = logging.getLogger(__name__)


# ---- Compensation stack ----


@dataclass
class _Compensation:
    action: str
    fn: Callable[[str], object]


@dataclass
class CompensationStack:
    """LIFO list of compensating actions plus a step log.

    Attributes:
        ref: Reference of the saga (the order id) used in logs.
        log: One entry per executed step or compensation with ``action``,
            ``status`` (COMPLETED | FAILED | COMPENSATED) and ``timestamp``.
    """

    ref: str
    log: List[dict] = field(default_factory=list)
    _stack: List[_Compensation] = field(default_factory=list)
    unwound: bool = False

    def record(self, action: str, status: str, error: str | None = None) -> None:
        entry = {"step": len(self.log) + 1, "action": action, "status": status, "timestamp": utcnow().isoformat()}
        if error:
            entry["error"] = error
        self.log.append(entry)

    def push(self, action: str, fn: Callable[[str], object]) -> None:
        self._stack.append(_Compensation(action, fn))

    def unwind(self, reason: str) -> None:
        """Run every registered compensation, newest first.

        A failing compensation is logged and the remaining ones still run.
        """
        if self.unwound:
            return
        self.unwound = True
        while self._stack:
            comp = self._stack.pop()
            try:
                comp.fn(reason)
                self.record(comp.action, "COMPENSATED")
            except Exception as e:
                self.record(comp.action, "FAILED", repr(e))
                logger.exception("compensation failed", extra={"order_ref": self.ref, "action": comp.action})
        logger.info("placement rolled back", extra={"order_ref": self.ref, "reason": reason, "saga_log": self.log})


# ---- Orchestrator ----


class OrderPlacementService:
    """Places registered and guest orders.

    Args:
        db: Database holding orders, payments and stock.
        ledger: Inventory ledger (the only stock writer).
        snapshots: Builds priced lines from carts or item lists.
        addresses: Validates saved addresses of registered users.
        carts: Cleared after a successful registered checkout.
        orders: Order persistence.
        payments: Bounded-time payment service.
        payment_records: Payment persistence.
        notifier: Fire-and-forget notification dispatcher.
        clock: Current naive UTC time.
        monotonic: Monotonic clock used for the placement deadline.
    """

    def __init__(
        self,
        db: Database,
        ledger: InventoryPort,
        snapshots: CartSnapshotBuilder,
        addresses: AddressBookPort,
        carts: CartPort,
        orders: OrderRepository,
        payments: PaymentService,
        payment_records: PaymentRepository,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.ledger = ledger
        self.snapshots = snapshots
        self.addresses = addresses
        self.carts = carts
        self.orders = orders
        self.payments = payments
        self.payment_records = payment_records
        self.notifier = notifier
        self._clock = clock
        self._monotonic = monotonic

    # ---- public API ----

    def place_order(
        self,
        identity: AuthenticatedUser,
        shipping_address_id: int,
        payment_method: str,
        notes: Optional[str] = None,
    ) -> Order:
        """Check out the cart of a registered user.

        Returns:
            Order: The CONFIRMED order.

        Raises:
            ValidationFailed: Unknown payment method.
            EmptyCart: The cart has no items.
            ProductNotFound / ProductInactive: A cart product cannot be sold.
            AddressNotFound / AddressNotOwned / AddressIncomplete: Bad address.
            InsufficientStock: Stock could not be reserved; nothing was written.
            PaymentFailed: The charge failed; stock was released and the order
                (if written) is CANCELLED.
            PlacementTimeout: The placement deadline passed before payment.
        """
        method = PaymentMethod.parse(payment_method)
        lines = self.snapshots.from_cart(identity.user_id)
        address = self.addresses.validate_user_address(identity.user_id, shipping_address_id)
        return self._place(Customer.registered(identity), lines, address, method, notes, clear_cart_of=identity.user_id)

    def place_guest_order(
        self,
        email: str,
        first_name: str,
        last_name: str,
        shipping_address: ShippingAddress,
        payment_method: str,
        items: Iterable,
        notes: Optional[str] = None,
    ) -> Order:
        """Check out a guest's item list.

        ``items`` are ``(product_id, quantity)`` pairs; duplicates are merged.
        Raises the same errors as ``place_order`` except for the address
        ownership checks.
        """
        errors = [
            {"field": name, "message": f"{name} is required"}
            for name, value in (("email", email), ("first_name", first_name), ("last_name", last_name))
            if not (value or "").strip()
        ]
        if errors:
            raise ValidationFailed("guest contact details are incomplete", errors)
        method = PaymentMethod.parse(payment_method)
        lines = self.snapshots.from_items(items)
        missing = shipping_address.missing_fields()
        if missing:
            raise AddressIncomplete(missing)
        customer = Customer.for_guest(email.strip(), first_name.strip(), last_name.strip())
        return self._place(customer, lines, shipping_address, method, notes)

    # ---- saga ----

    def _place(
        self,
        customer: Customer,
        lines: List[LineSnapshot],
        address: ShippingAddress,
        method: PaymentMethod,
        notes: Optional[str],
        clear_cart_of: Optional[int] = None,
    ) -> Order:
        deadline = self._monotonic() + getattr(settings, "PLACEMENT_TIMEOUT_SECS", 30.0)
        order = Order.new(
            customer,
            lines,
            address,
            currency=getattr(settings, "CURRENCY", "USD"),
            notes=notes,
            at=self._clock(),
        )
        saga = CompensationStack(str(order.id))

        # 1) reserve; a failure here has nothing to undo
        token = self.ledger.reserve([(line.product_id, line.quantity) for line in lines], order_ref=str(order.id))
        saga.record("reserve stock", "COMPLETED")
        saga.push("release reservation", lambda reason: self.ledger.release(token))
        order.reservation_id = token.id

        # 2) persist the PENDING order
        saga.push("cancel pending order", lambda reason: self._cancel_pending(order, reason))
        try:
            self.orders.create(order)
            saga.record("create pending order", "COMPLETED")
        except Exception:
            saga.unwind("order could not be saved")
            raise

        # 3) charge within what is left of the placement deadline
        remaining = deadline - self._monotonic()
        if remaining <= 0:
            saga.unwind("placement timed out")
            raise PlacementTimeout("Order placement timed out before payment")

        charged: dict = {}
        saga.push("refund payment", lambda reason: self._refund_if_charged(charged.get("outcome"), charged.get("record"), order))
        payment_timeout = getattr(settings, "PAYMENT_TIMEOUT_SECS", 10.0)
        outcome = self.payments.charge(order.total_amount, method, str(order.id), timeout=min(payment_timeout, remaining))
        charged["outcome"] = outcome
        record = PaymentRecord.from_outcome(outcome, method, order.total_amount, order.currency, self._clock())
        charged["record"] = record

        if not outcome.proceeds:
            saga.record("charge payment", "FAILED", outcome.failure_reason)
            timed_out = outcome.failure_reason == GATEWAY_TIMEOUT and self._monotonic() >= deadline
            saga.unwind("placement timed out" if timed_out else f"payment failed: {outcome.failure_reason}")
            self._record_failed_payment(order, record)
            if timed_out:
                raise PlacementTimeout("Order placement timed out during payment")
            raise PaymentFailed(outcome.failure_reason or "declined", outcome)
        saga.record("charge payment", "COMPLETED")

        # 4) confirm: one transaction for reservation, payment, status and cart
        try:
            with self.db.transaction() as s:
                self.ledger.commit(token, s)
                self.payment_records.save(order.id, record, s)
                if not self.orders.transition(order.id, OrderStatus.PENDING, OrderStatus.CONFIRMED, self._clock(), s):
                    raise InvalidTransition(
                        self.orders.status_of(order.id, s), OrderStatus.CONFIRMED, order_id=order.id
                    )
                if clear_cart_of is not None:
                    self.carts.clear(clear_cart_of, s)
            saga.record("confirm order", "COMPLETED")
        except Exception as e:
            saga.record("confirm order", "FAILED", repr(e))
            saga.unwind("confirmation failed")
            raise

        logger.info(
            "order placed",
            extra={
                "order_id": str(order.id),
                "total": str(order.total_amount),
                "payment_status": outcome.status.value,
                "guest": customer.is_guest,
            },
        )
        confirmed = self.orders.get(order.id)
        self._notify(confirmed)
        return confirmed

    # ---- compensations and helpers ----

    def _cancel_pending(self, order: Order, reason: str) -> None:
        now = self._clock()
        with self.db.transaction() as s:
            # no-op when the order was never written or already moved on
            if self.orders.transition(order.id, OrderStatus.PENDING, OrderStatus.CANCELLED, now, s):
                self.orders.append_note(order.id, f"[{now.isoformat(timespec='seconds')}] Cancelled: {reason}", s)

    def _refund_if_charged(self, outcome: Optional[PaymentOutcome], record: Optional[PaymentRecord], order: Order) -> None:
        if outcome is None or outcome.status != PaymentStatus.SUCCESS or not outcome.transaction_id:
            return
        refund = self.payments.refund(outcome.transaction_id, order.total_amount)
        now = self._clock()
        with self.db.transaction() as s:
            if self.payment_records.mark_refunded(order.id, refund.transaction_id, now, s) or record is None:
                return
            # the confirm transaction rolled back the row; keep the charge on file
            record.status = PaymentStatus.REFUNDED
            record.refund_transaction_id = refund.transaction_id
            record.processed_at = now
            self.payment_records.save(order.id, record, s)

    def _record_failed_payment(self, order: Order, record: PaymentRecord) -> None:
        try:
            self.payments.record_failed(order.id, record)
        except Exception:
            logger.exception("failed payment could not be recorded", extra={"order_id": str(order.id)})

    def _notify(self, order: Order) -> None:
        try:
            self.notifier.order_confirmed(order)
        except Exception:
            logger.exception("order confirmation could not be queued", extra={"order_id": str(order.id)})
