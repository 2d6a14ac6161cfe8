"""Inventory ledger: the only writer of product stock counters.

A reservation decrements stock for a whole batch of products or for none
of them. It runs under the per-product process locks (ascending product
id), selects the rows ``FOR UPDATE`` in the same order and applies a
guarded decrement (``stock_quantity >= requested``), so two reservations
against the last unit can never both succeed.

Reservations are persisted as tokens with an expiry. ``commit`` finalizes a
token once the order is confirmed, ``release`` gives the stock back, and
tokens left RESERVED past their expiry are released by the recovery
sweeper.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .. import settings
from ..db import Database, utcnow
from ..errors import (
    InsufficientStock,
    ProductInactive,
    ProductNotFound,
    ReservationExpired,
    ReservationNotFound,
    ReservationStateError,
    StockBusy,
    StockShortage,
    ValidationFailed,
)
from .domain import ReservationStatus, ReservationToken, StockRequest
from .locks import ProductLockRegistry
from .models import Product, StockReservation, StockReservationLine

logger = logging.getLogger(__name__)

TokenRef = Union[ReservationToken, uuid.UUID, str]


def _token_id(token: TokenRef) -> uuid.UUID:
    if isinstance(token, ReservationToken):
        return token.id
    if isinstance(token, uuid.UUID):
        return token
    return uuid.UUID(str(token))


class InventoryLedger:
    """Atomic reserve / release / commit operations on product stock.

    Every mutator accepts an optional ``session``; when given, the work
    joins that transaction instead of committing on its own.

    Args:
        db: Database the stock tables live in.
        locks: Process-wide lock registry. Share one instance between all
            ledgers of a process.
        clock: Callable returning the current naive UTC time.
    """

    def __init__(
        self,
        db: Database,
        locks: ProductLockRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self._locks = locks or ProductLockRegistry()
        self._clock = clock

    # ---- helpers ----

    @staticmethod
    def normalize(items: Iterable) -> List[StockRequest]:
        """Merge duplicate products and sort requests by product id.

        Args:
            items: ``StockRequest`` objects or ``(product_id, quantity)``
                pairs.

        Returns:
            list[StockRequest]: One request per product, ascending id.

        Raises:
            ValidationFailed: If a quantity is not a positive integer.
        """
        merged: dict[int, int] = {}
        for item in items:
            if isinstance(item, StockRequest):
                pid, qty = item.product_id, item.quantity
            else:
                pid, qty = item
            if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
                raise ValidationFailed.for_field("quantity", f"quantity for product {pid} must be greater than 0")
            merged[pid] = merged.get(pid, 0) + qty
        return [StockRequest(pid, qty) for pid, qty in sorted(merged.items())]

    def _lock_policy(self) -> tuple[bool, float]:
        wait = getattr(settings, "STOCK_LOCK_WAIT", "wait") != "nowait"
        return wait, getattr(settings, "STOCK_LOCK_TIMEOUT_SECS", 5.0)

    # ---- reserve ----

    def reserve(
        self,
        items: Iterable,
        order_ref: Optional[str] = None,
        ttl: float | None = None,
    ) -> ReservationToken:
        """Reserve stock for every item, or for none.

        Args:
            items: ``StockRequest`` objects or ``(product_id, quantity)``
                pairs.
            order_ref: Optional reference of the order the stock is held
                for (stored on the token for recovery).
            ttl: Seconds until the token may be swept; defaults to
                ``settings.RESERVATION_TTL_SECS``.

        Returns:
            ReservationToken: The persisted token.

        Raises:
            ValidationFailed: Empty batch or non-positive quantity.
            ProductNotFound: A product id does not exist.
            ProductInactive: A product cannot be purchased.
            InsufficientStock: One or more products are short; every short
                product is listed.
            StockBusy: The lock wait policy gave up on a contended product.
        """
        requests = self.normalize(items)
        if not requests:
            raise ValidationFailed.for_field("items", "at least one item is required")
        if ttl is None:
            ttl = getattr(settings, "RESERVATION_TTL_SECS", 300)

        ids = [r.product_id for r in requests]
        wait, timeout = self._lock_policy()

        with self._locks.hold(ids, wait=wait, timeout=timeout):
            with self.db.transaction() as s:
                try:
                    rows = (
                        s.execute(
                            select(Product)
                            .where(Product.id.in_(ids))
                            .order_by(Product.id)
                            .with_for_update(nowait=not wait)
                        )
                        .scalars()
                        .all()
                    )
                except OperationalError as e:
                    if wait:
                        raise
                    raise StockBusy(ids) from e

                by_id = {p.id: p for p in rows}
                missing = [pid for pid in ids if pid not in by_id]
                if missing:
                    raise ProductNotFound(missing)

                for r in requests:
                    p = by_id[r.product_id]
                    if not p.is_active:
                        raise ProductInactive(p.id, p.name)

                shortages = [
                    StockShortage(r.product_id, by_id[r.product_id].name, r.quantity, by_id[r.product_id].stock_quantity)
                    for r in requests
                    if by_id[r.product_id].stock_quantity < r.quantity
                ]
                if shortages:
                    logger.info("reservation rejected", extra={"shortages": [s_.product_id for s_ in shortages]})
                    raise InsufficientStock(shortages)

                for r in requests:
                    res = s.execute(
                        update(Product)
                        .where(Product.id == r.product_id, Product.stock_quantity >= r.quantity)
                        .values(stock_quantity=Product.stock_quantity - r.quantity)
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount != 1:
                        available = s.scalar(select(Product.stock_quantity).where(Product.id == r.product_id))
                        raise InsufficientStock(
                            [StockShortage(r.product_id, by_id[r.product_id].name, r.quantity, available or 0)]
                        )

                now = self._clock()
                token_id = uuid.uuid4()
                expires_at = now + timedelta(seconds=ttl)
                s.add(
                    StockReservation(
                        id=token_id,
                        status=ReservationStatus.RESERVED.value,
                        order_ref=str(order_ref) if order_ref is not None else None,
                        created_at=now,
                        expires_at=expires_at,
                    )
                )
                s.flush()
                s.add_all(
                    [
                        StockReservationLine(reservation_id=token_id, product_id=r.product_id, quantity=r.quantity)
                        for r in requests
                    ]
                )

        logger.info(
            "stock reserved",
            extra={"reservation_id": str(token_id), "order_ref": order_ref, "products": ids},
        )
        return ReservationToken(id=token_id, lines=tuple(requests), expires_at=expires_at)

    # ---- release / commit ----

    def release(self, token: TokenRef, session: Optional[Session] = None) -> bool:
        """Give back the stock held by a RESERVED token.

        Args:
            token: Token, or its id.
            session: Optional enclosing transaction.

        Returns:
            bool: True when the stock was restored now, False when the token
            had already been released (no-op).

        Raises:
            ReservationNotFound: Unknown token.
            ReservationStateError: The token was already committed; use
                ``increase_stock`` to return committed stock.
        """
        token_id = _token_id(token)
        with self.db.transaction(session) as s:
            res = s.execute(
                update(StockReservation)
                .where(
                    StockReservation.id == token_id,
                    StockReservation.status == ReservationStatus.RESERVED.value,
                )
                .values(status=ReservationStatus.RELEASED.value, released_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                status = s.scalar(select(StockReservation.status).where(StockReservation.id == token_id))
                if status is None:
                    raise ReservationNotFound(token_id)
                if status == ReservationStatus.RELEASED.value:
                    logger.debug("reservation already released", extra={"reservation_id": str(token_id)})
                    return False
                raise ReservationStateError(f"Stock reservation {token_id} is {status} and cannot be released")

            lines = (
                s.execute(
                    select(StockReservationLine)
                    .where(StockReservationLine.reservation_id == token_id)
                    .order_by(StockReservationLine.product_id)
                )
                .scalars()
                .all()
            )
            for line in lines:
                s.execute(
                    update(Product)
                    .where(Product.id == line.product_id)
                    .values(stock_quantity=Product.stock_quantity + line.quantity)
                    .execution_options(synchronize_session=False)
                )

        logger.info("stock released", extra={"reservation_id": str(token_id)})
        return True

    def commit(self, token: TokenRef, session: Optional[Session] = None) -> None:
        """Finalize a reservation; the stock stays decremented.

        Committing an already committed token is a no-op.

        Raises:
            ReservationNotFound: Unknown token.
            ReservationExpired: The token was released (for example by the
                sweeper) before it could be committed.
        """
        token_id = _token_id(token)
        with self.db.transaction(session) as s:
            res = s.execute(
                update(StockReservation)
                .where(
                    StockReservation.id == token_id,
                    StockReservation.status == ReservationStatus.RESERVED.value,
                )
                .values(status=ReservationStatus.COMMITTED.value, committed_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                status = s.scalar(select(StockReservation.status).where(StockReservation.id == token_id))
                if status is None:
                    raise ReservationNotFound(token_id)
                if status == ReservationStatus.RELEASED.value:
                    raise ReservationExpired(token_id)
                return
        logger.debug("reservation committed", extra={"reservation_id": str(token_id)})

    # ---- direct adjustments ----

    def increase_stock(self, product_id: int, quantity: int, session: Optional[Session] = None) -> None:
        """Add ``quantity`` units back to a product (cancellation path).

        Raises:
            ValidationFailed: If ``quantity`` is not greater than 0.
            ProductNotFound: Unknown product.
        """
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationFailed.for_field("quantity", "quantity must be greater than 0")
        with self.db.transaction(session) as s:
            res = s.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_quantity=Product.stock_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                raise ProductNotFound([product_id])
        logger.info("stock increased", extra={"product_id": product_id, "quantity": quantity})

    # ---- reads ----

    def stock_of(self, product_id: int) -> int:
        with self.db.session() as s:
            qty = s.scalar(select(Product.stock_quantity).where(Product.id == product_id))
        if qty is None:
            raise ProductNotFound([product_id])
        return qty

    def get_reservation(self, token: TokenRef, session: Optional[Session] = None) -> Optional[ReservationToken]:
        token_id = _token_id(token)
        with self.db.transaction(session) as s:
            row = s.get(StockReservation, token_id)
            if row is None:
                return None
            lines = (
                s.execute(
                    select(StockReservationLine)
                    .where(StockReservationLine.reservation_id == token_id)
                    .order_by(StockReservationLine.product_id)
                )
                .scalars()
                .all()
            )
            return ReservationToken(
                id=row.id,
                lines=tuple(StockRequest(line.product_id, line.quantity) for line in lines),
                expires_at=row.expires_at,
                status=ReservationStatus(row.status),
            )

    def expired_reservations(self, now: datetime | None = None, limit: int = 100) -> List[uuid.UUID]:
        """Ids of RESERVED tokens whose expiry is in the past, oldest first."""
        now = now or self._clock()
        with self.db.session() as s:
            return list(
                s.execute(
                    select(StockReservation.id)
                    .where(
                        StockReservation.status == ReservationStatus.RESERVED.value,
                        StockReservation.expires_at < now,
                    )
                    .order_by(StockReservation.expires_at)
                    .limit(limit)
                ).scalars()
            )
