"""Orphan reservation sweeper.

A placement that crashes after reserving stock leaves a RESERVED token (and
possibly a PENDING order) behind. Tokens live until ``expires_at``; once
expired the sweeper releases the stock and cancels the PENDING order tied
to the token, both in one transaction. A placement that tries to commit a
swept token gets ``ReservationExpired`` and unwinds itself.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from .. import settings
from ..db import Database, utcnow
from ..errors import NotFound, ReservationStateError
from ..inventory.ledger import InventoryLedger
from .domain import OrderStatus
from .repository import OrderRepository

logger = logging.getLogger(__name__)


class OrphanReservationSweeper:
    def __init__(
        self,
        db: Database,
        ledger: InventoryLedger,
        orders: OrderRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ledger = ledger
        self.orders = orders
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Release every expired reservation found in one batch.

        Returns:
            int: Number of reservations released.
        """
        now = now or self._clock()
        batch = getattr(settings, "RESERVATION_SWEEP_BATCH", 100)
        released = 0
        for token_id in self.ledger.expired_reservations(now=now, limit=batch):
            try:
                with self.db.transaction() as s:
                    if not self.ledger.release(token_id, s):
                        continue
                    order = self.orders.find_by_reservation(token_id, s)
                    if order is not None and order.status == OrderStatus.PENDING:
                        if self.orders.transition(order.id, OrderStatus.PENDING, OrderStatus.CANCELLED, now, s):
                            self.orders.append_note(
                                order.id,
                                f"[{now.isoformat(timespec='seconds')}] Cancelled: stock reservation expired",
                                s,
                            )
                released += 1
            except (ReservationStateError, NotFound):
                # committed or gone between listing and release
                logger.debug("reservation no longer sweepable", extra={"reservation_id": str(token_id)})
        if released:
            logger.warning("orphan reservations released", extra={"count": released})
        return released

    # ---- background loop ----

    def start(self, interval: float | None = None) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        interval = interval or getattr(settings, "RESERVATION_SWEEP_INTERVAL_SECS", 60.0)
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(interval,), name="reservation-sweeper", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("reservation sweep failed")
