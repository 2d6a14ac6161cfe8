"""Service provider helpers for wiring the order services with their ports.

``build_services`` returns a ``Services`` container with every component
wired against one database. The payment gateway is the HTTP adapter when
``settings.USE_HTTP_ADAPTERS`` is truthy and the in-process simulated
gateway otherwise, which suits tests and local development.
"""

from dataclasses import dataclass
from typing import Optional

from .. import settings
from ..addresses.store import SqlAddressStore
from ..cart.repository import CartRepository
from ..cart.snapshot import CartSnapshotBuilder
from ..db import Database
from ..inventory.catalog import SqlCatalog
from ..inventory.ledger import InventoryLedger
from ..inventory.locks import ProductLockRegistry
from ..notifications import LoggingNotificationService, NotificationDispatcher
from ..payments.domain import PaymentGatewayPort
from ..payments.gateway import SimulatedPaymentGateway
from ..payments.http_adapters import HttpPaymentGateway
from ..payments.repository import PaymentRepository
from ..payments.service import PaymentService
from .domain import NotificationsPort
from .lifecycle import OrderLifecycleManager
from .placement import OrderPlacementService
from .recovery import OrphanReservationSweeper
from .reports import OrderQueries
from .repository import OrderRepository


@dataclass
class Services:
    db: Database
    ledger: InventoryLedger
    catalog: SqlCatalog
    carts: CartRepository
    addresses: SqlAddressStore
    orders: OrderRepository
    payment_records: PaymentRepository
    payments: PaymentService
    notifier: NotificationDispatcher
    placement: OrderPlacementService
    lifecycle: OrderLifecycleManager
    queries: OrderQueries
    sweeper: OrphanReservationSweeper

    def shutdown(self) -> None:
        self.sweeper.stop()
        self.payments.shutdown()
        self.notifier.shutdown()


def default_gateway() -> PaymentGatewayPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpPaymentGateway()
    return SimulatedPaymentGateway()


def build_services(
    db: Optional[Database] = None,
    gateway: Optional[PaymentGatewayPort] = None,
    notifications: Optional[NotificationsPort] = None,
    locks: Optional[ProductLockRegistry] = None,
) -> Services:
    """Wire every order component against ``db``.

    Args:
        db: Database; defaults to one built from ``settings.DATABASE_URL``.
        gateway: Payment gateway; defaults to ``default_gateway()``.
        notifications: Notification port; defaults to the logging one.
        locks: Product lock registry shared by the ledger.

    Returns:
        Services: The wired container.
    """
    db = db or Database()
    ledger = InventoryLedger(db, locks or ProductLockRegistry())
    catalog = SqlCatalog(db)
    carts = CartRepository(db)
    addresses = SqlAddressStore(db)
    orders = OrderRepository(db)
    payment_records = PaymentRepository(db)
    payments = PaymentService(gateway or default_gateway(), payment_records)
    notifier = NotificationDispatcher(notifications or LoggingNotificationService())
    return Services(
        db=db,
        ledger=ledger,
        catalog=catalog,
        carts=carts,
        addresses=addresses,
        orders=orders,
        payment_records=payment_records,
        payments=payments,
        notifier=notifier,
        placement=OrderPlacementService(
            db=db,
            ledger=ledger,
            snapshots=CartSnapshotBuilder(catalog, carts),
            addresses=addresses,
            carts=carts,
            orders=orders,
            payments=payments,
            payment_records=payment_records,
            notifier=notifier,
        ),
        lifecycle=OrderLifecycleManager(db, ledger, orders, payments, notifier),
        queries=OrderQueries(db, orders),
        sweeper=OrphanReservationSweeper(db, ledger, orders),
    )
