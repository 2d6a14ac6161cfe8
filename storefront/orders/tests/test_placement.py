from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
import uuid

import pytest
from sqlalchemy import func, select

from storefront.errors import (
    AddressIncomplete,
    AddressNotFound,
    AddressNotOwned,
    EmptyCart,
    InsufficientStock,
    PaymentFailed,
    PlacementTimeout,
    ReservationExpired,
    ValidationFailed,
)
from storefront.inventory.domain import ReservationStatus
from storefront.orders.domain import AuthenticatedUser, OrderStatus, ShippingAddress
from storefront.orders.models import OrderModel
from storefront.orders.placement import OrderPlacementService
from storefront.payments.domain import PaymentMethod, PaymentStatus
from storefront.payments.gateway import SimulatedPaymentGateway
from storefront.payments.service import GATEWAY_TIMEOUT

GUEST_ADDRESS = ShippingAddress("5 Elm St", "Portland", "OR", "97201", "US")


def _order_count(db):
    with db.session() as s:
        return s.scalar(select(func.count()).select_from(OrderModel))


@pytest.fixture
def checkout(services, make_product, make_address, carts, user):
    """A user with two products in the cart and a saved address."""
    mug = make_product(name="Mug", price="7.50", stock=5)
    lamp = make_product(name="Lamp", price="19.99", stock=2)
    carts.add_item(user.user_id, mug, 2)
    carts.add_item(user.user_id, lamp, 1)
    address_id = make_address(user_id=user.user_id)
    return {"mug": mug, "lamp": lamp, "address_id": address_id}


def test_successful_checkout_confirms_and_clears_cart(services, checkout, carts, user, gateway, notifications):
    order = services.placement.place_order(user, checkout["address_id"], "credit_card", notes="leave at door")

    assert order.status == OrderStatus.CONFIRMED
    assert order.total_amount == Decimal("34.99")
    assert [(i.product_name, i.quantity, i.subtotal) for i in order.items] == [
        ("Mug", 2, Decimal("15.00")),
        ("Lamp", 1, Decimal("19.99")),
    ]
    assert order.shipping_address.city == "Springfield"
    assert order.customer.user_id == user.user_id
    assert order.payment.status == PaymentStatus.SUCCESS
    assert order.payment.transaction_id.startswith("pi_")
    assert services.ledger.stock_of(checkout["mug"]) == 3
    assert services.ledger.stock_of(checkout["lamp"]) == 1
    assert services.ledger.get_reservation(order.reservation_id).status == ReservationStatus.COMMITTED
    assert carts.get_items(user.user_id) == []
    assert gateway.charged_refs() == [str(order.id)]

    services.notifier.shutdown(wait=True)
    assert notifications.sent == [("confirmation", str(order.id))]


def test_insufficient_stock_writes_nothing(services, checkout, carts, user, gateway):
    carts.add_item(user.user_id, checkout["lamp"], 5)

    with pytest.raises(InsufficientStock) as ei:
        services.placement.place_order(user, checkout["address_id"], "PAYPAL")

    assert [s.product_id for s in ei.value.shortages] == [checkout["lamp"]]
    assert _order_count(services.db) == 0
    assert services.ledger.stock_of(checkout["mug"]) == 5
    assert services.ledger.stock_of(checkout["lamp"]) == 2
    assert len(carts.get_items(user.user_id)) == 2
    assert gateway.charges == []


def test_declined_payment_releases_stock_and_cancels(services, checkout, carts, user):
    services.payments.gateway.decline_methods.add(PaymentMethod.CREDIT_CARD)

    with pytest.raises(PaymentFailed) as ei:
        services.placement.place_order(user, checkout["address_id"], "CREDIT_CARD")

    assert ei.value.reason == "card_declined"
    assert services.ledger.stock_of(checkout["mug"]) == 5
    assert services.ledger.stock_of(checkout["lamp"]) == 2
    assert len(carts.get_items(user.user_id)) == 2

    page = services.queries.user_orders(user.user_id)
    assert page.total == 1
    cancelled = page.items[0]
    assert cancelled.status == OrderStatus.CANCELLED
    assert "Cancelled: payment failed: card_declined" in cancelled.notes
    assert cancelled.payment.status == PaymentStatus.FAILED
    assert services.ledger.get_reservation(cancelled.reservation_id).status == ReservationStatus.RELEASED


def test_guest_checkout_with_cash_on_delivery(services, make_product, gateway):
    pid = make_product(price="12.00", stock=3)

    order = services.placement.place_guest_order(
        email="guest@example.com",
        first_name="Grace",
        last_name="Hopper",
        shipping_address=GUEST_ADDRESS,
        payment_method="CASH_ON_DELIVERY",
        items=[(pid, 1), (pid, 1)],
    )

    assert order.status == OrderStatus.CONFIRMED
    assert order.customer.is_guest and order.customer.user_id is None
    assert order.customer.guest.email == "guest@example.com"
    assert order.total_amount == Decimal("24.00")
    assert order.payment.status == PaymentStatus.PENDING
    assert order.payment.processed_at is None
    assert services.ledger.stock_of(pid) == 1


def test_guest_incomplete_address_is_rejected_before_any_side_effect(services, make_product, gateway):
    pid = make_product(stock=3)
    with pytest.raises(AddressIncomplete) as ei:
        services.placement.place_guest_order(
            "guest@example.com",
            "Grace",
            "Hopper",
            ShippingAddress("5 Elm St", "", "OR", "", "US"),
            "PAYPAL",
            [(pid, 1)],
        )
    assert ei.value.missing == ["city", "postal_code"]
    assert services.ledger.stock_of(pid) == 3
    assert gateway.charges == []


def test_guest_contact_details_are_required(services, make_product):
    pid = make_product()
    with pytest.raises(ValidationFailed) as ei:
        services.placement.place_guest_order(" ", "Grace", "", GUEST_ADDRESS, "PAYPAL", [(pid, 1)])
    assert {e["field"] for e in ei.value.errors} == {"email", "last_name"}


def test_empty_cart(services, make_address, user):
    with pytest.raises(EmptyCart):
        services.placement.place_order(user, make_address(user_id=user.user_id), "PAYPAL")


def test_address_must_exist_and_belong_to_the_user(services, checkout, make_address, user):
    foreign = make_address(user_id=77)
    with pytest.raises(AddressNotOwned):
        services.placement.place_order(user, foreign, "PAYPAL")
    with pytest.raises(AddressNotFound):
        services.placement.place_order(user, 424242, "PAYPAL")
    incomplete = make_address(user_id=user.user_id, country="")
    with pytest.raises(AddressIncomplete):
        services.placement.place_order(user, incomplete, "PAYPAL")
    assert services.ledger.stock_of(checkout["mug"]) == 5


def test_unknown_payment_method(services, checkout, user):
    with pytest.raises(ValidationFailed):
        services.placement.place_order(user, checkout["address_id"], "BARTER")


def test_payment_timeout_fails_the_order_and_refunds_the_late_charge(services, checkout, user, settings, eventually):
    settings.PAYMENT_TIMEOUT_SECS = 0.05
    gateway = services.payments.gateway
    gateway.delay = 0.3

    with pytest.raises(PaymentFailed) as ei:
        services.placement.place_order(user, checkout["address_id"], "CREDIT_CARD")

    assert ei.value.reason == GATEWAY_TIMEOUT
    assert services.ledger.stock_of(checkout["mug"]) == 5
    assert services.queries.user_orders(user.user_id).items[0].status == OrderStatus.CANCELLED
    assert eventually(lambda: len(gateway.refunds) == 1)
    assert eventually(lambda: services.queries.user_orders(user.user_id).items[0].payment.refund_transaction_id is not None)
    payment = services.queries.user_orders(user.user_id).items[0].payment
    assert payment.status == PaymentStatus.FAILED
    assert payment.transaction_id == gateway.refunds[0][0]


def test_placement_deadline_passed_before_payment(services, checkout, user, gateway):
    ticks = iter([0.0, 1000.0])
    placement = OrderPlacementService(
        db=services.db,
        ledger=services.ledger,
        snapshots=services.placement.snapshots,
        addresses=services.addresses,
        carts=services.carts,
        orders=services.orders,
        payments=services.payments,
        payment_records=services.payment_records,
        notifier=services.notifier,
        monotonic=lambda: next(ticks),
    )

    with pytest.raises(PlacementTimeout):
        placement.place_order(user, checkout["address_id"], "PAYPAL")

    assert gateway.charges == []
    assert services.ledger.stock_of(checkout["lamp"]) == 2
    assert services.queries.user_orders(user.user_id).items[0].status == OrderStatus.CANCELLED


class SweepingGateway(SimulatedPaymentGateway):
    """Releases the order's reservation while the charge is in flight."""

    def __init__(self, services_ref):
        super().__init__()
        self.services_ref = services_ref

    def process_payment(self, amount, method, order_ref):
        svc = self.services_ref[0]
        order = svc.orders.get(uuid.UUID(order_ref))
        svc.ledger.release(order.reservation_id)
        return super().process_payment(amount, method, order_ref)


def test_reservation_swept_during_payment_unwinds_and_refunds(db, make_product, make_address, carts, user):
    from storefront.orders.providers import build_services

    ref = []
    gateway = SweepingGateway(ref)
    svc = build_services(db=db, gateway=gateway)
    ref.append(svc)
    try:
        pid = make_product(stock=2)
        carts.add_item(user.user_id, pid, 1)
        address_id = make_address(user_id=user.user_id)

        with pytest.raises(ReservationExpired):
            svc.placement.place_order(user, address_id, "CREDIT_CARD")

        assert len(gateway.refunds) == 1
        assert svc.ledger.stock_of(pid) == 2
        order = svc.queries.user_orders(user.user_id).items[0]
        assert order.status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.REFUNDED
        assert order.payment.refund_transaction_id is not None
        assert order.payment.transaction_id == gateway.refunds[0][0]
        assert carts.get_items(user.user_id) == [(pid, 1)]
    finally:
        svc.shutdown()


def test_two_buyers_racing_for_the_last_unit(services, make_product, make_address, carts):
    pid = make_product(stock=1)
    buyers = [AuthenticatedUser(10, "a@example.com"), AuthenticatedUser(11, "b@example.com")]
    addresses = {}
    for b in buyers:
        carts.add_item(b.user_id, pid, 1)
        addresses[b.user_id] = make_address(user_id=b.user_id)

    def buy(b):
        try:
            return services.placement.place_order(b, addresses[b.user_id], "PAYPAL")
        except InsufficientStock as e:
            return e

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(buy, buyers))

    confirmed = [r for r in results if not isinstance(r, Exception)]
    assert len(confirmed) == 1
    assert confirmed[0].status == OrderStatus.CONFIRMED
    assert sum(isinstance(r, InsufficientStock) for r in results) == 1
    assert services.ledger.stock_of(pid) == 0
    assert _order_count(services.db) == 1


class FailingNotifications:
    def send_order_confirmation(self, order):
        raise RuntimeError("smtp down")

    def send_order_status_update(self, order):
        raise RuntimeError("smtp down")


def test_notification_failure_never_fails_the_order(db, make_product, make_address, carts, user):
    from storefront.orders.providers import build_services

    svc = build_services(db=db, gateway=SimulatedPaymentGateway(), notifications=FailingNotifications())
    try:
        pid = make_product()
        carts.add_item(user.user_id, pid, 1)
        order = svc.placement.place_order(user, make_address(user_id=user.user_id), "PAYPAL")
        svc.notifier.shutdown(wait=True)
        assert svc.orders.get(order.id).status == OrderStatus.CONFIRMED
    finally:
        svc.shutdown()
