"""Shortcuts for putting orders into a given state in tests."""

from storefront.db import utcnow
from storefront.orders.domain import Customer, LineSnapshot, Order, ShippingAddress

ADDRESS = ShippingAddress("1 Main St", "Springfield", "IL", "62701", "US")


def place_confirmed(services, make_product, make_address, carts, user, product_id=None, quantity=1, method="CREDIT_CARD"):
    pid = product_id or make_product()
    carts.add_item(user.user_id, pid, quantity)
    return services.placement.place_order(user, make_address(user_id=user.user_id), method)


def place_pending(services, user, product_id, quantity):
    """A PENDING order holding a RESERVED token, as a placement interrupted before payment leaves it."""
    return place_pending_lines(services, user, [(product_id, quantity)])


def place_pending_lines(services, user, items):
    products = services.catalog.get_products([pid for pid, _ in items])
    lines = [LineSnapshot(pid, products[pid].name, products[pid].sku, products[pid].price, qty) for pid, qty in items]
    order = Order.new(Customer.registered(user), lines, ADDRESS, currency="USD", at=utcnow())
    token = services.ledger.reserve(items, order_ref=str(order.id))
    order.reservation_id = token.id
    services.orders.create(order)
    return services.orders.get(order.id)

ALICE = {"X-User-Id": "1", "X-User-Email": "alice@example.com"}
BOB = {"X-User-Id": "2", "X-User-Email": "bob@example.com"}
ADMIN = {"X-User-Id": "99", "X-User-Email": "admin@example.com", "X-User-Roles": "customer,admin"}
