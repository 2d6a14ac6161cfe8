"""Cart snapshot builder.

Turns a registered user's cart or a guest's item list into priced line
snapshots using the current catalog. Both entry points share one path, so
guest and registered checkouts validate products identically. Read-only.
"""

from typing import Iterable, List, Tuple

from ..errors import EmptyCart, ProductInactive, ProductNotFound, ValidationFailed
from ..orders.domain import CartPort, CatalogPort, LineSnapshot, money


class CartSnapshotBuilder:
    def __init__(self, catalog: CatalogPort, carts: CartPort):
        self.catalog = catalog
        self.carts = carts

    def from_cart(self, user_id: int) -> List[LineSnapshot]:
        return self._build(self.carts.get_items(user_id))

    def from_items(self, items: Iterable) -> List[LineSnapshot]:
        """Build snapshots from ``(product_id, quantity)`` pairs.

        Duplicate product ids are merged, keeping the first-seen order.
        """
        return self._build(items)

    def _build(self, items: Iterable) -> List[LineSnapshot]:
        merged: dict[int, int] = {}
        for item in items:
            pid, qty = _pair(item)
            if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
                raise ValidationFailed.for_field("quantity", f"quantity for product {pid} must be greater than 0")
            merged[pid] = merged.get(pid, 0) + qty
        if not merged:
            raise EmptyCart()

        products = self.catalog.get_products(merged.keys())
        missing = [pid for pid in merged if pid not in products]
        if missing:
            raise ProductNotFound(missing)

        lines = []
        for pid, qty in merged.items():
            p = products[pid]
            if not p.is_active:
                raise ProductInactive(p.id, p.name)
            lines.append(
                LineSnapshot(product_id=p.id, product_name=p.name, sku=p.sku, unit_price=money(p.price), quantity=qty)
            )
        return lines


def _pair(item) -> Tuple[int, int]:
    if isinstance(item, tuple):
        return item[0], item[1]
    return item.product_id, item.quantity
