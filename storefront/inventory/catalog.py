"""Read-only catalog lookups used when pricing a checkout."""

from typing import Dict, Iterable

from sqlalchemy import select

from ..db import Database
from .domain import ProductInfo
from .models import Product


class SqlCatalog:
    """Catalog port backed by the ``products`` table."""

    def __init__(self, db: Database):
        self.db = db

    def get_products(self, product_ids: Iterable[int]) -> Dict[int, ProductInfo]:
        """Return current name/sku/price/active flag/stock for the given ids.

        Unknown ids are simply absent from the result.
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        with self.db.session() as s:
            rows = s.execute(select(Product).where(Product.id.in_(ids))).scalars().all()
            return {
                p.id: ProductInfo(
                    id=p.id,
                    name=p.name,
                    sku=p.sku,
                    price=p.price,
                    stock_quantity=p.stock_quantity,
                    is_active=p.is_active,
                )
                for p in rows
            }
