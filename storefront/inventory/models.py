"""SQLAlchemy models for products and stock reservations.

``products`` holds the catalog fields read at checkout together with the
stock counter. ``stock_reservations`` and ``stock_reservation_lines``
record every reservation token so a crashed placement can be recovered by
releasing expired tokens.
"""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import mapped_column

from ..db import Base, utcnow


class Product(Base):
    """Catalog entry and stock counter.

    Attributes:
        id: Surrogate product id.
        name: Display name copied into order line snapshots.
        sku: Stock-keeping unit (unique).
        price: Current unit price, two decimals.
        stock_quantity: Units available; never negative.
        is_active: Whether the product can be purchased.
    """

    __tablename__ = "products"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    name = mapped_column(String(200), nullable=False)
    sku = mapped_column(String(64), unique=True, nullable=False)
    price = mapped_column(Numeric(12, 2), nullable=False)
    stock_quantity = mapped_column(Integer, nullable=False, default=0)
    is_active = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )


class StockReservation(Base):
    """A reservation token; its lines say how much stock it holds."""

    __tablename__ = "stock_reservations"

    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    status = mapped_column(String(16), nullable=False, default="RESERVED", index=True)
    order_ref = mapped_column(String(64), nullable=True, index=True)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at = mapped_column(DateTime, nullable=False, index=True)
    committed_at = mapped_column(DateTime, nullable=True)
    released_at = mapped_column(DateTime, nullable=True)


class StockReservationLine(Base):
    __tablename__ = "stock_reservation_lines"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    reservation_id = mapped_column(
        Uuid, ForeignKey("stock_reservations.id"), nullable=False, index=True
    )
    product_id = mapped_column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = mapped_column(Integer, nullable=False)
