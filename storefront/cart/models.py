from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import mapped_column

from ..db import Base, utcnow


class CartModel(Base):
    """One persisted cart per registered user."""

    __tablename__ = "carts"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id = mapped_column(Integer, unique=True, nullable=False)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    cart_id = mapped_column(Integer, ForeignKey("carts.id"), nullable=False, index=True)
    product_id = mapped_column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = mapped_column(Integer, nullable=False)
    added_at = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),)
