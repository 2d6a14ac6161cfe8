"""Persistence for registered users' carts."""

from typing import List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db import Database
from ..errors import ValidationFailed
from .models import CartItemModel, CartModel


class CartRepository:
    """Cart port backed by ``carts`` / ``cart_items``."""

    def __init__(self, db: Database):
        self.db = db

    def get_items(self, user_id: int) -> List[Tuple[int, int]]:
        """Return ``(product_id, quantity)`` pairs in the order they were added."""
        with self.db.session() as s:
            rows = s.execute(
                select(CartItemModel.product_id, CartItemModel.quantity)
                .join(CartModel, CartModel.id == CartItemModel.cart_id)
                .where(CartModel.user_id == user_id)
                .order_by(CartItemModel.id)
            ).all()
        return [(r.product_id, r.quantity) for r in rows]

    def add_item(self, user_id: int, product_id: int, quantity: int) -> None:
        """Add ``quantity`` units; an existing line for the product grows."""
        if quantity <= 0:
            raise ValidationFailed.for_field("quantity", "quantity must be greater than 0")
        with self.db.transaction() as s:
            cart = s.execute(select(CartModel).where(CartModel.user_id == user_id)).scalar_one_or_none()
            if cart is None:
                cart = CartModel(user_id=user_id)
                s.add(cart)
                s.flush()
            item = s.execute(
                select(CartItemModel).where(
                    CartItemModel.cart_id == cart.id, CartItemModel.product_id == product_id
                )
            ).scalar_one_or_none()
            if item is None:
                s.add(CartItemModel(cart_id=cart.id, product_id=product_id, quantity=quantity))
            else:
                item.quantity += quantity

    def clear(self, user_id: int, session: Optional[Session] = None) -> None:
        with self.db.transaction(session) as s:
            cart_id = s.scalar(select(CartModel.id).where(CartModel.user_id == user_id))
            if cart_id is not None:
                s.execute(delete(CartItemModel).where(CartItemModel.cart_id == cart_id))
