"""Repository layer for persisting orders.

Keeps the domain decoupled from SQLAlchemy: callers pass and receive
``Order`` dataclasses. Items and payments are looked up by order id rather
than through ORM relationships.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence
import uuid

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db import Database, utcnow
from ..errors import OrderNotFound
from ..payments.models import PaymentModel
from ..payments.repository import to_record
from .domain import Customer, GuestInfo, Order, OrderItem, OrderStatus, ShippingAddress
from .models import OrderItemModel, OrderModel


class OrderRepository:
    """Repository that persists ``Order`` domain objects."""

    def __init__(self, db: Database):
        self.db = db

    # ---- writes ----

    def create(self, order: Order, session: Optional[Session] = None) -> uuid.UUID:
        """Insert the order header and its line snapshots.

        Returns:
            uuid.UUID: The order id.
        """
        c = order.customer
        a = order.shipping_address
        with self.db.transaction(session) as s:
            s.add(
                OrderModel(
                    id=order.id,
                    user_id=c.user_id,
                    customer_email=None if c.is_guest else c.email,
                    guest_email=c.guest.email if c.guest else None,
                    guest_first_name=c.guest.first_name if c.guest else None,
                    guest_last_name=c.guest.last_name if c.guest else None,
                    status=order.status.value,
                    total_amount=order.total_amount,
                    currency=order.currency,
                    shipping_street=a.street,
                    shipping_city=a.city,
                    shipping_state=a.state,
                    shipping_postal_code=a.postal_code,
                    shipping_country=a.country,
                    order_date=order.order_date or utcnow(),
                    updated_at=order.updated_at or order.order_date or utcnow(),
                    notes=order.notes,
                    reservation_id=order.reservation_id,
                )
            )
            s.flush()
            s.add_all(
                [
                    OrderItemModel(
                        order_id=order.id,
                        position=pos,
                        product_id=i.product_id,
                        product_name=i.product_name,
                        sku=i.sku,
                        unit_price=i.unit_price,
                        quantity=i.quantity,
                        subtotal=i.subtotal,
                    )
                    for pos, i in enumerate(order.items)
                ]
            )
        return order.id

    def transition(
        self,
        order_id: uuid.UUID,
        expected: OrderStatus,
        new: OrderStatus,
        at: datetime,
        session: Optional[Session] = None,
        **values,
    ) -> bool:
        """Conditionally move ``expected -> new``.

        Returns:
            bool: False when the order was not in ``expected`` (lost race or
            unknown order); nothing is written in that case.
        """
        with self.db.transaction(session) as s:
            res = s.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id, OrderModel.status == expected.value)
                .values(status=new.value, updated_at=at, **values)
                .execution_options(synchronize_session=False)
            )
            return res.rowcount == 1

    def append_note(self, order_id: uuid.UUID, note: str, session: Optional[Session] = None) -> None:
        with self.db.transaction(session) as s:
            current = s.scalar(select(OrderModel.notes).where(OrderModel.id == order_id))
            merged = f"{current}\n{note}" if current else note
            s.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id)
                .values(notes=merged)
                .execution_options(synchronize_session=False)
            )

    # ---- reads ----

    def status_of(self, order_id: uuid.UUID, session: Optional[Session] = None) -> Optional[OrderStatus]:
        with self.db.transaction(session) as s:
            value = s.scalar(select(OrderModel.status).where(OrderModel.id == order_id))
        return OrderStatus(value) if value else None

    def find(self, order_id: uuid.UUID, session: Optional[Session] = None) -> Optional[Order]:
        with self.db.transaction(session) as s:
            row = s.get(OrderModel, order_id, populate_existing=True)
            if row is None:
                return None
            return self.load_many(s, [row])[0]

    def get(self, order_id: uuid.UUID, session: Optional[Session] = None) -> Order:
        order = self.find(order_id, session)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def find_by_reservation(self, reservation_id: uuid.UUID, session: Optional[Session] = None) -> Optional[Order]:
        with self.db.transaction(session) as s:
            row = s.execute(
                select(OrderModel).where(OrderModel.reservation_id == reservation_id)
            ).scalar_one_or_none()
            return self.load_many(s, [row])[0] if row is not None else None

    def load_many(self, s: Session, rows: Sequence[OrderModel]) -> List[Order]:
        """Map order rows to domain objects with items and payment attached."""
        if not rows:
            return []
        ids = [r.id for r in rows]
        items: Dict[uuid.UUID, List[OrderItem]] = {oid: [] for oid in ids}
        for it in s.execute(
            select(OrderItemModel)
            .where(OrderItemModel.order_id.in_(ids))
            .order_by(OrderItemModel.order_id, OrderItemModel.position)
        ).scalars():
            items[it.order_id].append(
                OrderItem(
                    product_id=it.product_id,
                    product_name=it.product_name,
                    sku=it.sku,
                    unit_price=it.unit_price,
                    quantity=it.quantity,
                    subtotal=it.subtotal,
                )
            )
        payments = {
            p.order_id: to_record(p)
            for p in s.execute(select(PaymentModel).where(PaymentModel.order_id.in_(ids))).scalars()
        }
        return [to_domain(r, items[r.id], payments.get(r.id)) for r in rows]


def to_domain(row: OrderModel, items: List[OrderItem], payment=None) -> Order:
    if row.guest_email is not None and row.user_id is None:
        customer = Customer(guest=GuestInfo(row.guest_email, row.guest_first_name or "", row.guest_last_name or ""))
    else:
        customer = Customer(user_id=row.user_id, email=row.customer_email)
    return Order(
        id=row.id,
        customer=customer,
        items=items,
        shipping_address=ShippingAddress(
            street=row.shipping_street,
            city=row.shipping_city,
            state=row.shipping_state,
            postal_code=row.shipping_postal_code,
            country=row.shipping_country,
        ),
        total_amount=row.total_amount,
        currency=row.currency,
        status=OrderStatus(row.status),
        order_date=row.order_date,
        shipped_date=row.shipped_date,
        delivered_date=row.delivered_date,
        notes=row.notes,
        reservation_id=row.reservation_id,
        updated_at=row.updated_at,
        payment=payment,
    )
