import uuid

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import mapped_column

from ..db import Base, utcnow


class OrderModel(Base):
    """Order header.

    Exactly one customer mode is populated: ``user_id`` + ``customer_email``
    for registered users, or the ``guest_*`` columns for guests.
    """

    __tablename__ = "orders"

    # UUID PK exposed in the API
    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id = mapped_column(Integer, nullable=True, index=True)
    customer_email = mapped_column(String(255), nullable=True)
    guest_email = mapped_column(String(255), nullable=True, index=True)
    guest_first_name = mapped_column(String(100), nullable=True)
    guest_last_name = mapped_column(String(100), nullable=True)

    status = mapped_column(String(16), nullable=False, default="PENDING", index=True)
    total_amount = mapped_column(Numeric(12, 2), nullable=False)
    currency = mapped_column(String(3), nullable=False, default="USD")

    shipping_street = mapped_column(String(255), nullable=False)
    shipping_city = mapped_column(String(100), nullable=False)
    shipping_state = mapped_column(String(100), nullable=False)
    shipping_postal_code = mapped_column(String(20), nullable=False)
    shipping_country = mapped_column(String(100), nullable=False)

    order_date = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    shipped_date = mapped_column(DateTime, nullable=True)
    delivered_date = mapped_column(DateTime, nullable=True)
    updated_at = mapped_column(DateTime, nullable=False, default=utcnow)
    notes = mapped_column(Text, nullable=True)
    reservation_id = mapped_column(Uuid, nullable=True, index=True)


class OrderItemModel(Base):
    """Immutable line snapshot; ``position`` keeps checkout order."""

    __tablename__ = "order_items"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id = mapped_column(Uuid, ForeignKey("orders.id"), nullable=False, index=True)
    position = mapped_column(Integer, nullable=False)
    product_id = mapped_column(Integer, nullable=False)
    product_name = mapped_column(String(200), nullable=False)
    sku = mapped_column(String(64), nullable=False)
    unit_price = mapped_column(Numeric(12, 2), nullable=False)
    quantity = mapped_column(Integer, nullable=False)
    subtotal = mapped_column(Numeric(12, 2), nullable=False)


class IdempotencyKey(Base):
    """Stored response of an order-creation request keyed by ``Idempotency-Key``."""

    __tablename__ = "idempotency_keys"

    key = mapped_column(String(128), primary_key=True)
    request_hash = mapped_column(String(64), nullable=False)
    response_status = mapped_column(Integer, nullable=False, default=0)
    response_body = mapped_column(JSON, nullable=False, default=dict)
    order_id = mapped_column(Uuid, nullable=True)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
