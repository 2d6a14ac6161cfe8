from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import mapped_column

from ..db import Base, utcnow


class PaymentModel(Base):
    """Settlement attempt of an order (one row per order)."""

    __tablename__ = "payments"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id = mapped_column(Uuid, ForeignKey("orders.id"), unique=True, nullable=False)
    method = mapped_column(String(32), nullable=False)
    gateway = mapped_column(String(32), nullable=False)
    transaction_id = mapped_column(String(64), nullable=True, index=True)
    gateway_payment_id = mapped_column(String(64), nullable=True)
    amount = mapped_column(Numeric(12, 2), nullable=False)
    currency = mapped_column(String(3), nullable=False)
    status = mapped_column(String(16), nullable=False)
    gateway_response = mapped_column(Text, nullable=True)
    failure_reason = mapped_column(String(255), nullable=True)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
    processed_at = mapped_column(DateTime, nullable=True)
    refund_transaction_id = mapped_column(String(64), nullable=True)
