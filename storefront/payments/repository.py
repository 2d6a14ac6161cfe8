"""Persistence helpers for payment records."""

from typing import Optional
import uuid

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db import Database
from .domain import PaymentMethod, PaymentRecord, PaymentStatus
from .models import PaymentModel


def to_record(row: PaymentModel) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        method=PaymentMethod(row.method),
        amount=row.amount,
        currency=row.currency,
        status=PaymentStatus(row.status),
        gateway=row.gateway,
        transaction_id=row.transaction_id,
        gateway_payment_id=row.gateway_payment_id,
        gateway_response=row.gateway_response,
        failure_reason=row.failure_reason,
        created_at=row.created_at,
        processed_at=row.processed_at,
        refund_transaction_id=row.refund_transaction_id,
    )


class PaymentRepository:
    def __init__(self, db: Database):
        self.db = db

    def save(self, order_id: uuid.UUID, record: PaymentRecord, session: Optional[Session] = None) -> int:
        """Insert the payment row of ``order_id`` and return its id."""
        with self.db.transaction(session) as s:
            row = PaymentModel(
                order_id=order_id,
                method=record.method.value,
                gateway=record.gateway,
                transaction_id=record.transaction_id,
                gateway_payment_id=record.gateway_payment_id,
                amount=record.amount,
                currency=record.currency,
                status=record.status.value,
                gateway_response=record.gateway_response,
                failure_reason=record.failure_reason,
                created_at=record.created_at,
                processed_at=record.processed_at,
                refund_transaction_id=record.refund_transaction_id,
            )
            s.add(row)
            s.flush()
            record.id = row.id
            return row.id

    def get_for_order(self, order_id: uuid.UUID, session: Optional[Session] = None) -> Optional[PaymentRecord]:
        with self.db.transaction(session) as s:
            row = s.execute(select(PaymentModel).where(PaymentModel.order_id == order_id)).scalar_one_or_none()
            return to_record(row) if row else None

    def mark_refunded(
        self,
        order_id: uuid.UUID,
        refund_transaction_id: Optional[str],
        at,
        session: Optional[Session] = None,
    ) -> bool:
        """SUCCESS -> REFUNDED; False when the payment was not SUCCESS."""
        with self.db.transaction(session) as s:
            res = s.execute(
                update(PaymentModel)
                .where(PaymentModel.order_id == order_id, PaymentModel.status == PaymentStatus.SUCCESS.value)
                .values(
                    status=PaymentStatus.REFUNDED.value,
                    refund_transaction_id=refund_transaction_id,
                    processed_at=at,
                )
                .execution_options(synchronize_session=False)
            )
            return res.rowcount == 1

    def attach_late_refund(
        self,
        order_id: uuid.UUID,
        transaction_id: str,
        refund_transaction_id: Optional[str],
        at,
        session: Optional[Session] = None,
    ) -> bool:
        """Record the refund of a charge that settled after its FAILED row was written."""
        with self.db.transaction(session) as s:
            res = s.execute(
                update(PaymentModel)
                .where(PaymentModel.order_id == order_id, PaymentModel.status == PaymentStatus.FAILED.value)
                .values(
                    transaction_id=transaction_id,
                    refund_transaction_id=refund_transaction_id,
                    processed_at=at,
                )
                .execution_options(synchronize_session=False)
            )
            return res.rowcount == 1
