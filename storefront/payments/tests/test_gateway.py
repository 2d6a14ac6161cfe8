import json
from datetime import datetime
from decimal import Decimal

import pytest

from storefront.errors import ValidationFailed
from storefront.payments.domain import PaymentMethod, PaymentOutcome, PaymentRecord, PaymentStatus
from storefront.payments.gateway import SimulatedPaymentGateway


def test_credit_card_settles_through_stripe():
    out = SimulatedPaymentGateway().process_payment(Decimal("12.34"), PaymentMethod.CREDIT_CARD, "o-1")
    assert out.status == PaymentStatus.SUCCESS
    assert out.gateway == "stripe"
    assert out.transaction_id.startswith("pi_")
    assert out.gateway_payment_id.startswith("stripe_")
    assert json.loads(out.gateway_response)["amount"] == 1234


def test_paypal_settles_through_paypal():
    out = SimulatedPaymentGateway().process_payment(Decimal("5.00"), PaymentMethod.PAYPAL, "o-2")
    assert out.status == PaymentStatus.SUCCESS
    assert out.gateway == "paypal"
    assert out.transaction_id.startswith("PAY-")


def test_cash_on_delivery_stays_pending():
    out = SimulatedPaymentGateway().process_payment(Decimal("5.00"), PaymentMethod.CASH_ON_DELIVERY, "o-3")
    assert out.status == PaymentStatus.PENDING
    assert out.proceeds
    assert out.gateway == "manual"
    assert out.transaction_id.startswith("COD-")


def test_declines_by_reference_and_method():
    gw = SimulatedPaymentGateway(decline_refs=["bad"], decline_methods=[PaymentMethod.PAYPAL])
    by_ref = gw.process_payment(Decimal("1.00"), PaymentMethod.CREDIT_CARD, "bad")
    by_method = gw.process_payment(Decimal("1.00"), PaymentMethod.PAYPAL, "fine")
    assert by_ref.status == PaymentStatus.FAILED and by_ref.failure_reason == "card_declined"
    assert not by_method.proceeds
    assert gw.charged_refs() == ["bad", "fine"]


def test_refund():
    gw = SimulatedPaymentGateway()
    out = gw.refund("pi_123", Decimal("3.00"))
    assert out.status == PaymentStatus.REFUNDED
    assert out.transaction_id.startswith("REFUND-")
    assert gw.refunds == [("pi_123", Decimal("3.00"))]


def test_payment_method_parse():
    assert PaymentMethod.parse(" paypal ") == PaymentMethod.PAYPAL
    assert PaymentMethod.CASH_ON_DELIVERY.gateway == "manual"
    with pytest.raises(ValidationFailed) as ei:
        PaymentMethod.parse("BITCOIN")
    assert ei.value.errors[0]["field"] == "payment_method"


def test_record_from_pending_outcome_has_no_processed_at():
    at = datetime(2024, 5, 1, 12, 0)
    pending = PaymentOutcome(status=PaymentStatus.PENDING, transaction_id="COD-1", gateway="manual")
    rec = PaymentRecord.from_outcome(pending, PaymentMethod.CASH_ON_DELIVERY, Decimal("9.99"), "USD", at)
    assert rec.processed_at is None
    assert rec.created_at == at
    assert not rec.is_successful

    failed = PaymentOutcome.failed("card_declined")
    rec = PaymentRecord.from_outcome(failed, PaymentMethod.CREDIT_CARD, Decimal("9.99"), "USD", at)
    assert rec.gateway == "stripe"
    assert rec.processed_at == at
