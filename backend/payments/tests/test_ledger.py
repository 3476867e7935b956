from decimal import Decimal

import pytest

from core.exceptions import BadRequest, InvalidState
from payments.ledger import booking_payment_summary, record_payment, refund_payment
from payments.models import Payment

pytestmark = pytest.mark.django_db


def test_record_payment_creates_completed_row(booking_factory, renter_user, now):
    booking = booking_factory()

    payment = record_payment(
        user=renter_user,
        booking=booking,
        type=Payment.Type.ADVANCE,
        amount=Decimal("1290.004"),
        reference_id="  pay_ledger_1 ",
        now=now,
    )

    assert payment.status == Payment.Status.COMPLETED
    assert payment.amount == Decimal("1290.00")
    assert payment.net_amount == Decimal("1290.00")
    assert payment.external_reference_id == "pay_ledger_1"
    assert payment.completed_at == now
    assert payment.currency == "inr"


def test_record_payment_requires_reference(booking_factory, renter_user):
    booking = booking_factory()

    with pytest.raises(BadRequest):
        record_payment(
            user=renter_user,
            booking=booking,
            type=Payment.Type.ADVANCE,
            amount=Decimal("10.00"),
            reference_id="   ",
        )
    assert not Payment.objects.exists()


def test_partial_refunds_accumulate_until_fully_refunded(advance_booking):
    payment = advance_booking.advance_payment

    payment = refund_payment(payment.pk, amount=Decimal("290.00"), reason="goodwill")
    assert payment.status == Payment.Status.COMPLETED
    assert payment.refund_amount == Decimal("290.00")
    assert payment.net_amount == Decimal("1000.00")
    assert payment.refund_reason == "goodwill"

    payment = refund_payment(payment.pk, amount=Decimal("1000.00"), reference_id="rfnd_1")
    assert payment.status == Payment.Status.REFUNDED
    assert payment.refund_amount == Decimal("1290.00")
    assert payment.net_amount == Decimal("0.00")
    assert payment.refund_reason == "goodwill"
    assert payment.refund_reference_id == "rfnd_1"


def test_refund_cannot_exceed_refundable_amount(advance_booking):
    payment = advance_booking.advance_payment

    with pytest.raises(BadRequest):
        refund_payment(payment.pk, amount=Decimal("1290.01"))

    payment.refresh_from_db()
    assert payment.refund_amount == Decimal("0.00")


def test_refund_amount_must_be_positive(advance_booking):
    with pytest.raises(BadRequest):
        refund_payment(advance_booking.advance_payment_id, amount=Decimal("0"))


def test_refund_rejected_once_payment_is_refunded(advance_booking):
    payment_id = advance_booking.advance_payment_id
    refund_payment(payment_id, amount=Decimal("1290.00"))

    with pytest.raises(InvalidState):
        refund_payment(payment_id, amount=Decimal("1.00"))


def test_booking_payment_summary_tracks_outstanding_balance(advance_booking):
    summary = booking_payment_summary(advance_booking)

    assert summary == {
        "booking": str(advance_booking.pk),
        "total_paid": "1290.00",
        "total_refunded": "0.00",
        "net_paid": "1290.00",
        "total_due": "4300.00",
        "outstanding": "3010.00",
    }


def test_booking_payment_summary_after_final_payment(confirmed_booking):
    refund_payment(confirmed_booking.advance_payment_id, amount=Decimal("100.00"))

    summary = booking_payment_summary(confirmed_booking)

    assert summary["total_paid"] == "4300.00"
    assert summary["total_refunded"] == "100.00"
    assert summary["net_paid"] == "4200.00"
    assert summary["outstanding"] == "0.00"
