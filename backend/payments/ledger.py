from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from core.exceptions import BadRequest, InvalidState

from .models import Payment

logger = logging.getLogger(__name__)
User = get_user_model()
TWO_PLACES = Decimal("0.01")


def q2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def record_payment(
    *,
    user: User,
    booking,
    type: str,
    amount: Decimal,
    reference_id: str,
    method: str = Payment.Method.RAZORPAY,
    now: Optional[datetime] = None,
) -> Payment:
    """
    Create and return a completed Payment row.

    The gateway has already settled the charge out of band; only its reference
    is stored here.
    """
    reference = (reference_id or "").strip()
    if not reference:
        raise BadRequest("A payment reference is required.")
    amount = q2(amount)
    return Payment.objects.create(
        user=user,
        booking=booking,
        type=type,
        status=Payment.Status.COMPLETED,
        method=method or Payment.Method.RAZORPAY,
        amount=amount,
        net_amount=amount,
        currency=getattr(settings, "BOOKING_CURRENCY", "inr"),
        external_reference_id=reference,
        completed_at=now or timezone.now(),
    )


def refund_payment(
    payment_id: int,
    *,
    amount: Decimal,
    reason: str = "",
    reference_id: str = "",
    now: Optional[datetime] = None,
) -> Payment:
    """
    Record a (possibly partial) refund against a completed payment.

    Refunds accumulate on the payment row. The status flips to refunded only
    once the whole amount has been returned.
    """
    amount = q2(amount)
    if amount <= 0:
        raise BadRequest("Refund amount must be positive.")

    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment_id)
        if payment.status != Payment.Status.COMPLETED:
            raise InvalidState("Only completed payments can be refunded.")
        if amount > payment.refundable_amount:
            raise BadRequest(
                f"Refund exceeds the refundable amount of {payment.refundable_amount}."
            )

        payment.refund_amount = q2(payment.refund_amount + amount)
        payment.refund_reason = reason or payment.refund_reason
        payment.refund_reference_id = reference_id or payment.refund_reference_id
        payment.refunded_at = now or timezone.now()
        payment.net_amount = q2(payment.amount - payment.refund_amount)
        if payment.refund_amount >= payment.amount:
            payment.status = Payment.Status.REFUNDED
        payment.save(
            update_fields=[
                "refund_amount",
                "refund_reason",
                "refund_reference_id",
                "refunded_at",
                "net_amount",
                "status",
                "updated_at",
            ]
        )

    logger.info(
        "payments: refunded %s of payment %s (%s)",
        amount,
        payment.pk,
        payment.status,
        extra={"booking_id": payment.booking_id},
    )
    return payment


def booking_payment_summary(booking) -> dict[str, str]:
    """Total paid, refunded and net for a booking, as strings for JSON."""
    rows = Payment.objects.filter(
        booking=booking,
        status__in=[Payment.Status.COMPLETED, Payment.Status.REFUNDED],
    ).aggregate(paid=Sum("amount"), refunded=Sum("refund_amount"))
    paid = q2(rows["paid"] or Decimal("0"))
    refunded = q2(rows["refunded"] or Decimal("0"))
    due = q2(booking.total_price + booking.extension_price)
    return {
        "booking": str(booking.pk),
        "total_paid": str(paid),
        "total_refunded": str(refunded),
        "net_paid": str(q2(paid - refunded)),
        "total_due": str(due),
        "outstanding": str(q2(max(due - paid, Decimal("0")))),
    }
