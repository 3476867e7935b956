"""Coupon eligibility checks and redemption bookkeeping."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from core.exceptions import NotFound, Unprocessable

from .models import Coupon

logger = logging.getLogger(__name__)


class CouponUnavailable(Unprocessable):
    default_detail = "This coupon cannot be applied to the booking."
    default_code = "coupon_unavailable"


def ensure_coupon_applicable(
    coupon: Coupon,
    *,
    user,
    base_price: Decimal,
    now: datetime,
    prior_redemptions: int,
) -> None:
    """
    Raise CouponUnavailable unless the coupon may be redeemed by `user`.

    `prior_redemptions` is the number of the user's live bookings already
    carrying this coupon.
    """
    if not coupon.is_live(now):
        raise CouponUnavailable("Coupon is not active.")
    if coupon.is_exhausted():
        raise CouponUnavailable("Coupon usage limit reached.")
    if coupon.per_user_limit and prior_redemptions >= coupon.per_user_limit:
        raise CouponUnavailable("You have already used this coupon the maximum number of times.")
    if base_price < coupon.min_booking_amount:
        raise CouponUnavailable(
            f"Minimum booking amount for this coupon is {coupon.min_booking_amount}."
        )


def redeem_coupon(
    code: str,
    *,
    user,
    base_price: Decimal,
    now: datetime,
) -> Coupon:
    """
    Lock the coupon row, validate it for `user` and count one redemption.

    Must be called inside transaction.atomic() so the usage counter and the
    booking that consumes it commit together.
    """
    from bookings.models import Booking

    normalized = (code or "").strip()
    try:
        coupon = Coupon.objects.select_for_update().get(code__iexact=normalized)
    except Coupon.DoesNotExist as exc:
        raise NotFound("Coupon not found.") from exc

    prior = (
        Booking.objects.filter(user=user, coupon=coupon)
        .exclude(status=Booking.Status.CANCELLED)
        .count()
    )
    ensure_coupon_applicable(
        coupon,
        user=user,
        base_price=base_price,
        now=now,
        prior_redemptions=prior,
    )
    coupon.usage_count += 1
    coupon.save(update_fields=["usage_count", "updated_at"])
    logger.info(
        "coupons: redeemed %s for user %s",
        coupon.code,
        user.pk,
        extra={"coupon_id": coupon.pk},
    )
    return coupon
