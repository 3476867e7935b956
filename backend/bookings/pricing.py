"""Price quotes for car bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings

from cars.models import Car
from coupons.models import Coupon

ZERO = Decimal("0.00")
ONE_DAY = timedelta(days=1)


def q2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def billable_days(start: datetime, end: datetime) -> int:
    """Whole days charged for [start, end); any started day counts in full."""
    if end <= start:
        raise ValueError("end must be after start")
    days, remainder = divmod(end - start, ONE_DAY)
    return days + (1 if remainder else 0)


def discount_for(coupon: Optional[Coupon], base_price: Decimal) -> Decimal:
    """
    Discount granted by `coupon` on `base_price`.

    Percentage coupons are capped at max_discount_amount, fixed coupons at the
    base price itself. The result is never negative.
    """
    if coupon is None:
        return ZERO
    amount = Decimal(coupon.discount_amount or 0)
    if coupon.discount_type == Coupon.DiscountType.PERCENTAGE:
        discount = base_price * amount / Decimal("100")
        if coupon.max_discount_amount is not None:
            discount = min(discount, coupon.max_discount_amount)
    else:
        discount = amount
    discount = min(discount, base_price)
    return q2(max(discount, ZERO))


@dataclass(frozen=True)
class PriceQuote:
    days: int
    daily_rate: Decimal
    base_price: Decimal
    insurance_amount: Decimal
    delivery_charges: Decimal
    discount_amount: Decimal
    total_price: Decimal
    advance_amount: Decimal
    remaining_amount: Decimal

    def as_dict(self) -> dict[str, str]:
        """Values as strings for stable JSON output."""
        return {
            "days": str(self.days),
            "daily_rate": str(self.daily_rate),
            "base_price": str(self.base_price),
            "insurance_amount": str(self.insurance_amount),
            "delivery_charges": str(self.delivery_charges),
            "discount_amount": str(self.discount_amount),
            "total_price": str(self.total_price),
            "advance_amount": str(self.advance_amount),
            "remaining_amount": str(self.remaining_amount),
        }


def quote(
    *,
    car: Car,
    start: datetime,
    end: datetime,
    coupon: Optional[Coupon] = None,
    delivery_charges: Decimal = ZERO,
    advance_rate: Optional[Decimal] = None,
) -> PriceQuote:
    """
    Price a booking of `car` over [start, end):

    - base = daily rate * billable days
    - total = base + insurance + delivery - discount
    - advance = total * BOOKING_ADVANCE_RATE, remaining = total - advance

    The remainder is taken by subtraction so advance + remaining == total exactly.
    """
    days = billable_days(start, end)
    daily_rate = q2(car.daily_rate)
    base_price = q2(daily_rate * days)
    insurance = q2(car.insurance_amount or ZERO)
    delivery = q2(delivery_charges or ZERO)
    discount = discount_for(coupon, base_price)
    total = q2(base_price + insurance + delivery - discount)

    rate = advance_rate if advance_rate is not None else settings.BOOKING_ADVANCE_RATE
    advance = q2(total * Decimal(rate))
    return PriceQuote(
        days=days,
        daily_rate=daily_rate,
        base_price=base_price,
        insurance_amount=insurance,
        delivery_charges=delivery,
        discount_amount=discount,
        total_price=total,
        advance_amount=advance,
        remaining_amount=q2(total - advance),
    )
