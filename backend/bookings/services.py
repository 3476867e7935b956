"""
Booking lifecycle transitions.

Every transition locks the rows it mutates inside one transaction, validates
its whole precondition chain, writes, re-derives the booking status and appends
an audit event. Locks are always taken car first, booking second, so that
booking creation (which only locks the car) and later transitions cannot
deadlock each other. Notifications are queued after the transaction commits.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from cars.models import Car
from core.exceptions import BadRequest, Conflict, Forbidden, NotFound, Unprocessable
from core.ratelimit import get_rate_limiter
from coupons.models import Coupon
from coupons.services import redeem_coupon
from notifications import tasks as notification_tasks
from payments.ledger import record_payment
from payments.models import Payment

from . import confirmation, otp, pricing
from .confirmation import CONFIRMATION_FIELDS, Tool
from .domain import (
    assert_can_apply_topup,
    assert_can_cancel,
    assert_can_confirm_pickup,
    assert_can_confirm_return,
    assert_can_pay_advance,
    assert_can_pay_final,
    assert_can_resend_otp,
    assert_can_reschedule,
    assert_can_verify_otp,
    assert_not_terminal,
    assert_owner,
    assert_owner_or_admin,
    assert_staff_for,
    derive_status,
    ensure_no_conflict,
    validate_booking_window,
)
from .models import Booking, BookingEvent, BookingTopup, Topup
from .overdue import OverdueStatus, evaluate_booking

logger = logging.getLogger(__name__)


# --- locking helpers -------------------------------------------------------


def _lock_car(car_id: int) -> Car:
    try:
        return Car.objects.select_for_update().get(pk=car_id)
    except Car.DoesNotExist as exc:
        raise NotFound("Car not found.") from exc


def _lock_booking(booking_id: int) -> Booking:
    try:
        return Booking.objects.select_for_update().get(pk=booking_id)
    except Booking.DoesNotExist as exc:
        raise NotFound("Booking not found.") from exc


def _lock_car_and_booking(booking_id: int) -> tuple[Car, Booking]:
    car_id = Booking.objects.filter(pk=booking_id).values_list("car_id", flat=True).first()
    if car_id is None:
        raise NotFound("Booking not found.")
    car = _lock_car(car_id)
    return car, _lock_booking(booking_id)


# --- bookkeeping -------------------------------------------------------------


def _save(booking: Booking, fields: Iterable[str]) -> str:
    """Re-derive status and persist `fields`; returns the previous status."""
    previous = booking.status
    booking.status = derive_status(booking)
    booking.save(update_fields=sorted(set(fields) | {"status", "updated_at"}))
    return previous


def _record_event(booking: Booking, type_value: str, *, actor=None, payload=None) -> None:
    BookingEvent.objects.create(
        booking=booking,
        type=type_value,
        actor=actor,
        payload=payload or {},
    )


def _queue_status_email(booking: Booking) -> None:
    try:
        notification_tasks.send_booking_status_email.delay(
            booking.user_id,
            booking.id,
            booking.status,
        )
    except Exception:
        logger.info(
            "notifications: could not queue send_booking_status_email",
            extra={"booking_id": booking.id},
            exc_info=True,
        )


def _queue_otp_email(booking: Booking) -> None:
    try:
        notification_tasks.send_booking_otp_email.delay(booking.user_id, booking.id)
    except Exception:
        logger.info(
            "notifications: could not queue send_booking_otp_email",
            extra={"booking_id": booking.id},
            exc_info=True,
        )


def _release_car(car: Car, *, exclude_booking_id: int) -> None:
    """Mark the car available unless another rental is still out on the road."""
    if car.status != Car.Status.BOOKED:
        return
    still_out = (
        Booking.objects.filter(car=car, status=Booking.Status.ACTIVE)
        .exclude(pk=exclude_booking_id)
        .exists()
    )
    if still_out:
        return
    car.status = Car.Status.AVAILABLE
    car.save(update_fields=["status", "updated_at"])


# --- creation ----------------------------------------------------------------


def create_booking(
    *,
    user,
    car_id: int,
    start: datetime,
    end: datetime,
    pickup_date: Optional[datetime] = None,
    coupon_code: Optional[str] = None,
    delivery_charges: Decimal = Decimal("0.00"),
    now: Optional[datetime] = None,
) -> Booking:
    """Reserve a car for [start, end) after checking availability and pricing it."""
    now = now or timezone.now()
    if not getattr(user, "is_verified", False):
        raise Forbidden("Verify your account before booking a car.")
    validate_booking_window(start, end, now=now)
    if pickup_date is not None and not (start <= pickup_date < end):
        raise BadRequest("Pickup must fall inside the booking window.")
    if delivery_charges is not None and delivery_charges < 0:
        raise BadRequest("Delivery charges cannot be negative.")

    with transaction.atomic():
        car = _lock_car(car_id)
        if not Car.objects.bookable().filter(pk=car.pk).exists():
            raise Unprocessable("This car is not available for booking.")
        ensure_no_conflict(car, start, end)

        coupon: Optional[Coupon] = None
        if coupon_code:
            undiscounted = pricing.quote(car=car, start=start, end=end)
            coupon = redeem_coupon(
                coupon_code,
                user=user,
                base_price=undiscounted.base_price,
                now=now,
            )
        price = pricing.quote(
            car=car,
            start=start,
            end=end,
            coupon=coupon,
            delivery_charges=delivery_charges or Decimal("0.00"),
        )
        booking = Booking.objects.create(
            user=user,
            car=car,
            coupon=coupon,
            start_date=start,
            end_date=end,
            pickup_date=pickup_date or start,
            base_price=price.base_price,
            discount_amount=price.discount_amount,
            insurance_amount=price.insurance_amount,
            delivery_charges=price.delivery_charges,
            total_price=price.total_price,
            advance_amount=price.advance_amount,
            remaining_amount=price.remaining_amount,
            pickup_parking_id=car.parking_id,
            dropoff_parking_id=car.parking_id,
            max_reschedule_count=settings.BOOKING_MAX_RESCHEDULES,
            status=Booking.Status.PENDING,
        )
        _record_event(
            booking,
            BookingEvent.Type.CREATED,
            actor=user,
            payload={"quote": price.as_dict(), "coupon": coupon.code if coupon else None},
        )

    logger.info(
        "bookings: created booking %s for car %s",
        booking.id,
        car.id,
        extra={"booking_id": booking.id},
    )
    _queue_status_email(booking)
    return booking


# --- payments ----------------------------------------------------------------


def confirm_advance_payment(
    booking_id: int,
    *,
    actor,
    reference_id: str,
    method: str = Payment.Method.RAZORPAY,
    now: Optional[datetime] = None,
) -> Booking:
    """Record the advance and issue the pickup OTP."""
    now = now or timezone.now()
    with transaction.atomic():
        booking = _lock_booking(booking_id)
        assert_owner(booking, actor)
        assert_can_pay_advance(booking)
        booking.advance_payment = record_payment(
            user=actor,
            booking=booking,
            type=Payment.Type.ADVANCE,
            amount=booking.advance_amount,
            reference_id=reference_id,
            method=method,
            now=now,
        )
        otp.issue(booking, now=now)
        previous = _save(booking, ["advance_payment", *otp.OTP_FIELDS])
        _record_event(
            booking,
            BookingEvent.Type.ADVANCE_PAID,
            actor=actor,
            payload={"payment_id": booking.advance_payment_id, "from": previous},
        )
        _record_event(
            booking,
            BookingEvent.Type.OTP_ISSUED,
            actor=actor,
            payload={"expires_at": booking.otp_expires_at.isoformat()},
        )

    logger.info("bookings: advance paid for booking %s", booking.id, extra={"booking_id": booking.id})
    _queue_status_email(booking)
    _queue_otp_email(booking)
    return booking


def confirm_final_payment(
    booking_id: int,
    *,
    actor,
    reference_id: str,
    method: str = Payment.Method.RAZORPAY,
    now: Optional[datetime] = None,
) -> Booking:
    """Record the remaining balance once the car's condition is approved."""
    now = now or timezone.now()
    with transaction.atomic():
        booking = _lock_booking(booking_id)
        assert_owner(booking, actor)
        assert_can_pay_final(booking)
        booking.final_payment = record_payment(
            user=actor,
            booking=booking,
            type=Payment.Type.FINAL,
            amount=booking.remaining_amount,
            reference_id=reference_id,
            method=method,
            now=now,
        )
        previous = _save(booking, ["final_payment"])
        _record_event(
            booking,
            BookingEvent.Type.FINAL_PAID,
            actor=actor,
            payload={"payment_id": booking.final_payment_id, "from": previous},
        )

    logger.info("bookings: final payment for booking %s", booking.id, extra={"booking_id": booking.id})
    _queue_status_email(booking)
    return booking


# --- OTP -----------------------------------------------------------------------


def verify_otp(
    booking_id: int,
    *,
    actor,
    code: str,
    now: Optional[datetime] = None,
) -> Booking:
    """Staff at the pickup parking check the code the customer reads out."""
    get_rate_limiter().check("otp_verify", str(booking_id))
    now = now or timezone.now()
    with transaction.atomic():
        booking = _lock_booking(booking_id)
        assert_staff_for(booking.pickup_parking_id, actor)
        assert_can_verify_otp(booking)
        otp.check(booking, code, now=now)
        otp.mark_verified(booking, by=actor, now=now)
        _save(booking, otp.OTP_FIELDS)
        _record_event(booking, BookingEvent.Type.OTP_VERIFIED, actor=actor)

    logger.info("bookings: OTP verified for booking %s", booking.id, extra={"booking_id": booking.id})
    return booking


def get_otp(booking: Booking, *, actor, now: Optional[datetime] = None) -> dict:
    """The customer's current code, shown only while it can still be used."""
    now = now or timezone.now()
    assert_owner(booking, actor)
    if not booking.otp_code:
        raise otp.OTPNotIssued()
    live = booking.otp_is_live(now)
    return {
        "otp_code": booking.otp_code if live else None,
        "otp_expires_at": booking.otp_expires_at,
        "otp_verified": booking.otp_verified,
        "is_expired": not booking.otp_verified and not live,
    }


def resend_otp(booking_id: int, *, actor, now: Optional[datetime] = None) -> Booking:
    """Replace the customer's code with a fresh one."""
    get_rate_limiter().check("otp_resend", str(booking_id))
    now = now or timezone.now()
    with transaction.atomic():
        booking = _lock_booking(booking_id)
        assert_owner_or_admin(booking, actor)
        assert_can_resend_otp(booking)
        otp.issue(booking, now=now)
        _save(booking, otp.OTP_FIELDS)
        _record_event(
            booking,
            BookingEvent.Type.OTP_ISSUED,
            actor=actor,
            payload={"expires_at": booking.otp_expires_at.isoformat(), "resend": True},
        )

    _queue_otp_email(booking)
    return booking


# --- confirmation workflow -----------------------------------------------------


def submit_confirmation(
    booking_id: int,
    *,
    actor,
    images: Sequence[str],
    tool_images: Sequence[str] = (),
    tools: Iterable[Tool] = (),
    now: Optional[datetime] = None,
) -> Booking:
    now = now or timezone.now()
    with transaction.atomic():
        booking = _lock_booking(booking_id)
        assert_owner(booking, actor)
        assert_not_terminal(booking)
        confirmation.submit(booking, images=images, tool_images=tool_images, tools=tools, now=now)
        _save(booking, CONFIRMATION_FIELDS)
        _record_event(
            booking,
            BookingEvent.Type.CONFIRMATION_SUBMITTED,
            actor=actor,
            payload={"images": len(booking.car_condition_images), "tools": len(booking.tools)},
        )
    return booking


def review_confirmation(
    booking_id: int,
    *,
    actor,
    approved: bool,
    comments: str = "",
    now: Optional[datetime] = None,
) -> Booking:
    """Parking staff approve or reject the customer's condition report."""
    now = now or timezone.now()
    with transaction.atomic():
        booking = _lock_booking(booking_id)
        assert_staff_for(booking.pickup_parking_id, actor)
        assert_not_terminal(booking)
        confirmation.review(
            booking,
            approved=approved,
            comments=comments,
            reviewer=actor,
            now=now,
        )
        _save(booking, CONFIRMATION_FIELDS)
        _record_event(
            booking,
            BookingEvent.Type.CONFIRMATION_REVIEWED,
            actor=actor,
            payload={"approved": approved, "comments": comments or ""},
        )

    logger.info(
        "bookings: confirmation %s for booking %s",
        booking.confirmation_status,
        booking.id,
        extra={"booking_id": booking.id},
    )
    _queue_status_email(booking)
    return booking


def resubmit_confirmation(
    booking_id: int,
    *,
    actor,
    images: Sequence[str],
    tool_images: Sequence[str] = (),
    tools: Iterable[Tool] = (),
    reason: str = "",
    now: Optional[datetime] = None,
) -> Booking:
    now = now or timezone.now()
    with transaction.atomic():
        booking = _lock_booking(booking_id)
        assert_owner(booking, actor)
        assert_not_terminal(booking)
        confirmation.resubmit(
            booking,
            images=images,
            tool_images=tool_images,
            tools=tools,
            reason=reason,
            now=now,
        )
        _save(booking, CONFIRMATION_FIELDS)
        _record_event(
            booking,
            BookingEvent.Type.CONFIRMATION_RESUBMITTED,
            actor=actor,
            payload={"reason": reason or ""},
        )
    return booking


# --- handover ------------------------------------------------------------------


def confirm_pickup(booking_id: int, *, actor, now: Optional[datetime] = None) -> Booking:
    """Hand the car over; the rental becomes active."""
    now = now or timezone.now()
    with transaction.atomic():
        car, booking = _lock_car_and_booking(booking_id)
        assert_staff_for(booking.pickup_parking_id, actor)
        assert_can_confirm_pickup(booking)
        booking.actual_pickup_date = now
        previous = _save(booking, ["actual_pickup_date"])
        car.status = Car.Status.BOOKED
        car.save(update_fields=["status", "updated_at"])
        _record_event(
            booking,
            BookingEvent.Type.PICKED_UP,
            actor=actor,
            payload={"from": previous},
        )

    logger.info("bookings: booking %s picked up", booking.id, extra={"booking_id": booking.id})
    _queue_status_email(booking)
    return booking


def confirm_return(
    booking_id: int,
    *,
    actor,
    condition: str = Booking.ReturnCondition.GOOD,
    images: Sequence[str] = (),
    comments: str = "",
    now: Optional[datetime] = None,
) -> Booking:
    """Take the car back at the drop-off parking and close the rental."""
    now = now or timezone.now()
    with transaction.atomic():
        car, booking = _lock_car_and_booking(booking_id)
        assert_staff_for(booking.dropoff_parking_id, actor)
        assert_can_confirm_return(booking)
        booking.actual_dropoff_date = now
        booking.return_condition = condition or Booking.ReturnCondition.GOOD
        booking.return_images = list(images)
        booking.return_comments = comments or ""
        lateness = evaluate_booking(booking, now)
        _save(
            booking,
            ["actual_dropoff_date", "return_condition", "return_images", "return_comments"],
        )
        car.status = Car.Status.AVAILABLE
        car.save(update_fields=["status", "updated_at"])
        _record_event(
            booking,
            BookingEvent.Type.RETURNED,
            actor=actor,
            payload={
                "condition": booking.return_condition,
                "overdue_hours": lateness.overdue_hours,
            },
        )

    logger.info("bookings: booking %s returned", booking.id, extra={"booking_id": booking.id})
    _queue_status_email(booking)
    return booking


# --- extensions ----------------------------------------------------------------


def apply_topup(
    booking_id: int,
    *,
    actor,
    topup_id: int,
    reference_id: str,
    expected_end: Optional[datetime] = None,
    method: str = Payment.Method.RAZORPAY,
    now: Optional[datetime] = None,
) -> BookingTopup:
    """
    Extend an active rental by a purchased topup.

    `expected_end`, when given, must match the booking's current effective end;
    a stale value means another extension landed first.
    """
    now = now or timezone.now()
    reference = (reference_id or "").strip()
    if not reference:
        raise BadRequest("A payment reference is required.")

    with transaction.atomic():
        car, booking = _lock_car_and_booking(booking_id)
        assert_owner(booking, actor)
        assert_can_apply_topup(booking)
        try:
            topup = Topup.objects.active().get(pk=topup_id)
        except Topup.DoesNotExist as exc:
            raise NotFound("Topup not found.") from exc
        if BookingTopup.objects.filter(payment_reference_id=reference).exists():
            raise Conflict("This payment was already applied.")

        original_end = booking.effective_end
        if expected_end is not None and expected_end != original_end:
            raise Conflict("The booking's end time changed; refresh and try again.")
        new_end = original_end + timedelta(hours=topup.duration_hours)
        ensure_no_conflict(car, original_end, new_end, exclude_booking_id=booking.id)

        payment = record_payment(
            user=actor,
            booking=booking,
            type=Payment.Type.TOPUP,
            amount=topup.price,
            reference_id=reference,
            method=method,
            now=now,
        )
        applied = BookingTopup.objects.create(
            booking=booking,
            topup=topup,
            applied_by=actor,
            applied_at=now,
            original_end=original_end,
            new_end=new_end,
            amount=payment.amount,
            payment=payment,
            payment_reference_id=reference,
        )
        booking.end_date = new_end
        booking.extension_till = new_end
        booking.extension_time = booking.extension_time + topup.duration_hours
        booking.extension_price = pricing.q2(booking.extension_price + payment.amount)
        _save(booking, ["end_date", "extension_till", "extension_time", "extension_price"])
        _record_event(
            booking,
            BookingEvent.Type.TOPUP_APPLIED,
            actor=actor,
            payload={
                "topup_id": topup.id,
                "original_end": original_end.isoformat(),
                "new_end": new_end.isoformat(),
                "amount": str(payment.amount),
            },
        )

    logger.info(
        "bookings: booking %s extended to %s",
        booking.id,
        new_end.isoformat(),
        extra={"booking_id": booking.id},
    )
    return applied


def get_overdue_status(booking: Booking, now: Optional[datetime] = None) -> OverdueStatus:
    return evaluate_booking(booking, now or timezone.now())


def overdue_timeline(queryset, now: Optional[datetime] = None) -> list[tuple[Booking, OverdueStatus]]:
    """Evaluate every active booking in `queryset` against one shared clock reading."""
    now = now or timezone.now()
    active = queryset.filter(status=Booking.Status.ACTIVE).order_by("end_date", "id")
    return [(booking, evaluate_booking(booking, now)) for booking in active]


# --- rescheduling and cancellation --------------------------------------------


def reschedule_booking(
    booking_id: int,
    *,
    actor,
    pickup_date: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Move the pickup (and optionally the whole window) of a booking not yet picked up.

    A moved window must keep the same number of billable days so the price
    stays valid.
    """
    now = now or timezone.now()
    if (start is None) != (end is None):
        raise BadRequest("Provide both start and end dates to move the booking window.")

    with transaction.atomic():
        car, booking = _lock_car_and_booking(booking_id)
        assert_owner(booking, actor)
        assert_can_reschedule(booking)
        if pickup_date <= now:
            raise BadRequest("The new pickup time must be in the future.")

        fields = ["pickup_date", "original_pickup_date", "reschedule_count"]
        previous_window = (booking.start_date, booking.end_date)
        if start is not None:
            validate_booking_window(start, end, now=now)
            if pricing.billable_days(start, end) != pricing.billable_days(*previous_window):
                raise Unprocessable("Rescheduling must keep the same rental length.")
            ensure_no_conflict(car, start, end, exclude_booking_id=booking.id)
            booking.start_date = start
            booking.end_date = end
            fields += ["start_date", "end_date"]
        if not (booking.start_date <= pickup_date < booking.end_date):
            raise BadRequest("Pickup must fall inside the booking window.")

        if booking.original_pickup_date is None:
            booking.original_pickup_date = booking.expected_pickup
        booking.pickup_date = pickup_date
        booking.reschedule_count += 1

        otp_reissued = False
        if booking.otp_code and not booking.otp_verified:
            if otp.should_regenerate(booking, pickup_date, now=now):
                otp.issue(booking, now=now)
                fields += otp.OTP_FIELDS
                otp_reissued = True
        _save(booking, fields)
        _record_event(
            booking,
            BookingEvent.Type.RESCHEDULED,
            actor=actor,
            payload={
                "pickup_date": pickup_date.isoformat(),
                "previous_start": previous_window[0].isoformat(),
                "previous_end": previous_window[1].isoformat(),
                "otp_reissued": otp_reissued,
            },
        )

    if otp_reissued:
        _queue_otp_email(booking)
    return booking


def cancel_booking(
    booking_id: int,
    *,
    actor,
    reason: str = "",
    now: Optional[datetime] = None,
) -> Booking:
    """Cancel a non-terminal booking and give its car and coupon back."""
    now = now or timezone.now()
    with transaction.atomic():
        car, booking = _lock_car_and_booking(booking_id)
        assert_owner_or_admin(booking, actor)
        assert_can_cancel(booking)
        booking.cancelled_at = now
        booking.cancel_reason = (reason or "").strip()
        booking.cancelled_by = actor
        previous = _save(booking, ["cancelled_at", "cancel_reason", "cancelled_by"])
        _release_car(car, exclude_booking_id=booking.id)
        if booking.coupon_id:
            Coupon.objects.filter(pk=booking.coupon_id, usage_count__gt=0).update(
                usage_count=F("usage_count") - 1
            )
        _record_event(
            booking,
            BookingEvent.Type.CANCELLED,
            actor=actor,
            payload={"from": previous, "reason": booking.cancel_reason},
        )

    logger.info("bookings: booking %s cancelled", booking.id, extra={"booking_id": booking.id})
    _queue_status_email(booking)
    return booking
