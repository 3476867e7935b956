"""Domain helpers for booking validation and state transitions."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from cars.models import Car
from core.exceptions import BadRequest, Conflict, Forbidden, InvalidState, Unprocessable

from .models import Booking


class RescheduleLimitReached(Unprocessable):
    default_detail = "This booking has been rescheduled the maximum number of times."
    default_code = "reschedule_limit_reached"


def derive_status(booking: Booking) -> str:
    """
    Compute the lifecycle status from the booking's facts.

    Later milestones win: cancellation, return, pickup, final payment, advance
    payment. The final payment can only exist after the OTP was verified and the
    condition report approved, so it alone marks a booking confirmed.
    """
    if booking.cancelled_at is not None:
        return Booking.Status.CANCELLED
    if booking.actual_dropoff_date is not None:
        return Booking.Status.COMPLETED
    if booking.actual_pickup_date is not None:
        return Booking.Status.ACTIVE
    if booking.final_payment_id is not None:
        return Booking.Status.CONFIRMED
    if booking.advance_payment_id is not None:
        return Booking.Status.ADVANCE_PAID
    return Booking.Status.PENDING


def validate_booking_window(
    start: Optional[datetime],
    end: Optional[datetime],
    *,
    now: datetime,
) -> None:
    """Validate that the provided datetimes exist and form a future range."""
    if not start or not end:
        raise BadRequest("Start and end dates are required.")
    if start >= end:
        raise BadRequest("End date must be after start date.")
    if start < now:
        raise BadRequest("Start date cannot be in the past.")


def ensure_no_conflict(
    car: Car,
    start: datetime,
    end: datetime,
    *,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """
    Ensure no other live booking holds `car` during [start, end).

    Callers must hold the car's row lock so the check and the write that
    follows cannot interleave with another request.
    """
    qs = Booking.objects.filter(car=car).not_cancelled().overlapping(start, end)
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    if qs.exists():
        raise Conflict("The car is already booked for the requested period.")


def assert_owner(booking: Booking, user) -> None:
    if booking.user_id != user.id:
        raise Forbidden("Only the customer who made this booking can do this.")


def assert_owner_or_admin(booking: Booking, user) -> None:
    if booking.user_id != user.id and not user.is_admin():
        raise Forbidden("Only the customer or an admin can do this.")


def assert_staff_for(parking_id: Optional[int], user) -> None:
    """Ensure `user` is the parking in-charge of `parking_id`."""
    if not user.is_parking_staff():
        raise Forbidden("Only parking staff can do this.")
    if not user.manages_parking(parking_id):
        raise Forbidden("This booking belongs to a different parking.")


def assert_not_terminal(booking: Booking) -> None:
    if booking.is_terminal():
        raise InvalidState(f"Booking is already {booking.status}.")


def assert_can_pay_advance(booking: Booking) -> None:
    assert_not_terminal(booking)
    if booking.advance_payment_id is not None:
        raise Conflict("The advance payment for this booking was already recorded.")


def assert_can_verify_otp(booking: Booking) -> None:
    assert_not_terminal(booking)
    if booking.advance_payment_id is None:
        raise InvalidState("The advance must be paid before the OTP can be verified.")
    if booking.actual_pickup_date is not None:
        raise InvalidState("The car was already picked up.")


def assert_can_resend_otp(booking: Booking) -> None:
    if booking.status != Booking.Status.ADVANCE_PAID:
        raise InvalidState("An OTP can only be resent while the booking awaits pickup checks.")
    if booking.otp_verified:
        raise InvalidState("The OTP for this booking was already verified.")


def assert_can_pay_final(booking: Booking) -> None:
    assert_not_terminal(booking)
    if booking.final_payment_id is not None:
        raise Conflict("The final payment for this booking was already recorded.")
    if booking.confirmation_status != Booking.ConfirmationStatus.APPROVED:
        raise InvalidState("The car's condition must be approved before the final payment.")


def assert_can_confirm_pickup(booking: Booking) -> None:
    """
    Ensure every handover prerequisite holds: both payments, a verified OTP and
    an approved condition report.
    """
    if booking.actual_pickup_date is not None:
        raise Conflict("The car was already picked up.")
    assert_not_terminal(booking)
    missing = []
    if booking.advance_payment_id is None:
        missing.append("advance payment")
    if booking.final_payment_id is None:
        missing.append("final payment")
    if not booking.otp_verified:
        missing.append("OTP verification")
    if booking.confirmation_status != Booking.ConfirmationStatus.APPROVED:
        missing.append("condition approval")
    if missing:
        raise InvalidState(f"Pickup blocked; missing {', '.join(missing)}.")


def assert_can_confirm_return(booking: Booking) -> None:
    if booking.actual_dropoff_date is not None:
        raise Conflict("The car was already returned.")
    if booking.status != Booking.Status.ACTIVE:
        raise InvalidState("Only active rentals can be returned.")


def assert_can_apply_topup(booking: Booking) -> None:
    if booking.status != Booking.Status.ACTIVE:
        raise InvalidState("Extensions can only be bought during an active rental.")


def assert_can_reschedule(booking: Booking) -> None:
    assert_not_terminal(booking)
    if booking.actual_pickup_date is not None:
        raise InvalidState("Picked-up bookings cannot be rescheduled.")
    if booking.reschedule_count >= booking.max_reschedule_count:
        raise RescheduleLimitReached()


def assert_can_cancel(booking: Booking) -> None:
    assert_not_terminal(booking)
