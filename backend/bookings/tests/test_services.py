"""Lifecycle transitions driven through the service layer."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction

from bookings import otp, services
from bookings.confirmation import Tool
from bookings.domain import RescheduleLimitReached
from bookings.models import Booking, BookingEvent
from cars.models import Car
from core.exceptions import (
    BadRequest,
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    RateLimited,
    Unprocessable,
)
from coupons.services import CouponUnavailable
from notifications import tasks as notification_tasks
from payments.models import Payment

pytestmark = pytest.mark.django_db


def test_full_lifecycle(booking_factory, renter_user, staff_user, car, now):
    booking = booking_factory()
    assert booking.status == Booking.Status.PENDING
    assert booking.total_price == Decimal("4300.00")
    assert booking.advance_amount + booking.remaining_amount == booking.total_price
    assert booking.pickup_parking_id == car.parking_id

    booking = services.confirm_advance_payment(
        booking.id, actor=renter_user, reference_id="pay_1", now=now
    )
    assert booking.status == Booking.Status.ADVANCE_PAID
    assert booking.advance_payment.amount == booking.advance_amount
    assert len(booking.otp_code) == 4

    booking = services.verify_otp(booking.id, actor=staff_user, code=booking.otp_code, now=now)
    assert booking.otp_verified is True
    assert booking.otp_verified_by == staff_user

    services.submit_confirmation(
        booking.id,
        actor=renter_user,
        images=["https://cdn.example.com/front.jpg"],
        tool_images=["https://cdn.example.com/jack.jpg"],
        tools=[Tool(name="Jack", image_url="https://cdn.example.com/jack.jpg")],
        now=now,
    )
    booking = services.review_confirmation(booking.id, actor=staff_user, approved=True, now=now)
    assert booking.confirmation_status == Booking.ConfirmationStatus.APPROVED
    assert booking.status == Booking.Status.ADVANCE_PAID

    booking = services.confirm_final_payment(
        booking.id, actor=renter_user, reference_id="pay_2", now=now
    )
    assert booking.status == Booking.Status.CONFIRMED
    assert booking.final_payment.amount == booking.remaining_amount

    booking = services.confirm_pickup(booking.id, actor=staff_user, now=now + timedelta(days=1))
    assert booking.status == Booking.Status.ACTIVE
    car.refresh_from_db()
    assert car.status == Car.Status.BOOKED

    booking = services.confirm_return(
        booking.id,
        actor=staff_user,
        condition=Booking.ReturnCondition.FAIR,
        now=now + timedelta(days=3),
    )
    assert booking.status == Booking.Status.COMPLETED
    assert booking.return_condition == Booking.ReturnCondition.FAIR
    car.refresh_from_db()
    assert car.status == Car.Status.AVAILABLE

    types = list(booking.events.values_list("type", flat=True))
    assert types == [
        BookingEvent.Type.CREATED,
        BookingEvent.Type.ADVANCE_PAID,
        BookingEvent.Type.OTP_ISSUED,
        BookingEvent.Type.OTP_VERIFIED,
        BookingEvent.Type.CONFIRMATION_SUBMITTED,
        BookingEvent.Type.CONFIRMATION_REVIEWED,
        BookingEvent.Type.FINAL_PAID,
        BookingEvent.Type.PICKED_UP,
        BookingEvent.Type.RETURNED,
    ]


# --- creation -----------------------------------------------------------------


def test_unverified_user_cannot_book(booking_factory, unverified_user):
    with pytest.raises(Forbidden):
        booking_factory(user=unverified_user)


def test_overlapping_booking_is_rejected(booking_factory, other_user, now):
    booking_factory(start=now + timedelta(days=1), days=2)
    with pytest.raises(Conflict):
        booking_factory(user=other_user, start=now + timedelta(days=2), days=2)


def test_car_in_maintenance_cannot_be_booked(booking_factory, car):
    car.status = Car.Status.MAINTENANCE
    car.save()
    with pytest.raises(Unprocessable):
        booking_factory()


def test_unknown_car(booking_factory):
    with pytest.raises(NotFound):
        booking_factory(car_id=999999)


def test_start_in_the_past(booking_factory, now):
    with pytest.raises(BadRequest):
        booking_factory(start=now - timedelta(hours=1))


@pytest.mark.parametrize("offset", [timedelta(hours=-1), timedelta(days=2)])
def test_pickup_must_fall_inside_the_window(booking_factory, now, offset):
    start = now + timedelta(days=1)
    with pytest.raises(BadRequest):
        booking_factory(start=start, days=2, pickup_date=start + offset)
    assert not Booking.objects.exists()


def test_pickup_later_in_the_window_is_kept(booking_factory, now):
    start = now + timedelta(days=1)
    booking = booking_factory(start=start, pickup_date=start + timedelta(hours=5))
    assert booking.pickup_date == start + timedelta(hours=5)


def test_coupon_discounts_and_counts_usage(booking_factory, coupon_factory):
    coupon = coupon_factory(max_discount_amount=Decimal("250.00"))
    booking = booking_factory(coupon_code="welcome10")

    assert booking.coupon_id == coupon.id
    assert booking.discount_amount == Decimal("250.00")
    assert booking.total_price == Decimal("4050.00")
    coupon.refresh_from_db()
    assert coupon.usage_count == 1


def test_coupon_per_user_limit(booking_factory, coupon_factory, now):
    coupon_factory(per_user_limit=1)
    booking_factory(coupon_code="WELCOME10")
    with pytest.raises(CouponUnavailable):
        booking_factory(coupon_code="WELCOME10", start=now + timedelta(days=10))


def test_coupon_usage_limit(booking_factory, coupon_factory, other_user):
    coupon = coupon_factory(usage_limit=1, usage_count=1)
    with pytest.raises(CouponUnavailable):
        booking_factory(user=other_user, coupon_code=coupon.code)


def test_coupon_minimum_amount(booking_factory, coupon_factory):
    coupon_factory(min_booking_amount=Decimal("10000.00"))
    with pytest.raises(CouponUnavailable):
        booking_factory(coupon_code="WELCOME10")


def test_expired_coupon(booking_factory, coupon_factory, now):
    coupon_factory(end_date=now - timedelta(hours=1))
    with pytest.raises(CouponUnavailable):
        booking_factory(coupon_code="WELCOME10")


def test_unknown_coupon(booking_factory):
    with pytest.raises(NotFound):
        booking_factory(coupon_code="NOPE")


def test_failed_coupon_leaves_no_booking(booking_factory, coupon_factory):
    coupon_factory(min_booking_amount=Decimal("10000.00"))
    with pytest.raises(CouponUnavailable):
        booking_factory(coupon_code="WELCOME10")
    assert Booking.objects.count() == 0


# --- payments -------------------------------------------------------------------


def test_advance_payment_is_idempotent(advance_booking, renter_user, now):
    with pytest.raises(Conflict):
        services.confirm_advance_payment(
            advance_booking.id, actor=renter_user, reference_id="pay_adv_2", now=now
        )
    assert Payment.objects.filter(booking=advance_booking, type=Payment.Type.ADVANCE).count() == 1


def test_only_the_customer_pays(booking_factory, other_user, now):
    booking = booking_factory()
    with pytest.raises(Forbidden):
        services.confirm_advance_payment(booking.id, actor=other_user, reference_id="x", now=now)


def test_reference_reuse_is_rejected_by_the_database(
    booking_factory, advance_booking, other_user, now
):
    second = booking_factory(user=other_user, start=now + timedelta(days=10))
    with pytest.raises(IntegrityError):
        with transaction.atomic():
            services.confirm_advance_payment(
                second.id, actor=other_user, reference_id="pay_adv_1", now=now
            )


def test_final_payment_requires_approval(advance_booking, renter_user, now):
    with pytest.raises(InvalidState):
        services.confirm_final_payment(
            advance_booking.id, actor=renter_user, reference_id="pay_f", now=now
        )


def test_final_payment_twice(confirmed_booking, renter_user, now):
    with pytest.raises(Conflict):
        services.confirm_final_payment(
            confirmed_booking.id, actor=renter_user, reference_id="pay_f2", now=now
        )


# --- OTP ------------------------------------------------------------------------


def test_staff_of_another_parking_cannot_verify(advance_booking, other_staff_user, now):
    with pytest.raises(Forbidden):
        services.verify_otp(
            advance_booking.id, actor=other_staff_user, code=advance_booking.otp_code, now=now
        )


def test_customer_cannot_verify_their_own_code(advance_booking, renter_user, now):
    with pytest.raises(Forbidden):
        services.verify_otp(
            advance_booking.id, actor=renter_user, code=advance_booking.otp_code, now=now
        )


def test_wrong_code(advance_booking, staff_user, now):
    wrong = "0000" if advance_booking.otp_code != "0000" else "1111"
    with pytest.raises(otp.OTPMismatch):
        services.verify_otp(advance_booking.id, actor=staff_user, code=wrong, now=now)
    advance_booking.refresh_from_db()
    assert advance_booking.otp_verified is False


def test_expired_code(advance_booking, staff_user):
    later = advance_booking.otp_expires_at + timedelta(minutes=1)
    with pytest.raises(otp.OTPExpired):
        services.verify_otp(
            advance_booking.id, actor=staff_user, code=advance_booking.otp_code, now=later
        )


def test_code_cannot_be_verified_twice(advance_booking, staff_user, now):
    services.verify_otp(advance_booking.id, actor=staff_user, code=advance_booking.otp_code, now=now)
    with pytest.raises(otp.OTPAlreadyVerified):
        services.verify_otp(
            advance_booking.id, actor=staff_user, code=advance_booking.otp_code, now=now
        )


def test_verify_attempts_are_rate_limited(advance_booking, staff_user, now, settings):
    settings.RATE_LIMITS = {"otp_verify": (3, 900), "otp_resend": (3, 900)}
    wrong = "0000" if advance_booking.otp_code != "0000" else "1111"
    for _ in range(3):
        with pytest.raises(otp.OTPMismatch):
            services.verify_otp(advance_booking.id, actor=staff_user, code=wrong, now=now)
    with pytest.raises(RateLimited):
        services.verify_otp(
            advance_booking.id, actor=staff_user, code=advance_booking.otp_code, now=now
        )


def test_resend_issues_a_fresh_expiry(advance_booking, renter_user, now):
    later = now + timedelta(days=1, hours=3)
    booking = services.resend_otp(advance_booking.id, actor=renter_user, now=later)
    assert booking.otp_expires_at == later + timedelta(minutes=15)


def test_resend_after_verification(advance_booking, renter_user, staff_user, now):
    services.verify_otp(advance_booking.id, actor=staff_user, code=advance_booking.otp_code, now=now)
    with pytest.raises(InvalidState):
        services.resend_otp(advance_booking.id, actor=renter_user, now=now)


def test_get_otp_hides_expired_code(advance_booking, renter_user):
    live = services.get_otp(advance_booking, actor=renter_user, now=advance_booking.otp_expires_at)
    assert live["otp_code"] == advance_booking.otp_code

    expired = services.get_otp(
        advance_booking,
        actor=renter_user,
        now=advance_booking.otp_expires_at + timedelta(seconds=1),
    )
    assert expired["otp_code"] is None
    assert expired["is_expired"] is True


# --- confirmation -------------------------------------------------------------------


def test_confirmation_needs_advance(booking_factory, renter_user, now):
    booking = booking_factory()
    with pytest.raises(InvalidState):
        services.submit_confirmation(booking.id, actor=renter_user, images=["https://x/1.jpg"], now=now)


def test_approval_needs_verified_otp(advance_booking, renter_user, staff_user, now):
    services.submit_confirmation(
        advance_booking.id, actor=renter_user, images=["https://x/1.jpg"], now=now
    )
    with pytest.raises(InvalidState):
        services.review_confirmation(advance_booking.id, actor=staff_user, approved=True, now=now)


def test_reject_then_resubmit(advance_booking, renter_user, staff_user, now):
    services.submit_confirmation(
        advance_booking.id, actor=renter_user, images=["https://x/1.jpg"], now=now
    )
    booking = services.review_confirmation(
        advance_booking.id,
        actor=staff_user,
        approved=False,
        comments="Rear bumper not visible",
        now=now,
    )
    assert booking.confirmation_status == Booking.ConfirmationStatus.REJECTED
    assert booking.pic_approved_by == staff_user

    booking = services.resubmit_confirmation(
        advance_booking.id,
        actor=renter_user,
        images=["https://x/1.jpg", "https://x/rear.jpg"],
        reason="Added rear photo",
        now=now,
    )
    assert booking.confirmation_status == Booking.ConfirmationStatus.PENDING_APPROVAL
    assert booking.pic_approved is False
    assert booking.pic_approved_by is None
    assert booking.resubmission_reason == "Added rear photo"
    assert booking.car_condition_images == ["https://x/1.jpg", "https://x/rear.jpg"]


def test_resubmit_only_after_rejection(advance_booking, renter_user, now):
    with pytest.raises(InvalidState):
        services.resubmit_confirmation(
            advance_booking.id, actor=renter_user, images=["https://x/1.jpg"], now=now
        )


def test_review_by_other_parking(advance_booking, renter_user, other_staff_user, now):
    services.submit_confirmation(
        advance_booking.id, actor=renter_user, images=["https://x/1.jpg"], now=now
    )
    with pytest.raises(Forbidden):
        services.review_confirmation(
            advance_booking.id, actor=other_staff_user, approved=False, now=now
        )


# --- handover -------------------------------------------------------------------


def test_pickup_blocked_without_final_payment(approved_booking, staff_user, now):
    with pytest.raises(InvalidState):
        services.confirm_pickup(approved_booking.id, actor=staff_user, now=now)


def test_second_pickup_conflicts(active_booking, staff_user, now):
    with pytest.raises(Conflict):
        services.confirm_pickup(active_booking.id, actor=staff_user, now=now)


def test_return_requires_dropoff_staff(active_booking, other_staff_user, now):
    with pytest.raises(Forbidden):
        services.confirm_return(active_booking.id, actor=other_staff_user, now=now)


def test_return_before_pickup(confirmed_booking, staff_user, now):
    with pytest.raises(InvalidState):
        services.confirm_return(confirmed_booking.id, actor=staff_user, now=now)


def test_second_return_conflicts(active_booking, staff_user, now):
    services.confirm_return(active_booking.id, actor=staff_user, now=now + timedelta(days=3))
    with pytest.raises(Conflict):
        services.confirm_return(active_booking.id, actor=staff_user, now=now + timedelta(days=3))


# --- topups ---------------------------------------------------------------------


def test_topup_extends_the_booking(active_booking, renter_user, topup, now):
    original_end = active_booking.end_date
    applied = services.apply_topup(
        active_booking.id,
        actor=renter_user,
        topup_id=topup.id,
        reference_id="pay_topup_1",
        expected_end=original_end,
        now=now + timedelta(days=2),
    )
    booking = Booking.objects.get(pk=active_booking.pk)

    assert applied.original_end == original_end
    assert applied.new_end == original_end + timedelta(hours=3)
    assert booking.end_date == applied.new_end
    assert booking.extension_till == applied.new_end
    assert booking.extension_time == 3
    assert booking.extension_price == Decimal("450.00")
    assert applied.payment.type == Payment.Type.TOPUP


def test_topups_accumulate(active_booking, renter_user, topup, now):
    for reference in ("pay_t1", "pay_t2"):
        services.apply_topup(
            active_booking.id,
            actor=renter_user,
            topup_id=topup.id,
            reference_id=reference,
            now=now + timedelta(days=2),
        )
    booking = Booking.objects.get(pk=active_booking.pk)
    assert booking.extension_time == 6
    assert booking.extension_price == Decimal("900.00")
    assert booking.topups.count() == 2


def test_duplicate_topup_reference(active_booking, renter_user, topup, now):
    services.apply_topup(
        active_booking.id, actor=renter_user, topup_id=topup.id, reference_id="dup", now=now
    )
    with pytest.raises(Conflict):
        services.apply_topup(
            active_booking.id, actor=renter_user, topup_id=topup.id, reference_id="dup", now=now
        )
    assert Booking.objects.get(pk=active_booking.pk).extension_time == 3


def test_stale_expected_end(active_booking, renter_user, topup, now):
    stale = active_booking.end_date
    services.apply_topup(
        active_booking.id, actor=renter_user, topup_id=topup.id, reference_id="first", now=now
    )
    with pytest.raises(Conflict):
        services.apply_topup(
            active_booking.id,
            actor=renter_user,
            topup_id=topup.id,
            reference_id="second",
            expected_end=stale,
            now=now,
        )


def test_topup_cannot_run_into_the_next_booking(
    active_booking, booking_factory, renter_user, other_user, topup, now
):
    booking_factory(user=other_user, start=active_booking.end_date + timedelta(hours=1), days=1)
    with pytest.raises(Conflict):
        services.apply_topup(
            active_booking.id, actor=renter_user, topup_id=topup.id, reference_id="t", now=now
        )


def test_topup_only_while_active(confirmed_booking, renter_user, topup, now):
    with pytest.raises(InvalidState):
        services.apply_topup(
            confirmed_booking.id, actor=renter_user, topup_id=topup.id, reference_id="t", now=now
        )


def test_inactive_topup(active_booking, renter_user, topup, now):
    topup.is_active = False
    topup.save()
    with pytest.raises(NotFound):
        services.apply_topup(
            active_booking.id, actor=renter_user, topup_id=topup.id, reference_id="t", now=now
        )


def test_overdue_status_uses_extension(active_booking, renter_user, topup, now):
    services.apply_topup(
        active_booking.id, actor=renter_user, topup_id=topup.id, reference_id="t", now=now
    )
    booking = Booking.objects.get(pk=active_booking.pk)
    result = services.get_overdue_status(booking, now=booking.end_date + timedelta(minutes=30))
    assert result.status == "topup/late"
    assert result.overdue_hours == 1


# --- reschedule -----------------------------------------------------------------


def test_reschedule_moves_pickup_and_reissues_otp(advance_booking, renter_user, now):
    original_pickup = advance_booking.pickup_date
    original_expiry = advance_booking.otp_expires_at
    new_pickup = original_pickup + timedelta(hours=6)

    booking = services.reschedule_booking(
        advance_booking.id, actor=renter_user, pickup_date=new_pickup, now=now
    )

    assert booking.pickup_date == new_pickup
    assert booking.original_pickup_date == original_pickup
    assert booking.reschedule_count == 1
    assert booking.otp_expires_at == new_pickup + timedelta(hours=2)
    assert booking.otp_expires_at != original_expiry


def test_small_reschedule_keeps_the_otp(advance_booking, renter_user, now):
    code = advance_booking.otp_code
    booking = services.reschedule_booking(
        advance_booking.id,
        actor=renter_user,
        pickup_date=advance_booking.pickup_date + timedelta(minutes=3),
        now=now,
    )
    assert booking.otp_code == code


def test_reschedule_limit(booking_factory, renter_user, now):
    booking = booking_factory()
    for hours in (1, 2, 3):
        services.reschedule_booking(
            booking.id,
            actor=renter_user,
            pickup_date=booking.start_date + timedelta(hours=hours),
            now=now,
        )
    with pytest.raises(RescheduleLimitReached):
        services.reschedule_booking(
            booking.id,
            actor=renter_user,
            pickup_date=booking.start_date + timedelta(hours=4),
            now=now,
        )


def test_reschedule_window_must_keep_length(booking_factory, renter_user, now):
    booking = booking_factory()
    start = booking.start_date + timedelta(days=5)
    with pytest.raises(Unprocessable):
        services.reschedule_booking(
            booking.id,
            actor=renter_user,
            pickup_date=start,
            start=start,
            end=start + timedelta(days=3),
            now=now,
        )


def test_reschedule_window_checks_overlap(booking_factory, renter_user, other_user, now):
    booking = booking_factory()
    blocker = booking_factory(user=other_user, start=now + timedelta(days=10), days=2)
    with pytest.raises(Conflict):
        services.reschedule_booking(
            booking.id,
            actor=renter_user,
            pickup_date=blocker.start_date,
            start=blocker.start_date,
            end=blocker.end_date,
            now=now,
        )


def test_reschedule_pickup_before_window_opens(booking_factory, renter_user, now):
    booking = booking_factory(start=now + timedelta(days=2))
    with pytest.raises(BadRequest):
        services.reschedule_booking(
            booking.id,
            actor=renter_user,
            pickup_date=booking.start_date - timedelta(hours=3),
            now=now,
        )
    booking.refresh_from_db()
    assert booking.reschedule_count == 0


def test_reschedule_after_pickup(active_booking, renter_user, now):
    with pytest.raises(InvalidState):
        services.reschedule_booking(
            active_booking.id,
            actor=renter_user,
            pickup_date=now + timedelta(days=2),
            now=now,
        )


# --- cancellation -----------------------------------------------------------------


def test_cancel_returns_the_coupon(booking_factory, coupon_factory, renter_user, now):
    coupon = coupon_factory()
    booking = booking_factory(coupon_code=coupon.code)
    booking = services.cancel_booking(booking.id, actor=renter_user, reason="Plans changed", now=now)

    assert booking.status == Booking.Status.CANCELLED
    assert booking.cancelled_by == renter_user
    coupon.refresh_from_db()
    assert coupon.usage_count == 0


def test_admin_can_cancel(booking_factory, admin_user, now):
    booking = booking_factory()
    booking = services.cancel_booking(booking.id, actor=admin_user, now=now)
    assert booking.status == Booking.Status.CANCELLED


def test_stranger_cannot_cancel(booking_factory, other_user, now):
    booking = booking_factory()
    with pytest.raises(Forbidden):
        services.cancel_booking(booking.id, actor=other_user, now=now)


def test_cancel_releases_the_car(active_booking, renter_user, car, now):
    services.cancel_booking(active_booking.id, actor=renter_user, now=now)
    car.refresh_from_db()
    assert car.status == Car.Status.AVAILABLE


def test_terminal_booking_cannot_be_cancelled(active_booking, renter_user, staff_user, now):
    services.confirm_return(active_booking.id, actor=staff_user, now=now + timedelta(days=3))
    with pytest.raises(InvalidState):
        services.cancel_booking(active_booking.id, actor=renter_user, now=now)


# --- notifications ----------------------------------------------------------------


def test_transitions_queue_emails(booking_factory, renter_user, monkeypatch, now):
    status_calls = []
    otp_calls = []
    monkeypatch.setattr(
        notification_tasks.send_booking_status_email,
        "delay",
        lambda *args, **kwargs: status_calls.append(args),
    )
    monkeypatch.setattr(
        notification_tasks.send_booking_otp_email,
        "delay",
        lambda *args, **kwargs: otp_calls.append(args),
    )

    booking = booking_factory()
    services.confirm_advance_payment(booking.id, actor=renter_user, reference_id="p", now=now)

    assert status_calls == [
        (renter_user.id, booking.id, Booking.Status.PENDING),
        (renter_user.id, booking.id, Booking.Status.ADVANCE_PAID),
    ]
    assert otp_calls == [(renter_user.id, booking.id)]


def test_queue_failure_does_not_undo_the_transition(booking_factory, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("broker down")

    monkeypatch.setattr(notification_tasks.send_booking_status_email, "delay", boom)
    booking = booking_factory()
    assert Booking.objects.filter(pk=booking.pk).exists()
