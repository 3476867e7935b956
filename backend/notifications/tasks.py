from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()

STATUS_SUBJECTS = {
    "pending": "Your booking request was received",
    "advance_paid": "Advance received for your booking",
    "confirmed": "Your booking is confirmed",
    "active": "Enjoy your ride",
    "completed": "Thanks for returning the car",
    "cancelled": "Your booking was cancelled",
}


def _load_recipient(user_id: int, booking_id: int):
    """Return (user, booking), or None when either row is gone by the time the task runs."""
    from bookings.models import Booking

    user = User.objects.filter(pk=user_id).first()
    booking = Booking.objects.with_related().filter(pk=booking_id).first()
    if user is None or booking is None:
        logger.warning(
            "notifications: skipping booking email, user %s or booking %s no longer exists",
            user_id,
            booking_id,
        )
        return None
    return user, booking


def _build_email_context(extra: Optional[dict]) -> dict:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    context = {
        "site_name": getattr(settings, "SITE_NAME", "CarHire"),
        "site_url": frontend_origin,
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=NotificationLog.Channel.EMAIL,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"type": type_, "status": status},
        )


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    template: str,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id: int | None = None,
) -> bool:
    if not to_email:
        _log_notification(
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    full_context = _build_email_context(context)
    full_context["subject"] = subject
    body = render_to_string(f"email/{template}", full_context).strip()
    message = EmailMultiAlternatives(
        subject=subject,
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": booking_id, "user_id": user_id},
        )
        _log_notification(
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error=str(exc) or exc.__class__.__name__,
        )
        return False

    _log_notification(
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
    )
    return True


@shared_task(queue="emails")
def send_booking_status_email(user_id: int, booking_id: int, new_status: str):
    """Tell the customer their booking moved to `new_status`."""
    loaded = _load_recipient(user_id, booking_id)
    if loaded is None:
        return
    user, booking = loaded

    subject = STATUS_SUBJECTS.get(new_status, "Your booking was updated")
    _send_email_logged(
        "booking_status_update",
        to_email=user.email,
        subject=f"{subject} (#{booking.id})",
        template="booking_status_update.txt",
        context={
            "user": user,
            "booking": booking,
            "status": new_status,
            "status_label": booking.get_status_display(),
        },
        user_id=user_id,
        booking_id=booking_id,
    )


@shared_task(queue="emails")
def send_booking_otp_email(user_id: int, booking_id: int):
    """Send the pickup code the customer reads out at the parking."""
    loaded = _load_recipient(user_id, booking_id)
    if loaded is None:
        return
    user, booking = loaded
    if not booking.otp_code:
        return
    if booking.otp_verified:
        logger.info("notifications: OTP for booking %s already verified; not sending", booking_id)
        return

    _send_email_logged(
        "booking_pickup_otp",
        to_email=user.email,
        subject=f"Your pickup code for booking #{booking.id}",
        template="booking_pickup_otp.txt",
        context={
            "user": user,
            "booking": booking,
            "otp_code": booking.otp_code,
            "otp_expires_at": booking.otp_expires_at,
            "parking": booking.pickup_parking,
        },
        user_id=user_id,
        booking_id=booking_id,
    )


@shared_task(queue="emails")
def send_booking_overdue_email(user_id: int, booking_id: int, overdue_hours: int):
    """Remind a customer whose rental ran past its end."""
    loaded = _load_recipient(user_id, booking_id)
    if loaded is None:
        return
    user, booking = loaded

    _send_email_logged(
        "booking_overdue",
        to_email=user.email,
        subject=f"Booking #{booking.id} is {overdue_hours}h overdue",
        template="booking_overdue.txt",
        context={
            "user": user,
            "booking": booking,
            "overdue_hours": overdue_hours,
            "parking": booking.dropoff_parking,
        },
        user_id=user_id,
        booking_id=booking_id,
    )
