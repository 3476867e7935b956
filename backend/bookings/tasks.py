"""Celery tasks for bookings."""

from __future__ import annotations

import logging

from celery import shared_task
from django.utils import timezone

from notifications import tasks as notification_tasks

from .models import Booking
from .overdue import evaluate_booking

logger = logging.getLogger(__name__)


@shared_task(name="bookings.notify_overdue_bookings")
def notify_overdue_bookings() -> int:
    """
    Remind customers whose active rental is at least an hour past its end.

    Returns the number of reminders queued.
    """
    now = timezone.now()
    queued = 0
    active = Booking.objects.filter(status=Booking.Status.ACTIVE).only(
        "id", "user_id", "end_date", "extension_till", "status"
    )
    for booking in active.iterator():
        result = evaluate_booking(booking, now)
        if not result.requires_action:
            continue
        try:
            notification_tasks.send_booking_overdue_email.delay(
                booking.user_id,
                booking.id,
                result.overdue_hours,
            )
        except Exception:
            logger.info(
                "notifications: could not queue send_booking_overdue_email",
                extra={"booking_id": booking.id},
                exc_info=True,
            )
            continue
        queued += 1

    if queued:
        logger.info("bookings: queued %s overdue reminders", queued)
    return queued
