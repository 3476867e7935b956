"""Database models for car bookings, extensions and their audit trail."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from cars.models import Car, Parking


def _money(**kwargs) -> models.DecimalField:
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(max_digits=10, decimal_places=2, **kwargs)


class BookingQuerySet(models.QuerySet):
    def with_related(self):
        """Return bookings with every collaborator row joined in one query."""
        return self.select_related(
            "user",
            "car",
            "car__parking",
            "coupon",
            "pickup_parking",
            "dropoff_parking",
            "advance_payment",
            "final_payment",
            "pic_approved_by",
            "otp_verified_by",
            "cancelled_by",
        )

    def not_cancelled(self):
        return self.exclude(status=Booking.Status.CANCELLED)

    def overlapping(self, start, end):
        """Bookings whose [start_date, end_date) window intersects [start, end)."""
        return self.filter(start_date__lt=end, end_date__gt=start)

    def at_parking(self, parking_id):
        return self.filter(Q(pickup_parking_id=parking_id) | Q(dropoff_parking_id=parking_id))

    def visible_to(self, user):
        if user.is_admin():
            return self
        if user.is_parking_staff() and user.parking_id:
            return self.filter(
                Q(user=user)
                | Q(pickup_parking_id=user.parking_id)
                | Q(dropoff_parking_id=user.parking_id)
            )
        return self.filter(user=user)


class Booking(models.Model):
    """A customer's reservation of a car for a half-open [start, end) window."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ADVANCE_PAID = "advance_paid", "Advance paid"
        CONFIRMED = "confirmed", "Confirmed"
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    class ConfirmationStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PENDING_APPROVAL = "pending_approval", "Pending approval"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    class ReturnCondition(models.TextChoices):
        GOOD = "good", "Good"
        FAIR = "fair", "Fair"
        POOR = "poor", "Poor"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings",
        on_delete=models.CASCADE,
    )
    car = models.ForeignKey(
        Car,
        related_name="bookings",
        on_delete=models.PROTECT,
    )
    coupon = models.ForeignKey(
        "coupons.Coupon",
        related_name="bookings",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(help_text="Exclusive end of the rental window.")
    pickup_date = models.DateTimeField(null=True, blank=True)
    original_pickup_date = models.DateTimeField(null=True, blank=True)
    actual_pickup_date = models.DateTimeField(null=True, blank=True)
    actual_dropoff_date = models.DateTimeField(null=True, blank=True)

    base_price = _money()
    discount_amount = _money()
    insurance_amount = _money()
    delivery_charges = _money()
    total_price = _money()
    advance_amount = _money()
    remaining_amount = _money()
    extension_price = _money()
    extension_till = models.DateTimeField(null=True, blank=True)
    extension_time = models.PositiveIntegerField(default=0, help_text="Total extension in hours.")

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    confirmation_status = models.CharField(
        max_length=20,
        choices=ConfirmationStatus.choices,
        default=ConfirmationStatus.PENDING,
    )
    advance_payment = models.ForeignKey(
        "payments.Payment",
        related_name="+",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
    )
    final_payment = models.ForeignKey(
        "payments.Payment",
        related_name="+",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
    )

    car_condition_images = models.JSONField(default=list, blank=True)
    tool_images = models.JSONField(default=list, blank=True)
    tools = models.JSONField(default=list, blank=True, help_text="List of {name, image_url}.")
    user_confirmed = models.BooleanField(default=False)
    user_confirmed_at = models.DateTimeField(null=True, blank=True)
    resubmission_reason = models.TextField(blank=True)

    pic_approved = models.BooleanField(default=False)
    pic_approved_at = models.DateTimeField(null=True, blank=True)
    pic_approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    pic_comments = models.TextField(blank=True)

    otp_code = models.CharField(max_length=8, blank=True)
    otp_expires_at = models.DateTimeField(null=True, blank=True)
    otp_verified = models.BooleanField(default=False)
    otp_verified_at = models.DateTimeField(null=True, blank=True)
    otp_verified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )

    pickup_parking = models.ForeignKey(
        Parking,
        related_name="pickup_bookings",
        on_delete=models.PROTECT,
    )
    dropoff_parking = models.ForeignKey(
        Parking,
        related_name="dropoff_bookings",
        on_delete=models.PROTECT,
    )
    reschedule_count = models.PositiveIntegerField(default=0)
    max_reschedule_count = models.PositiveIntegerField(default=3)

    return_condition = models.CharField(
        max_length=8,
        choices=ReturnCondition.choices,
        blank=True,
    )
    return_images = models.JSONField(default=list, blank=True)
    return_comments = models.TextField(blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["car", "start_date", "end_date"], name="booking_car_window_idx"),
            models.Index(fields=["user", "status"], name="booking_user_status_idx"),
            models.Index(fields=["pickup_parking", "status"], name="booking_pickup_status_idx"),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"Booking #{self.pk} for car {self.car_id} ({self.status})"

    @property
    def effective_end(self):
        return self.extension_till or self.end_date

    @property
    def expected_pickup(self):
        return self.pickup_date or self.start_date

    def is_terminal(self) -> bool:
        """Return True if the booking reached a terminal state."""
        return self.status in {
            self.Status.CANCELLED,
            self.Status.COMPLETED,
        }

    def otp_is_live(self, now=None) -> bool:
        """True while an issued, unverified OTP has not expired."""
        current_time = now or timezone.now()
        return bool(
            self.otp_code
            and not self.otp_verified
            and self.otp_expires_at
            and current_time <= self.otp_expires_at
        )


class TopupQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)


class Topup(models.Model):
    """Purchasable rental extension: a fixed number of hours for a fixed price."""

    class Category(models.TextChoices):
        EXTENSION = "extension", "Extension"
        EMERGENCY = "emergency", "Emergency"
        PREMIUM = "premium", "Premium"

    name = models.CharField(max_length=140)
    description = models.TextField(blank=True)
    duration_hours = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=10, decimal_places=2)
    category = models.CharField(
        max_length=12,
        choices=Category.choices,
        default=Category.EXTENSION,
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TopupQuerySet.as_manager()

    class Meta:
        ordering = ["duration_hours", "price"]

    def __str__(self) -> str:
        return f"{self.name} (+{self.duration_hours}h)"


class BookingTopup(models.Model):
    """Append-only record of one extension applied to a booking."""

    booking = models.ForeignKey(Booking, related_name="topups", on_delete=models.CASCADE)
    topup = models.ForeignKey(Topup, related_name="applications", on_delete=models.PROTECT)
    applied_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    applied_at = models.DateTimeField(default=timezone.now)
    original_end = models.DateTimeField()
    new_end = models.DateTimeField()
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    payment = models.ForeignKey(
        "payments.Payment",
        related_name="+",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
    )
    payment_reference_id = models.CharField(max_length=255, unique=True)

    class Meta:
        ordering = ["applied_at", "id"]

    def __str__(self) -> str:
        return f"Topup {self.topup_id} on booking {self.booking_id}"


class BookingEvent(models.Model):
    """Append-only audit log of lifecycle transitions."""

    class Type(models.TextChoices):
        CREATED = "created", "Created"
        ADVANCE_PAID = "advance_paid", "Advance paid"
        OTP_ISSUED = "otp_issued", "OTP issued"
        OTP_VERIFIED = "otp_verified", "OTP verified"
        CONFIRMATION_SUBMITTED = "confirmation_submitted", "Confirmation submitted"
        CONFIRMATION_REVIEWED = "confirmation_reviewed", "Confirmation reviewed"
        CONFIRMATION_RESUBMITTED = "confirmation_resubmitted", "Confirmation resubmitted"
        FINAL_PAID = "final_paid", "Final payment"
        PICKED_UP = "picked_up", "Picked up"
        TOPUP_APPLIED = "topup_applied", "Topup applied"
        RETURNED = "returned", "Returned"
        RESCHEDULED = "rescheduled", "Rescheduled"
        CANCELLED = "cancelled", "Cancelled"

    booking = models.ForeignKey(Booking, related_name="events", on_delete=models.CASCADE)
    type = models.CharField(max_length=32, choices=Type.choices)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="booking_events",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["booking", "created_at"], name="booking_event_created_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.type} on booking {self.booking_id}"
