from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q


class Payment(models.Model):
    """
    Confirmed money movement for a booking.

    Payment rows are the only record of what has been paid; bookings point at
    their advance and final payments instead of carrying paid flags.
    """

    class Type(models.TextChoices):
        ADVANCE = "advance", "Advance"
        FINAL = "final", "Final"
        TOPUP = "topup", "Topup"
        REFUND = "refund", "Refund"
        PENALTY = "penalty", "Penalty"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"

    class Method(models.TextChoices):
        RAZORPAY = "razorpay", "Razorpay"
        STRIPE = "stripe", "Stripe"
        UPI = "upi", "UPI"
        CARD = "card", "Card"
        NETBANKING = "netbanking", "Net banking"
        WALLET = "wallet", "Wallet"
        CASH = "cash", "Cash"

    external_reference_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway payment id supplied by the client after checkout.",
    )
    type = models.CharField(max_length=12, choices=Type.choices)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.PENDING)
    method = models.CharField(max_length=16, choices=Method.choices, default=Method.RAZORPAY)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    fees = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=8, default="inr")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="payments",
    )
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    refund_reason = models.TextField(blank=True)
    refund_reference_id = models.CharField(max_length=255, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booking", "type"], name="payment_booking_type_idx"),
            models.Index(fields=["user", "created_at"], name="payment_user_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "type"],
                condition=Q(type__in=["advance", "final"]),
                name="payment_single_advance_final_per_booking",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.type} {self.amount} {self.currency} ({self.status})"

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refund_amount
