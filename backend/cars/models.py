from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class Parking(models.Model):
    """Physical lot where cars are picked up and dropped off."""

    name = models.CharField(max_length=140)
    locality = models.CharField(max_length=140, blank=True)
    city = models.CharField(max_length=60)
    capacity = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["city", "name"]

    def __str__(self) -> str:
        return f"{self.name} ({self.city})"


class CarQuerySet(models.QuerySet):
    def bookable(self):
        return self.filter(is_active=True).exclude(
            status__in=[
                Car.Status.MAINTENANCE,
                Car.Status.UNAVAILABLE,
                Car.Status.OUT_OF_SERVICE,
            ]
        )


class Car(models.Model):
    class Status(models.TextChoices):
        AVAILABLE = "available", "Available"
        BOOKED = "booked", "Booked"
        MAINTENANCE = "maintenance", "Maintenance"
        UNAVAILABLE = "unavailable", "Unavailable"
        OUT_OF_SERVICE = "out_of_service", "Out of service"

    name = models.CharField(max_length=140)
    number = models.CharField(max_length=32, unique=True, help_text="Registration plate.")
    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="cars",
    )
    parking = models.ForeignKey(
        Parking,
        on_delete=models.PROTECT,
        related_name="cars",
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        help_text="Daily rate.",
    )
    discount_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
        help_text="Discounted daily rate; used instead of price when set.",
    )
    insurance_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(0)],
        help_text="Flat insurance charge added to every booking.",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.AVAILABLE,
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CarQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["parking", "status"], name="car_parking_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} [{self.number}]"

    @property
    def daily_rate(self) -> Decimal:
        if self.discount_price:
            return self.discount_price
        return self.price
