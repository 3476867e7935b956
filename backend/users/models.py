from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Platform account; `role` decides which booking operations a user may run."""

    class Role(models.TextChoices):
        USER = "user", "User"
        ADMIN = "admin", "Admin"
        VENDOR = "vendor", "Vendor"
        PARKING_INCHARGE = "parkingincharge", "Parking in charge"

    role = models.CharField(max_length=20, choices=Role.choices, default=Role.USER)
    phone = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional E.164 formatted phone number.",
    )
    is_verified = models.BooleanField(
        default=False,
        help_text="Identity checked; only verified users can create bookings.",
    )
    parking = models.ForeignKey(
        "cars.Parking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="staff",
        help_text="Parking lot a parking in-charge operates.",
    )

    def is_admin(self) -> bool:
        return self.role == self.Role.ADMIN or bool(self.is_superuser)

    def is_parking_staff(self) -> bool:
        return self.role == self.Role.PARKING_INCHARGE

    def manages_parking(self, parking_id: int | None) -> bool:
        """True when this user is parking staff assigned to parking_id."""
        return (
            self.is_parking_staff()
            and parking_id is not None
            and self.parking_id == parking_id
        )
