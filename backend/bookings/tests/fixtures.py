"""Shared fixtures for bookings tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from bookings import services
from bookings.models import Booking, Topup
from cars.models import Car, Parking
from coupons.models import Coupon

User = get_user_model()


def _create_user(*, username: str, role: str = User.Role.USER, **extra) -> User:
    extra.setdefault("is_verified", True)
    return User.objects.create_user(
        username=username,
        password="testpass",
        email=f"{username}@example.com",
        role=role,
        **extra,
    )


def auth_client(user) -> APIClient:
    client = APIClient()
    resp = client.post(
        "/api/users/token/",
        {"username": user.username, "password": "testpass"},
        format="json",
    )
    token = resp.data["access"]
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
    return client


@pytest.fixture
def now() -> datetime:
    return timezone.now().replace(minute=0, second=0, microsecond=0)


@pytest.fixture
def parking():
    return Parking.objects.create(name="MG Road Hub", locality="MG Road", city="Bengaluru", capacity=40)


@pytest.fixture
def other_parking():
    return Parking.objects.create(name="Airport Lot", locality="Devanahalli", city="Bengaluru")


@pytest.fixture
def renter_user():
    return _create_user(username="renter")


@pytest.fixture
def other_user():
    return _create_user(username="other")


@pytest.fixture
def unverified_user():
    return _create_user(username="unverified", is_verified=False)


@pytest.fixture
def vendor_user():
    return _create_user(username="vendor", role=User.Role.VENDOR)


@pytest.fixture
def admin_user():
    return _create_user(username="admin", role=User.Role.ADMIN)


@pytest.fixture
def staff_user(parking):
    return _create_user(username="pic", role=User.Role.PARKING_INCHARGE, parking=parking)


@pytest.fixture
def other_staff_user(other_parking):
    return _create_user(
        username="pic-airport",
        role=User.Role.PARKING_INCHARGE,
        parking=other_parking,
    )


@pytest.fixture
def car(vendor_user, parking):
    return Car.objects.create(
        name="Hyundai Creta",
        number="KA01AB1234",
        vendor=vendor_user,
        parking=parking,
        price=Decimal("2000.00"),
        insurance_amount=Decimal("300.00"),
    )


@pytest.fixture
def topup():
    return Topup.objects.create(name="Extra 3 hours", duration_hours=3, price=Decimal("450.00"))


@pytest.fixture
def coupon_factory(now) -> Callable[..., Coupon]:
    def _make(**overrides) -> Coupon:
        data = {
            "code": "WELCOME10",
            "discount_type": Coupon.DiscountType.PERCENTAGE,
            "discount_amount": Decimal("10"),
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=30),
        }
        data.update(overrides)
        return Coupon.objects.create(**data)

    return _make


@pytest.fixture
def booking_factory(renter_user, car, now) -> Callable[..., Booking]:
    """Create a booking through the service layer, starting a day from now."""

    def _make(
        *,
        user=None,
        start: datetime | None = None,
        days: int = 2,
        **kwargs,
    ) -> Booking:
        start = start or now + timedelta(days=1)
        kwargs.setdefault("car_id", car.id)
        kwargs.setdefault("now", now)
        return services.create_booking(
            user=user or renter_user,
            start=start,
            end=start + timedelta(days=days),
            **kwargs,
        )

    return _make


@pytest.fixture
def advance_booking(booking_factory, renter_user, now) -> Booking:
    booking = booking_factory()
    return services.confirm_advance_payment(
        booking.id,
        actor=renter_user,
        reference_id="pay_adv_1",
        now=now,
    )


@pytest.fixture
def approved_booking(advance_booking, renter_user, staff_user, now) -> Booking:
    """Advance paid, OTP verified and the condition report approved."""
    services.verify_otp(
        advance_booking.id,
        actor=staff_user,
        code=advance_booking.otp_code,
        now=now,
    )
    services.submit_confirmation(
        advance_booking.id,
        actor=renter_user,
        images=["https://cdn.example.com/front.jpg"],
        now=now,
    )
    return services.review_confirmation(
        advance_booking.id,
        actor=staff_user,
        approved=True,
        now=now,
    )


@pytest.fixture
def confirmed_booking(approved_booking, renter_user, now) -> Booking:
    return services.confirm_final_payment(
        approved_booking.id,
        actor=renter_user,
        reference_id="pay_final_1",
        now=now,
    )


@pytest.fixture
def active_booking(confirmed_booking, staff_user, now) -> Booking:
    return services.confirm_pickup(
        confirmed_booking.id,
        actor=staff_user,
        now=now + timedelta(days=1),
    )
