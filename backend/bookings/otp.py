"""
Pickup OTP issuance and verification.

The renter receives a short numeric code once the advance is paid and reads it
out to the parking staff at handover. Codes expire relative to the expected
pickup time rather than after a flat TTL, and expiry is only ever checked
lazily against the stored timestamp.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from django.conf import settings

from core.exceptions import Conflict, Unprocessable

from .models import Booking

CODE_DIGITS = 4

OTP_FIELDS = [
    "otp_code",
    "otp_expires_at",
    "otp_verified",
    "otp_verified_at",
    "otp_verified_by",
]


class OTPNotIssued(Unprocessable):
    default_detail = "No OTP has been issued for this booking."
    default_code = "otp_not_issued"


class OTPExpired(Unprocessable):
    default_detail = "The OTP has expired. Ask the customer to request a new one."
    default_code = "otp_expired"


class OTPMismatch(Unprocessable):
    default_detail = "The OTP does not match."
    default_code = "otp_mismatch"


class OTPAlreadyVerified(Conflict):
    default_detail = "The OTP for this booking was already verified."
    default_code = "otp_already_verified"


def generate_code() -> str:
    return f"{secrets.randbelow(10**CODE_DIGITS):0{CODE_DIGITS}d}"


def compute_expiry(pickup_at: datetime, *, now: datetime) -> datetime:
    """Valid until the pickup grace window closes, but never shorter than the minimum TTL."""
    grace = timedelta(minutes=settings.OTP_PICKUP_GRACE_MINUTES)
    floor = now + timedelta(minutes=settings.OTP_MIN_TTL_MINUTES)
    return max(pickup_at + grace, floor)


def issue(booking: Booking, *, now: datetime) -> str:
    """Attach a fresh code to `booking` (unsaved) and clear any prior verification."""
    code = generate_code()
    booking.otp_code = code
    booking.otp_expires_at = compute_expiry(booking.expected_pickup, now=now)
    booking.otp_verified = False
    booking.otp_verified_at = None
    booking.otp_verified_by = None
    return code


def check(booking: Booking, code: str, *, now: datetime) -> None:
    """
    Raise unless `code` verifies the booking's OTP at `now`.

    An expired code fails as expired even when it matches.
    """
    if not booking.otp_code:
        raise OTPNotIssued()
    if booking.otp_verified:
        raise OTPAlreadyVerified()
    if booking.otp_expires_at is None or now > booking.otp_expires_at:
        raise OTPExpired()
    candidate = (code or "").strip()
    if len(candidate) != CODE_DIGITS or not candidate.isdigit():
        raise OTPMismatch()
    if not secrets.compare_digest(candidate, booking.otp_code):
        raise OTPMismatch()


def mark_verified(booking: Booking, *, by, now: datetime) -> None:
    booking.otp_verified = True
    booking.otp_verified_at = now
    booking.otp_verified_by = by


def should_regenerate(booking: Booking, new_pickup: datetime, *, now: datetime) -> bool:
    """True when moving pickup to `new_pickup` shifts the code's expiry materially."""
    if not booking.otp_code or booking.otp_expires_at is None:
        return True
    drift = timedelta(minutes=settings.OTP_REGENERATE_DRIFT_MINUTES)
    recomputed = compute_expiry(new_pickup, now=now)
    return abs(recomputed - booking.otp_expires_at) > drift
