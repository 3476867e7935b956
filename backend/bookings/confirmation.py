"""Car-condition confirmation sub-workflow: submit, review, resubmit."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Iterable, Sequence

from core.exceptions import InvalidState

from .models import Booking

CONFIRMATION_FIELDS = [
    "car_condition_images",
    "tool_images",
    "tools",
    "user_confirmed",
    "user_confirmed_at",
    "confirmation_status",
    "resubmission_reason",
    "pic_approved",
    "pic_approved_at",
    "pic_approved_by",
    "pic_comments",
]


@dataclass(frozen=True)
class Tool:
    """An accessory handed over with the car, with a photo of it."""

    name: str
    image_url: str

    @classmethod
    def from_dict(cls, data: dict) -> "Tool":
        return cls(name=str(data["name"]), image_url=str(data["image_url"]))

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


def _store_evidence(
    booking: Booking,
    images: Sequence[str],
    tool_images: Sequence[str],
    tools: Iterable[Tool],
) -> None:
    booking.car_condition_images = list(images)
    booking.tool_images = list(tool_images)
    booking.tools = [tool.as_dict() for tool in tools]


def submit(
    booking: Booking,
    *,
    images: Sequence[str],
    tool_images: Sequence[str],
    tools: Iterable[Tool],
    now: datetime,
) -> None:
    """Record the renter's condition report and queue it for staff review."""
    if booking.advance_payment_id is None:
        raise InvalidState("Pay the advance before confirming the car's condition.")
    if booking.confirmation_status not in {
        Booking.ConfirmationStatus.PENDING,
        Booking.ConfirmationStatus.PENDING_APPROVAL,
    }:
        raise InvalidState(
            f"Confirmation cannot be submitted while it is {booking.confirmation_status}."
        )
    _store_evidence(booking, images, tool_images, tools)
    booking.user_confirmed = True
    booking.user_confirmed_at = now
    booking.confirmation_status = Booking.ConfirmationStatus.PENDING_APPROVAL


def review(
    booking: Booking,
    *,
    approved: bool,
    comments: str,
    reviewer,
    now: datetime,
) -> None:
    """Apply a staff decision to a submitted condition report."""
    if booking.confirmation_status != Booking.ConfirmationStatus.PENDING_APPROVAL:
        raise InvalidState("There is no confirmation awaiting review.")
    if approved and not booking.otp_verified:
        raise InvalidState("Verify the customer's OTP before approving the confirmation.")
    booking.pic_approved = approved
    booking.pic_approved_at = now
    booking.pic_approved_by = reviewer
    booking.pic_comments = comments or ""
    booking.confirmation_status = (
        Booking.ConfirmationStatus.APPROVED if approved else Booking.ConfirmationStatus.REJECTED
    )


def resubmit(
    booking: Booking,
    *,
    images: Sequence[str],
    tool_images: Sequence[str],
    tools: Iterable[Tool],
    reason: str,
    now: datetime,
) -> None:
    """Replace rejected evidence and send it back for review."""
    if booking.confirmation_status != Booking.ConfirmationStatus.REJECTED:
        raise InvalidState("Only rejected confirmations can be resubmitted.")
    _store_evidence(booking, images, tool_images, tools)
    booking.resubmission_reason = reason or ""
    booking.pic_approved = False
    booking.pic_approved_at = None
    booking.pic_approved_by = None
    booking.user_confirmed = True
    booking.user_confirmed_at = now
    booking.confirmation_status = Booking.ConfirmationStatus.PENDING_APPROVAL
