"""Return-time evaluation for bookings, as a pure function of the clock."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

ONTIME = "ontime"
LATE = "late"
TOPUP_ONTIME = "topup/ontime"
TOPUP_LATE = "topup/late"

ONE_HOUR = timedelta(hours=1)


@dataclass(frozen=True)
class OverdueStatus:
    effective_end: datetime
    is_overdue: bool
    has_topup: bool
    status: str
    overdue_hours: int
    requires_action: bool

    def as_dict(self) -> dict:
        return {
            "effective_end": self.effective_end.isoformat(),
            "is_overdue": self.is_overdue,
            "has_topup": self.has_topup,
            "status": self.status,
            "overdue_hours": self.overdue_hours,
            "requires_action": self.requires_action,
        }


def evaluate(
    now: datetime,
    end_date: datetime,
    extension_till: Optional[datetime] = None,
) -> OverdueStatus:
    """
    Classify a rental at `now` against its effective end.

    The effective end is the extension end when one exists. A rental is overdue
    only strictly after that instant; partial hours late round up.
    """
    effective_end = extension_till or end_date
    is_overdue = now > effective_end
    has_topup = extension_till is not None
    if has_topup:
        status = TOPUP_LATE if is_overdue else TOPUP_ONTIME
    else:
        status = LATE if is_overdue else ONTIME
    overdue_hours = math.ceil((now - effective_end) / ONE_HOUR) if is_overdue else 0
    return OverdueStatus(
        effective_end=effective_end,
        is_overdue=is_overdue,
        has_topup=has_topup,
        status=status,
        overdue_hours=overdue_hours,
        requires_action=is_overdue and overdue_hours >= 1,
    )


def evaluate_booking(booking, now: datetime) -> OverdueStatus:
    return evaluate(now, booking.end_date, booking.extension_till)
