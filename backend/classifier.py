import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Union

from models import LOAN_RETURNED

Moment = Union[date, datetime]

SECONDS_PER_DAY = 24 * 60 * 60


class LoanState(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


def _as_datetime(value: Moment) -> datetime:
    # Plain dates count from midnight
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime(value.year, value.month, value.day)


def classify(loan, now: Moment) -> LoanState:
    """Display status of a loan at ``now``. Same rule for admin and student views."""
    if loan.status == LOAN_RETURNED:
        return LoanState.RETURNED
    if _as_datetime(now) > _as_datetime(loan.due_date):
        return LoanState.OVERDUE
    return LoanState.ACTIVE


def days_overdue(loan, now: Moment) -> int:
    """Days past the due moment, rounded up, so any overdue loan counts at least one day."""
    if classify(loan, now) != LoanState.OVERDUE:
        return 0
    late = _as_datetime(now) - _as_datetime(loan.due_date)
    return math.ceil(late.total_seconds() / SECONDS_PER_DAY)
