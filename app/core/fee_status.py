"""
Student fee status derivation.

Status is never patched incrementally: it is recomputed from
(amount_owed, paid_to_date, due_date) after every write to a student fee.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from app.core.enums import StudentFeeStatus


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def derive_status(
    amount_owed: Decimal,
    paid_to_date: Decimal,
    due_date: date,
    today: Optional[date] = None,
) -> StudentFeeStatus:
    """
    PAID once paid_to_date reaches amount_owed (even after the due date has passed),
    PARTIAL while something but not everything is paid, otherwise OVERDUE or PENDING
    depending on whether today is past the due date.
    """
    if today is None:
        today = utc_today()
    if paid_to_date >= amount_owed:
        return StudentFeeStatus.PAID
    if paid_to_date > 0:
        return StudentFeeStatus.PARTIAL
    if today > due_date:
        return StudentFeeStatus.OVERDUE
    return StudentFeeStatus.PENDING


def apply_status(student_fee, today: Optional[date] = None) -> StudentFeeStatus:
    """Recompute and set student_fee.status in place. Returns the new status."""
    new_status = derive_status(
        Decimal(str(student_fee.amount_owed)),
        Decimal(str(student_fee.paid_to_date or 0)),
        student_fee.due_date,
        today,
    )
    student_fee.status = new_status.value
    return new_status
