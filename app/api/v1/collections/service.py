"""Collection rollups derived on read from payments and student fees. Nothing is materialized."""

from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import OPEN_STATUSES, StudentFeeStatus
from app.core.exceptions import ServiceError
from app.core.fee_status import utc_today
from app.core.models import Payment, StudentFee
from app.core.money import to_money

from .schemas import CollectionSummary, MonthlyCollection


def _shift_month(d: date, months: int) -> date:
    """First day of the month `months` away from d's month (negative goes back)."""
    year, month = divmod(d.year * 12 + d.month - 1 + months, 12)
    return date(year, month + 1, 1)


def _day_bounds(start: date, end: date) -> Tuple[datetime, datetime]:
    """[start 00:00, day after end 00:00) in UTC."""
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


def _month_keys(start: date, end: date) -> List[str]:
    keys = []
    cursor = date(start.year, start.month, 1)
    while cursor <= end:
        keys.append(f"{cursor.year:04d}-{cursor.month:02d}")
        cursor = _shift_month(cursor, 1)
    return keys


def collection_rate(total_paid: Decimal, total_pending: Decimal) -> float:
    """Share of the billed amount already collected, as a percentage. 0 when nothing is billed or paid."""
    billed = total_paid + total_pending
    if billed <= 0:
        return 0.0
    return round(float(total_paid / billed * 100), 2)


async def _sum_payments(db: AsyncSession, tenant_id: UUID, start: date, end: date) -> Decimal:
    lower, upper = _day_bounds(start, end)
    total = (
        await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.tenant_id == tenant_id,
                Payment.payment_date >= lower,
                Payment.payment_date < upper,
            )
        )
    ).scalar()
    return to_money(total)


async def get_collection_summary(
    db: AsyncSession,
    tenant_id: UUID,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    today: Optional[date] = None,
) -> CollectionSummary:
    """
    Payment figures cover [start_date, end_date]. Student fee figures cover every outstanding
    fee unless a window is given explicitly, in which case they are limited to fees due inside it.
    Without a window the last COLLECTION_SUMMARY_MONTHS calendar months up to today are used.
    """
    if today is None:
        today = utc_today()
    window_given = start_date is not None or end_date is not None
    end = end_date or today
    start = start_date or _shift_month(end, -(settings.collection_summary_months - 1))
    if start > end:
        raise ServiceError("start_date must not be after end_date", status.HTTP_400_BAD_REQUEST)

    # Payments in window, grouped by calendar month
    lower, upper = _day_bounds(start, end)
    payment_rows = (
        await db.execute(
            select(Payment.payment_date, Payment.amount).where(
                Payment.tenant_id == tenant_id,
                Payment.payment_date >= lower,
                Payment.payment_date < upper,
            )
        )
    ).all()
    by_month: Dict[str, Decimal] = defaultdict(Decimal)
    total_paid = Decimal("0")
    for paid_at, amount in payment_rows:
        amount = to_money(amount)
        total_paid += amount
        by_month[f"{paid_at.year:04d}-{paid_at.month:02d}"] += amount

    month_start = date(today.year, today.month, 1)
    payments_this_month = await _sum_payments(db, tenant_id, month_start, today)

    # Outstanding student fees by status
    balance = StudentFee.amount_owed - StudentFee.paid_to_date
    fee_stmt = (
        select(
            StudentFee.status,
            func.count(StudentFee.id),
            func.coalesce(func.sum(balance), 0),
        )
        .where(StudentFee.tenant_id == tenant_id)
        .group_by(StudentFee.status)
    )
    if window_given:
        fee_stmt = fee_stmt.where(StudentFee.due_date >= start, StudentFee.due_date <= end)
    totals = {row_status: (int(count), to_money(amount)) for row_status, count, amount in (await db.execute(fee_stmt)).all()}

    pending_count = sum(totals.get(s, (0, 0))[0] for s in OPEN_STATUSES)
    total_pending = sum((totals.get(s, (0, Decimal("0")))[1] for s in OPEN_STATUSES), Decimal("0"))
    overdue_count, overdue_amount = totals.get(StudentFeeStatus.OVERDUE.value, (0, Decimal("0")))

    return CollectionSummary(
        start_date=start,
        end_date=end,
        total_paid=to_money(total_paid),
        payments_this_month=payments_this_month,
        total_pending=to_money(total_pending),
        pending_count=pending_count,
        overdue_count=overdue_count,
        overdue_amount=to_money(overdue_amount),
        collection_rate=collection_rate(total_paid, total_pending),
        monthly_collection=[
            MonthlyCollection(month=key, amount=to_money(by_month.get(key, Decimal("0"))))
            for key in _month_keys(start, end)
        ],
    )
