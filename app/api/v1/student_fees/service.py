"""Student fees service: single assignment, assign-by-grade, administrator corrections, overdue refresh.

Every write re-derives status through app.core.fee_status and appends a fee audit row
in the same transaction.
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.directory import get_grade, get_student, list_students
from app.core.enums import StudentFeeStatus
from app.core.exceptions import ServiceError
from app.core.fee_audit import log_fee_audit
from app.core.fee_status import apply_status, derive_status, utc_today
from app.core.models import FeePayment, FeeTemplate, Student, StudentFee
from app.core.money import to_money

from .schemas import (
    AssignByGradeRequest,
    AssignByGradeResponse,
    RefreshOverdueResponse,
    StudentFeeCreate,
    StudentFeeResponse,
    StudentFeeUpdate,
)

logger = logging.getLogger(__name__)

UNIQUE_KEY = ("student_id", "fee_id", "academic_year", "term")

DUPLICATE_MESSAGE = "This student already has this fee for the given academic year and term"


def _tag(val: Optional[str]) -> str:
    """Untagged academic year / term are stored as '' so the unique key treats them as equal."""
    return (val or "").strip()


def _untag(val: Optional[str]) -> Optional[str]:
    return val or None


def _snapshot(sf: StudentFee) -> dict:
    return {
        "student_id": str(sf.student_id),
        "fee_id": str(sf.fee_id),
        "amount_owed": str(to_money(sf.amount_owed)),
        "paid_to_date": str(to_money(sf.paid_to_date)),
        "due_date": sf.due_date.isoformat() if sf.due_date else None,
        "status": sf.status,
        "academic_year": _untag(sf.academic_year),
        "term": _untag(sf.term),
    }


def _to_response(
    sf: StudentFee,
    fee_name: Optional[str] = None,
    fee_frequency: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> StudentFeeResponse:
    amount_owed = to_money(sf.amount_owed)
    paid = to_money(sf.paid_to_date)
    student_name = " ".join(p for p in (first_name, last_name) if p) or None
    return StudentFeeResponse(
        id=sf.id,
        tenant_id=sf.tenant_id,
        student_id=sf.student_id,
        student_name=student_name,
        fee_id=sf.fee_id,
        fee_name=fee_name,
        fee_frequency=fee_frequency,
        amount_owed=amount_owed,
        paid_to_date=paid,
        balance=amount_owed - paid,
        due_date=sf.due_date,
        status=sf.status,
        academic_year=_untag(sf.academic_year),
        term=_untag(sf.term),
        notes=sf.notes,
        created_at=sf.created_at,
        updated_at=sf.updated_at,
    )


def _student_fee_query(tenant_id: UUID):
    return (
        select(
            StudentFee,
            FeeTemplate.name.label("fee_name"),
            FeeTemplate.frequency.label("fee_frequency"),
            Student.first_name,
            Student.last_name,
        )
        .join(FeeTemplate, StudentFee.fee_id == FeeTemplate.id)
        .join(Student, StudentFee.student_id == Student.id)
        .where(StudentFee.tenant_id == tenant_id)
    )


async def lock_student_fees(
    db: AsyncSession,
    tenant_id: UUID,
    student_fee_ids: Iterable[UUID],
) -> Dict[UUID, StudentFee]:
    """
    Row-lock the given student fees for the rest of the transaction and return them by id.
    Locks are taken in id order so two writers touching overlapping sets cannot deadlock.
    """
    ids = sorted(set(student_fee_ids), key=str)
    if not ids:
        return {}
    stmt = (
        select(StudentFee)
        .where(StudentFee.id.in_(ids), StudentFee.tenant_id == tenant_id)
        .order_by(StudentFee.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return {sf.id: sf for sf in result.scalars().all()}


# --- Read ---
async def list_student_fees(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: Optional[UUID] = None,
    status_filter: Optional[StudentFeeStatus] = None,
) -> List[StudentFeeResponse]:
    stmt = _student_fee_query(tenant_id)
    if student_id is not None:
        stmt = stmt.where(StudentFee.student_id == student_id)
    if status_filter is not None:
        stmt = stmt.where(StudentFee.status == StudentFeeStatus(status_filter).value)
    stmt = stmt.order_by(StudentFee.due_date, StudentFee.created_at)
    result = await db.execute(stmt)
    return [_to_response(*row) for row in result.all()]


async def get_student_fee(
    db: AsyncSession,
    tenant_id: UUID,
    student_fee_id: UUID,
) -> Optional[StudentFeeResponse]:
    result = await db.execute(_student_fee_query(tenant_id).where(StudentFee.id == student_fee_id))
    row = result.first()
    return _to_response(*row) if row else None


# --- Single assignment ---
async def create_student_fee(
    db: AsyncSession,
    tenant_id: UUID,
    payload: StudentFeeCreate,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> StudentFeeResponse:
    amount = to_money(payload.amount)
    if amount <= 0:
        raise ServiceError("Amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
    student = await get_student(db, tenant_id, payload.student_id)
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    fee = (
        await db.execute(
            select(FeeTemplate).where(
                FeeTemplate.id == payload.fee_id,
                FeeTemplate.tenant_id == tenant_id,
            )
        )
    ).scalar_one_or_none()
    if not fee:
        raise ServiceError("Fee not found", status.HTTP_404_NOT_FOUND)

    sf = StudentFee(
        tenant_id=tenant_id,
        student_id=student.id,
        fee_id=fee.id,
        amount_owed=amount,
        paid_to_date=Decimal("0"),
        due_date=payload.due_date,
        academic_year=_tag(payload.academic_year),
        term=_tag(payload.term),
        notes=(payload.notes or "").strip() or None,
    )
    apply_status(sf, today)
    try:
        db.add(sf)
        await db.flush()
        await log_fee_audit(db, tenant_id, "student_fees", sf.id, "CREATE", None, _snapshot(sf), changed_by)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(
            "Rejected duplicate student fee: student %s fee %s (%s/%s)",
            payload.student_id, payload.fee_id, payload.academic_year, payload.term,
        )
        raise ServiceError(DUPLICATE_MESSAGE, status.HTTP_409_CONFLICT)
    logger.info("Assigned fee %s to student %s as student fee %s", fee.id, student.id, sf.id)
    return await get_student_fee(db, tenant_id, sf.id)


# --- Bulk assignment ---
def _insert_ignoring_duplicates(db: AsyncSession):
    """
    INSERT that skips rows colliding on the student fee unique key and returns inserted ids.
    Execute it with the rows as a parameter list so the driver batches them under its bind limit.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise ServiceError(f"Bulk assignment is not supported on {dialect}", status.HTTP_501_NOT_IMPLEMENTED)
    return (
        insert(StudentFee)
        .on_conflict_do_nothing(index_elements=list(UNIQUE_KEY))
        .returning(StudentFee.id)
    )


async def assign_by_grade(
    db: AsyncSession,
    tenant_id: UUID,
    payload: AssignByGradeRequest,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> AssignByGradeResponse:
    """
    Expand every active fee template scoped to the grade (or to all grades) into one student fee
    per student in the grade. Existing (student, fee, academic year, term) rows are left untouched,
    so re-running the assignment is harmless.
    """
    grade = await get_grade(db, tenant_id, payload.grade_id)
    if not grade:
        raise ServiceError("Grade not found", status.HTTP_404_NOT_FOUND)
    grade_id = grade.id

    academic_year = _tag(payload.academic_year)
    term = _tag(payload.term)

    for attempt in (1, 2):
        fees = (
            await db.execute(
                select(FeeTemplate)
                .where(
                    FeeTemplate.tenant_id == tenant_id,
                    FeeTemplate.is_active.is_(True),
                    or_(FeeTemplate.grade_id.is_(None), FeeTemplate.grade_id == grade_id),
                )
                .order_by(FeeTemplate.name)
            )
        ).scalars().all()
        if not fees:
            raise ServiceError("No active fees found for this grade", status.HTTP_404_NOT_FOUND)

        students = await list_students(db, tenant_id, grade_id)
        if not students:
            raise ServiceError("No students found in this grade", status.HTTP_404_NOT_FOUND)

        now = datetime.utcnow()
        rows = []
        for student in students:
            for fee in fees:
                amount = to_money(fee.amount)
                rows.append(
                    {
                        "id": uuid.uuid4(),
                        "tenant_id": tenant_id,
                        "student_id": student.id,
                        "fee_id": fee.id,
                        "amount_owed": amount,
                        "paid_to_date": Decimal("0"),
                        "due_date": payload.due_date,
                        "status": derive_status(amount, Decimal("0"), payload.due_date, today).value,
                        "academic_year": academic_year,
                        "term": term,
                        "created_at": now,
                        "updated_at": now,
                    }
                )

        try:
            result = await db.execute(_insert_ignoring_duplicates(db), rows)
            inserted_ids = list(result.scalars().all())
            await log_fee_audit(
                db, tenant_id, "student_fees", grade_id,
                "BULK_ASSIGN",
                None,
                {
                    "grade_id": str(grade_id),
                    "due_date": payload.due_date.isoformat(),
                    "academic_year": _untag(academic_year),
                    "term": _untag(term),
                    "students_count": len(students),
                    "fees_count": len(fees),
                    "assigned_count": len(inserted_ids),
                },
                changed_by,
            )
            await db.commit()
            break
        except IntegrityError:
            await db.rollback()
            if attempt == 2:
                raise ServiceError("Fee assignment conflicted with a concurrent change", status.HTTP_409_CONFLICT)
            logger.warning("Assign-by-grade for grade %s hit an integrity error, retrying once", grade_id)

    assigned = len(inserted_ids)
    logger.info(
        "Assigned %s student fees to %s students in grade %s (%s fees, %s already present)",
        assigned, len(students), grade_id, len(fees), len(rows) - assigned,
    )
    return AssignByGradeResponse(
        message=f"Assigned {assigned} fees to {len(students)} students",
        students_count=len(students),
        fees_count=len(fees),
        assigned_count=assigned,
        skipped_count=len(rows) - assigned,
    )


# --- Corrections ---
async def update_student_fee(
    db: AsyncSession,
    tenant_id: UUID,
    student_fee_id: UUID,
    payload: StudentFeeUpdate,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> Optional[StudentFeeResponse]:
    """
    Administrator correction. paid_to_date is never touched; amount cannot drop below it.
    An explicit status is kept only when neither amount nor due_date change in the same call,
    otherwise the status is re-derived.
    """
    locked = await lock_student_fees(db, tenant_id, [student_fee_id])
    sf = locked.get(student_fee_id)
    if not sf:
        await db.rollback()
        return None
    old = _snapshot(sf)
    fields = payload.model_dump(exclude_unset=True)

    try:
        if "amount" in fields:
            if payload.amount is None or to_money(payload.amount) <= 0:
                raise ServiceError("Amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
            amount = to_money(payload.amount)
            paid = to_money(sf.paid_to_date)
            if amount < paid:
                raise ServiceError(
                    f"Amount cannot be less than the amount already paid ({paid})",
                    status.HTTP_400_BAD_REQUEST,
                )
            sf.amount_owed = amount
        if "due_date" in fields:
            if payload.due_date is None:
                raise ServiceError("Due date cannot be empty", status.HTTP_400_BAD_REQUEST)
            sf.due_date = payload.due_date
    except ServiceError:
        await db.rollback()
        raise
    if "academic_year" in fields:
        sf.academic_year = _tag(payload.academic_year)
    if "term" in fields:
        sf.term = _tag(payload.term)
    if "notes" in fields:
        sf.notes = (payload.notes or "").strip() or None

    inputs_changed = "amount" in fields or "due_date" in fields
    if payload.status is not None and not inputs_changed:
        sf.status = StudentFeeStatus(payload.status).value
    else:
        apply_status(sf, today)

    try:
        await log_fee_audit(db, tenant_id, "student_fees", sf.id, "UPDATE", old, _snapshot(sf), changed_by)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(DUPLICATE_MESSAGE, status.HTTP_409_CONFLICT)
    logger.info("Updated student fee %s: status %s -> %s", sf.id, old["status"], sf.status)
    return await get_student_fee(db, tenant_id, sf.id)


async def delete_student_fee(
    db: AsyncSession,
    tenant_id: UUID,
    student_fee_id: UUID,
    changed_by: Optional[UUID] = None,
) -> bool:
    """Hard delete. Allocations pointing at it go with it; the payments stay as receipts."""
    locked = await lock_student_fees(db, tenant_id, [student_fee_id])
    sf = locked.get(student_fee_id)
    if not sf:
        await db.rollback()
        return False
    old = _snapshot(sf)
    await db.execute(
        delete(FeePayment)
        .where(FeePayment.student_fee_id == sf.id, FeePayment.tenant_id == tenant_id)
    )
    await db.execute(
        delete(StudentFee)
        .where(StudentFee.id == sf.id, StudentFee.tenant_id == tenant_id)
    )
    await log_fee_audit(db, tenant_id, "student_fees", sf.id, "DELETE", old, None, changed_by)
    await db.commit()
    logger.info("Deleted student fee %s (paid to date %s)", student_fee_id, old["paid_to_date"])
    return True


async def refresh_overdue(
    db: AsyncSession,
    tenant_id: UUID,
    today: Optional[date] = None,
    changed_by: Optional[UUID] = None,
) -> RefreshOverdueResponse:
    """
    Re-derive status for unpaid student fees whose due date passed (PENDING -> OVERDUE) or
    moved forward again (OVERDUE -> PENDING). Rows with any payment are unaffected by the
    due date, so they are never touched here.
    """
    if today is None:
        today = utc_today()
    now = datetime.utcnow()
    unpaid = [StudentFee.tenant_id == tenant_id, StudentFee.paid_to_date == 0]
    overdue_result = await db.execute(
        update(StudentFee)
        .where(
            *unpaid,
            StudentFee.status == StudentFeeStatus.PENDING.value,
            StudentFee.due_date < today,
        )
        .values(status=StudentFeeStatus.OVERDUE.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    pending_result = await db.execute(
        update(StudentFee)
        .where(
            *unpaid,
            StudentFee.status == StudentFeeStatus.OVERDUE.value,
            StudentFee.due_date >= today,
        )
        .values(status=StudentFeeStatus.PENDING.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    marked, restored = overdue_result.rowcount, pending_result.rowcount
    if marked or restored:
        await log_fee_audit(
            db, tenant_id, "student_fees", None,
            "REFRESH_OVERDUE",
            None,
            {"as_of": today.isoformat(), "marked_overdue": marked, "restored_pending": restored},
            changed_by,
        )
    await db.commit()
    logger.info("Overdue refresh for tenant %s: %s marked overdue, %s back to pending", tenant_id, marked, restored)
    return RefreshOverdueResponse(marked_overdue=marked, restored_pending=restored)
