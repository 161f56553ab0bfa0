"""Payments service: record receipts, split them across student fees, and correct or remove them.

Applying or reversing an allocation happens under a row lock on the student fee it touches,
in the same transaction as the payment row itself, so paid_to_date and status never drift
from the allocations that produced them.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.student_fees.service import lock_student_fees
from app.core.directory import get_student
from app.core.enums import PaymentMethod
from app.core.exceptions import ServiceError
from app.core.fee_audit import log_fee_audit
from app.core.fee_status import apply_status
from app.core.models import FeePayment, FeeTemplate, Payment, Student, StudentFee
from app.core.money import to_money

from .schemas import (
    AllocationCreate,
    AllocationResponse,
    PaymentCreate,
    PaymentResponse,
    PaymentUpdate,
)

logger = logging.getLogger(__name__)


def _snapshot(payment: Payment) -> dict:
    return {
        "student_id": str(payment.student_id),
        "amount": str(to_money(payment.amount)),
        "payment_date": payment.payment_date.isoformat() if payment.payment_date else None,
        "method": payment.method,
        "reference_number": payment.reference_number,
        "allocations": [
            {"student_fee_id": str(a.student_fee_id), "amount": str(to_money(a.amount))}
            for a in payment.allocations
        ],
    }


def _fee_state(student_fees: Dict[UUID, StudentFee]) -> Dict[UUID, dict]:
    return {
        sf_id: {"paid_to_date": str(to_money(sf.paid_to_date)), "status": sf.status}
        for sf_id, sf in student_fees.items()
    }


async def _audit_fee_changes(
    db: AsyncSession,
    tenant_id: UUID,
    before: Dict[UUID, dict],
    student_fees: Dict[UUID, StudentFee],
    changed_by: Optional[UUID],
) -> None:
    after = _fee_state(student_fees)
    for sf_id, old in before.items():
        if after[sf_id] != old:
            await log_fee_audit(db, tenant_id, "student_fees", sf_id, "UPDATE", old, after[sf_id], changed_by)


def _check_allocations(allocations: Sequence[AllocationCreate], payment_amount: Decimal) -> Decimal:
    """Shape checks that need no database: positive amounts, no repeats, total within the payment."""
    seen = set()
    total = Decimal("0")
    for alloc in allocations:
        if to_money(alloc.amount) <= 0:
            raise ServiceError("Allocation amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
        if alloc.student_fee_id in seen:
            raise ServiceError(
                f"Student fee {alloc.student_fee_id} appears more than once in the allocations",
                status.HTTP_400_BAD_REQUEST,
            )
        seen.add(alloc.student_fee_id)
        total += to_money(alloc.amount)
    if total > to_money(payment_amount):
        raise ServiceError(
            "Total allocated amount cannot exceed payment amount",
            status.HTTP_400_BAD_REQUEST,
        )
    return total


def _apply_allocations(
    payment: Payment,
    allocations: Sequence[AllocationCreate],
    student_fees: Dict[UUID, StudentFee],
    today: Optional[date],
) -> None:
    """student_fees must already be locked. An allocation may not exceed the fee's remaining balance."""
    for alloc in allocations:
        sf = student_fees.get(alloc.student_fee_id)
        if sf is None:
            raise ServiceError(f"Student fee {alloc.student_fee_id} not found", status.HTTP_404_NOT_FOUND)
        if sf.student_id != payment.student_id:
            raise ServiceError(
                f"Student fee {alloc.student_fee_id} does not belong to this student",
                status.HTTP_400_BAD_REQUEST,
            )
        amount = to_money(alloc.amount)
        balance = to_money(sf.amount_owed) - to_money(sf.paid_to_date)
        if amount > balance:
            raise ServiceError(
                f"Allocation of {amount} to student fee {sf.id} exceeds its remaining balance of {balance}",
                status.HTTP_400_BAD_REQUEST,
            )
        payment.allocations.append(
            FeePayment(tenant_id=payment.tenant_id, student_fee_id=sf.id, amount=amount)
        )
        sf.paid_to_date = to_money(sf.paid_to_date) + amount
        apply_status(sf, today)


def _reverse_allocations(
    payment: Payment,
    student_fees: Dict[UUID, StudentFee],
    today: Optional[date],
) -> None:
    """Undo every allocation of the payment on its (locked) student fees and detach the allocation rows."""
    for alloc in payment.allocations:
        sf = student_fees.get(alloc.student_fee_id)
        if sf is None:
            continue
        paid = to_money(sf.paid_to_date) - to_money(alloc.amount)
        if paid < 0:
            logger.warning(
                "Reversing payment %s would take student fee %s below zero (%s); clamping",
                payment.id, sf.id, paid,
            )
            paid = Decimal("0")
        sf.paid_to_date = paid
        apply_status(sf, today)
    payment.allocations.clear()


async def _build_responses(db: AsyncSession, payments: Sequence[Payment]) -> List[PaymentResponse]:
    if not payments:
        return []
    payment_ids = [p.id for p in payments]
    fee_rows = (
        await db.execute(
            select(FeePayment.id, StudentFee.fee_id, FeeTemplate.name)
            .join(StudentFee, FeePayment.student_fee_id == StudentFee.id)
            .join(FeeTemplate, StudentFee.fee_id == FeeTemplate.id)
            .where(FeePayment.payment_id.in_(payment_ids))
        )
    ).all()
    fee_by_allocation = {alloc_id: (fee_id, fee_name) for alloc_id, fee_id, fee_name in fee_rows}
    students = (
        await db.execute(select(Student).where(Student.id.in_(list({p.student_id for p in payments}))))
    ).scalars().all()
    names = {s.id: s.full_name for s in students}

    out = []
    for p in payments:
        allocations = []
        allocated = Decimal("0")
        for a in p.allocations:
            fee_id, fee_name = fee_by_allocation.get(a.id, (None, None))
            allocated += to_money(a.amount)
            allocations.append(
                AllocationResponse(
                    id=a.id,
                    student_fee_id=a.student_fee_id,
                    fee_id=fee_id,
                    fee_name=fee_name,
                    amount=to_money(a.amount),
                )
            )
        out.append(
            PaymentResponse(
                id=p.id,
                tenant_id=p.tenant_id,
                student_id=p.student_id,
                student_name=names.get(p.student_id),
                amount=to_money(p.amount),
                allocated_amount=allocated,
                unallocated_amount=to_money(p.amount) - allocated,
                payment_date=p.payment_date,
                method=p.method,
                reference_number=p.reference_number,
                notes=p.notes,
                created_by=p.created_by,
                allocations=allocations,
                created_at=p.created_at,
                updated_at=p.updated_at,
            )
        )
    return out


async def _load_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payment_id: UUID,
    for_update: bool = False,
) -> Optional[Payment]:
    stmt = (
        select(Payment)
        .options(selectinload(Payment.allocations))
        .where(Payment.id == payment_id, Payment.tenant_id == tenant_id)
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


# --- Read ---
async def list_payments(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: Optional[UUID] = None,
) -> List[PaymentResponse]:
    stmt = (
        select(Payment)
        .options(selectinload(Payment.allocations))
        .where(Payment.tenant_id == tenant_id)
    )
    if student_id is not None:
        stmt = stmt.where(Payment.student_id == student_id)
    stmt = stmt.order_by(Payment.payment_date.desc(), Payment.created_at.desc())
    payments = (await db.execute(stmt)).scalars().all()
    return await _build_responses(db, payments)


async def get_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payment_id: UUID,
) -> Optional[PaymentResponse]:
    payment = await _load_payment(db, tenant_id, payment_id)
    if not payment:
        return None
    return (await _build_responses(db, [payment]))[0]


# --- Record ---
async def record_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payload: PaymentCreate,
    created_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> PaymentResponse:
    """
    Record a receipt and apply its allocations. Either everything is written (payment,
    allocation rows, paid_to_date and status of every touched fee) or nothing is.
    """
    amount = to_money(payload.amount)
    if amount <= 0:
        raise ServiceError("Amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
    student = await get_student(db, tenant_id, payload.student_id)
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    allocations = payload.allocations or []
    _check_allocations(allocations, amount)

    try:
        student_fees = await lock_student_fees(db, tenant_id, [a.student_fee_id for a in allocations])
        before = _fee_state(student_fees)
        payment = Payment(
            tenant_id=tenant_id,
            student_id=student.id,
            amount=amount,
            payment_date=payload.payment_date,
            method=PaymentMethod(payload.method).value,
            reference_number=(payload.reference_number or "").strip() or None,
            notes=(payload.notes or "").strip() or None,
            created_by=created_by,
            allocations=[],
        )
        db.add(payment)
        _apply_allocations(payment, allocations, student_fees, today)
        await db.flush()
        await log_fee_audit(db, tenant_id, "payments", payment.id, "CREATE", None, _snapshot(payment), created_by)
        await _audit_fee_changes(db, tenant_id, before, student_fees, created_by)
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        logger.warning("Rejected payment for student %s: %s", payload.student_id, e.message)
        raise
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Payment conflicted with a concurrent change", status.HTTP_409_CONFLICT)

    logger.info(
        "Recorded payment %s of %s for student %s across %s fees",
        payment.id, amount, student.id, len(allocations),
    )
    return await get_payment(db, tenant_id, payment.id)


# --- Correct / remove ---
async def update_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payment_id: UUID,
    payload: PaymentUpdate,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> Optional[PaymentResponse]:
    """
    Metadata edits apply directly. A new allocations list first reverses every existing
    allocation and then applies the new ones, all in one transaction. Without new
    allocations the amount may only change while it still covers what is allocated.
    """
    payment = await _load_payment(db, tenant_id, payment_id, for_update=True)
    if not payment:
        await db.rollback()
        return None
    old = _snapshot(payment)
    fields = payload.model_dump(exclude_unset=True)

    try:
        if "amount" in fields and (payload.amount is None or to_money(payload.amount) <= 0):
            raise ServiceError("Amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
        new_amount = to_money(payload.amount) if "amount" in fields else to_money(payment.amount)

        if "allocations" in fields:
            new_allocations = payload.allocations or []
            _check_allocations(new_allocations, new_amount)
            student_fees = await lock_student_fees(
                db,
                tenant_id,
                [a.student_fee_id for a in payment.allocations] + [a.student_fee_id for a in new_allocations],
            )
            before = _fee_state(student_fees)
            _reverse_allocations(payment, student_fees, today)
            # old rows must be gone before re-inserting the same (payment, student fee) pair
            await db.flush()
            _apply_allocations(payment, new_allocations, student_fees, today)
        else:
            student_fees, before = {}, {}
            allocated = sum((to_money(a.amount) for a in payment.allocations), Decimal("0"))
            if allocated > new_amount:
                raise ServiceError(
                    f"Payment amount cannot be less than its allocated total ({allocated})",
                    status.HTTP_400_BAD_REQUEST,
                )

        payment.amount = new_amount
        if "payment_date" in fields:
            if payload.payment_date is None:
                raise ServiceError("Payment date cannot be empty", status.HTTP_400_BAD_REQUEST)
            payment.payment_date = payload.payment_date
        if "method" in fields:
            if payload.method is None:
                raise ServiceError("Payment method cannot be empty", status.HTTP_400_BAD_REQUEST)
            payment.method = PaymentMethod(payload.method).value
        if "reference_number" in fields:
            payment.reference_number = (payload.reference_number or "").strip() or None
        if "notes" in fields:
            payment.notes = (payload.notes or "").strip() or None

        await db.flush()
        await log_fee_audit(db, tenant_id, "payments", payment.id, "UPDATE", old, _snapshot(payment), changed_by)
        await _audit_fee_changes(db, tenant_id, before, student_fees, changed_by)
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        logger.warning("Rejected update of payment %s: %s", payment_id, e.message)
        raise
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Payment conflicted with a concurrent change", status.HTTP_409_CONFLICT)

    logger.info("Updated payment %s", payment_id)
    return await get_payment(db, tenant_id, payment_id)


async def delete_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payment_id: UUID,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> bool:
    """Reverse every allocation of the payment on its student fees, then delete it."""
    payment = await _load_payment(db, tenant_id, payment_id, for_update=True)
    if not payment:
        await db.rollback()
        return False
    old = _snapshot(payment)
    student_fees = await lock_student_fees(db, tenant_id, [a.student_fee_id for a in payment.allocations])
    before = _fee_state(student_fees)
    _reverse_allocations(payment, student_fees, today)
    await db.delete(payment)
    await db.flush()
    await log_fee_audit(db, tenant_id, "payments", payment_id, "DELETE", old, None, changed_by)
    await _audit_fee_changes(db, tenant_id, before, student_fees, changed_by)
    await db.commit()
    logger.info("Deleted payment %s and reversed %s allocations", payment_id, len(old["allocations"]))
    return True
