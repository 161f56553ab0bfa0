"""Fee catalog service: tenant-scoped fee templates. Templates are deactivated, never deleted."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.directory import get_grade
from app.core.enums import FeeFrequency
from app.core.exceptions import ServiceError
from app.core.fee_audit import log_fee_audit
from app.core.models import FeeTemplate, Grade, StudentFee
from app.core.money import to_money

from .schemas import FeeCreate, FeeResponse, FeeUpdate

logger = logging.getLogger(__name__)


def _to_response(fee: FeeTemplate, grade_name: Optional[str] = None, student_fee_count: int = 0) -> FeeResponse:
    return FeeResponse(
        id=fee.id,
        tenant_id=fee.tenant_id,
        name=fee.name,
        amount=to_money(fee.amount),
        frequency=fee.frequency,
        grade_id=fee.grade_id,
        grade_name=grade_name,
        is_active=fee.is_active,
        student_fee_count=student_fee_count,
        created_at=fee.created_at,
        updated_at=fee.updated_at,
    )


def _snapshot(fee: FeeTemplate) -> dict:
    return {
        "name": fee.name,
        "amount": str(to_money(fee.amount)),
        "frequency": fee.frequency,
        "grade_id": str(fee.grade_id) if fee.grade_id else None,
        "is_active": bool(fee.is_active),
    }


async def _validate_grade(db: AsyncSession, tenant_id: UUID, grade_id: Optional[UUID]) -> Optional[Grade]:
    if grade_id is None:
        return None
    grade = await get_grade(db, tenant_id, grade_id)
    if not grade:
        raise ServiceError("Grade not found", status.HTTP_404_NOT_FOUND)
    return grade


async def create_fee(
    db: AsyncSession,
    tenant_id: UUID,
    payload: FeeCreate,
    changed_by: Optional[UUID] = None,
) -> FeeResponse:
    name = payload.name.strip()
    if not name:
        raise ServiceError("Fee name is required", status.HTTP_400_BAD_REQUEST)
    amount = to_money(payload.amount)
    if amount <= 0:
        raise ServiceError("Fee amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
    grade = await _validate_grade(db, tenant_id, payload.grade_id)
    try:
        fee = FeeTemplate(
            tenant_id=tenant_id,
            name=name,
            amount=amount,
            frequency=FeeFrequency(payload.frequency).value,
            grade_id=payload.grade_id,
            is_active=payload.is_active,
        )
        db.add(fee)
        await db.flush()
        await log_fee_audit(db, tenant_id, "fee_templates", fee.id, "CREATE", None, _snapshot(fee), changed_by)
        await db.commit()
        await db.refresh(fee)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Fee could not be created", status.HTTP_409_CONFLICT)
    logger.info("Created fee template %s (%s) for tenant %s", fee.id, fee.name, tenant_id)
    return _to_response(fee, grade.name if grade else None)


def _fee_query(tenant_id: UUID):
    """Fee templates of the tenant with their grade name and how many student fees reference them."""
    count_subq = (
        select(StudentFee.fee_id, func.count(StudentFee.id).label("student_fee_count"))
        .where(StudentFee.tenant_id == tenant_id)
        .group_by(StudentFee.fee_id)
    ).subquery()
    return (
        select(
            FeeTemplate,
            Grade.name.label("grade_name"),
            func.coalesce(count_subq.c.student_fee_count, 0).label("student_fee_count"),
        )
        .outerjoin(Grade, FeeTemplate.grade_id == Grade.id)
        .outerjoin(count_subq, FeeTemplate.id == count_subq.c.fee_id)
        .where(FeeTemplate.tenant_id == tenant_id)
    )


async def list_fees(
    db: AsyncSession,
    tenant_id: UUID,
    active_only: bool = False,
    grade_id: Optional[UUID] = None,
) -> List[FeeResponse]:
    stmt = _fee_query(tenant_id)
    if active_only:
        stmt = stmt.where(FeeTemplate.is_active.is_(True))
    if grade_id is not None:
        stmt = stmt.where(FeeTemplate.grade_id == grade_id)
    stmt = stmt.order_by(Grade.name.nullsfirst(), FeeTemplate.name)
    result = await db.execute(stmt)
    return [_to_response(fee, grade_name, int(count)) for fee, grade_name, count in result.all()]


async def get_fee(
    db: AsyncSession,
    tenant_id: UUID,
    fee_id: UUID,
) -> Optional[FeeResponse]:
    result = await db.execute(_fee_query(tenant_id).where(FeeTemplate.id == fee_id))
    row = result.first()
    if not row:
        return None
    fee, grade_name, count = row
    return _to_response(fee, grade_name, int(count))


async def update_fee(
    db: AsyncSession,
    tenant_id: UUID,
    fee_id: UUID,
    payload: FeeUpdate,
    changed_by: Optional[UUID] = None,
) -> Optional[FeeResponse]:
    """Partial update. Student fees already assigned keep the amount captured at assignment time."""
    result = await db.execute(
        select(FeeTemplate).where(
            FeeTemplate.id == fee_id,
            FeeTemplate.tenant_id == tenant_id,
        )
    )
    fee = result.scalar_one_or_none()
    if not fee:
        return None
    old = _snapshot(fee)
    fields = payload.model_dump(exclude_unset=True)
    if "name" in fields:
        name = (payload.name or "").strip()
        if not name:
            raise ServiceError("Fee name is required", status.HTTP_400_BAD_REQUEST)
        fee.name = name
    if "amount" in fields:
        if payload.amount is None or to_money(payload.amount) <= 0:
            raise ServiceError("Fee amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
        fee.amount = to_money(payload.amount)
    if payload.frequency is not None:
        fee.frequency = FeeFrequency(payload.frequency).value
    if "grade_id" in fields:
        # explicit null widens the template to every grade
        await _validate_grade(db, tenant_id, payload.grade_id)
        fee.grade_id = payload.grade_id
    if payload.is_active is not None:
        fee.is_active = payload.is_active
    try:
        await log_fee_audit(db, tenant_id, "fee_templates", fee.id, "UPDATE", old, _snapshot(fee), changed_by)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Fee update conflict",
            status.HTTP_409_CONFLICT,
        )
    logger.info("Updated fee template %s for tenant %s", fee.id, tenant_id)
    return await get_fee(db, tenant_id, fee.id)
