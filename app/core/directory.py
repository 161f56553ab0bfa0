"""Student directory lookups. The directory itself is owned by another service; these are read-only."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import Grade, Student


async def list_students(
    db: AsyncSession,
    tenant_id: UUID,
    grade_id: Optional[UUID] = None,
) -> List[Student]:
    stmt = select(Student).where(Student.tenant_id == tenant_id)
    if grade_id is not None:
        stmt = stmt.where(Student.grade_id == grade_id)
    stmt = stmt.order_by(Student.first_name, Student.last_name, Student.id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_student(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
) -> Optional[Student]:
    result = await db.execute(
        select(Student).where(Student.id == student_id, Student.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def get_grade(
    db: AsyncSession,
    tenant_id: UUID,
    grade_id: UUID,
) -> Optional[Grade]:
    result = await db.execute(
        select(Grade).where(Grade.id == grade_id, Grade.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()
