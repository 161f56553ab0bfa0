"""Student fees router: list, assign (single and by grade), correct, delete, refresh overdue."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import StudentFeeStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    AssignByGradeRequest,
    AssignByGradeResponse,
    RefreshOverdueResponse,
    StudentFeeCreate,
    StudentFeeResponse,
    StudentFeeUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/student-fees", tags=["student-fees"])


@router.get(
    "",
    response_model=List[StudentFeeResponse],
    dependencies=[Depends(check_permission("student_fees", "read"))],
)
async def list_student_fees(
    student_id: Optional[UUID] = Query(None),
    fee_status: Optional[StudentFeeStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentFeeResponse]:
    return await service.list_student_fees(
        db,
        current_user.tenant_id,
        student_id=student_id,
        status_filter=fee_status,
    )


@router.post(
    "",
    response_model=StudentFeeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("student_fees", "create"))],
)
async def create_student_fee(
    payload: StudentFeeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentFeeResponse:
    try:
        return await service.create_student_fee(
            db, current_user.tenant_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/assign-by-grade",
    response_model=AssignByGradeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("student_fees", "create"))],
)
async def assign_by_grade(
    payload: AssignByGradeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AssignByGradeResponse:
    try:
        return await service.assign_by_grade(
            db, current_user.tenant_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/refresh-overdue",
    response_model=RefreshOverdueResponse,
    dependencies=[Depends(check_permission("student_fees", "update"))],
)
async def refresh_overdue(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RefreshOverdueResponse:
    return await service.refresh_overdue(
        db, current_user.tenant_id, changed_by=current_user.id
    )


@router.get(
    "/{student_fee_id}",
    response_model=StudentFeeResponse,
    dependencies=[Depends(check_permission("student_fees", "read"))],
)
async def get_student_fee(
    student_fee_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentFeeResponse:
    sf = await service.get_student_fee(db, current_user.tenant_id, student_fee_id)
    if not sf:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Student fee not found",
        )
    return sf


@router.put(
    "/{student_fee_id}",
    response_model=StudentFeeResponse,
    dependencies=[Depends(check_permission("student_fees", "update"))],
)
async def update_student_fee(
    student_fee_id: UUID,
    payload: StudentFeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentFeeResponse:
    try:
        sf = await service.update_student_fee(
            db, current_user.tenant_id, student_fee_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not sf:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Student fee not found",
        )
    return sf


@router.delete(
    "/{student_fee_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("student_fees", "delete"))],
)
async def delete_student_fee(
    student_fee_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    deleted = await service.delete_student_fee(
        db, current_user.tenant_id, student_fee_id, changed_by=current_user.id
    )
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Student fee not found",
        )
