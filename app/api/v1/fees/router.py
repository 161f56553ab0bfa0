"""Fee catalog router: create, list, read and update fee templates. There is no delete."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import FeeCreate, FeeResponse, FeeUpdate
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


@router.post(
    "",
    response_model=FeeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_fee(
    payload: FeeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeResponse:
    try:
        return await service.create_fee(
            db, current_user.tenant_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[FeeResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_fees(
    active_only: bool = Query(False, description="Return only active fee templates"),
    grade_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeeResponse]:
    return await service.list_fees(
        db, current_user.tenant_id, active_only=active_only, grade_id=grade_id
    )


@router.get(
    "/{fee_id}",
    response_model=FeeResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_fee(
    fee_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeResponse:
    fee = await service.get_fee(db, current_user.tenant_id, fee_id)
    if not fee:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Fee not found",
        )
    return fee


@router.put(
    "/{fee_id}",
    response_model=FeeResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def update_fee(
    fee_id: UUID,
    payload: FeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeResponse:
    try:
        fee = await service.update_fee(
            db, current_user.tenant_id, fee_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not fee:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Fee not found",
        )
    return fee
