"""Collections router: fee collection figures for the dashboard."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import CollectionSummary
from . import service

router = APIRouter(prefix="/api/v1/collections", tags=["collections"])


@router.get(
    "/summary",
    response_model=CollectionSummary,
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def get_collection_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> CollectionSummary:
    try:
        return await service.get_collection_summary(
            db, current_user.tenant_id, start_date=start_date, end_date=end_date
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
