"""Fee template schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import FeeFrequency
from app.core.money import Money


class FeeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    frequency: FeeFrequency
    grade_id: Optional[UUID] = Field(None, description="Leave empty to apply to every grade")
    is_active: bool = True


class FeeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    frequency: Optional[FeeFrequency] = None
    grade_id: Optional[UUID] = None
    is_active: Optional[bool] = None


class FeeResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    amount: Money
    frequency: FeeFrequency
    grade_id: Optional[UUID] = None
    grade_name: Optional[str] = None
    is_active: bool
    student_fee_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
