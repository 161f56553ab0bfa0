"""Student fee (obligation) schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import FeeFrequency, StudentFeeStatus
from app.core.money import Money


class StudentFeeCreate(BaseModel):
    student_id: UUID
    fee_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    due_date: date
    academic_year: Optional[str] = Field(None, max_length=20)
    term: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class StudentFeeUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    due_date: Optional[date] = None
    status: Optional[StudentFeeStatus] = Field(
        None,
        description="Manual override; ignored when amount or due_date change in the same request",
    )
    academic_year: Optional[str] = Field(None, max_length=20)
    term: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class StudentFeeResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    fee_id: UUID
    fee_name: Optional[str] = None
    fee_frequency: Optional[FeeFrequency] = None
    amount_owed: Money
    paid_to_date: Money
    balance: Money
    due_date: date
    status: StudentFeeStatus
    academic_year: Optional[str] = None
    term: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# --- Bulk assignment ---
class AssignByGradeRequest(BaseModel):
    grade_id: UUID
    due_date: date
    academic_year: Optional[str] = Field(None, max_length=20)
    term: Optional[str] = Field(None, max_length=50)


class AssignByGradeResponse(BaseModel):
    message: str
    students_count: int
    fees_count: int
    assigned_count: int
    skipped_count: int


class RefreshOverdueResponse(BaseModel):
    marked_overdue: int
    restored_pending: int
