"""Payment schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import PaymentMethod
from app.core.money import Money


class AllocationCreate(BaseModel):
    student_fee_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class PaymentCreate(BaseModel):
    student_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_date: datetime
    method: PaymentMethod
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    allocations: List[AllocationCreate] = Field(
        default_factory=list,
        description="How the payment is split across the student's fees; empty for an unallocated receipt",
    )


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    payment_date: Optional[datetime] = None
    method: Optional[PaymentMethod] = None
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    allocations: Optional[List[AllocationCreate]] = Field(
        None,
        description="Replaces every allocation of the payment; previous allocations are reversed first",
    )


class AllocationResponse(BaseModel):
    id: UUID
    student_fee_id: UUID
    fee_id: Optional[UUID] = None
    fee_name: Optional[str] = None
    amount: Money


class PaymentResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    amount: Money
    allocated_amount: Money
    unallocated_amount: Money
    payment_date: datetime
    method: PaymentMethod
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    allocations: List[AllocationResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
