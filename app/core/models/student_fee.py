"""Student fee (obligation): one student's instance of owing a fee template's amount."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import StudentFeeStatus
from app.db.session import Base


class StudentFee(Base):
    """
    amount_owed is captured at assignment time and does not follow later template edits.
    status is derived from (amount_owed, paid_to_date, due_date) and rewritten on every mutation.

    academic_year and term are stored as '' when untagged so that the unique constraint
    also rejects duplicate untagged rows (NULLs never collide in a UNIQUE index).
    """

    __tablename__ = "student_fees"
    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "fee_id",
            "academic_year",
            "term",
            name="uq_student_fee_student_fee_year_term",
        ),
        CheckConstraint("amount_owed > 0", name="chk_student_fee_amount_positive"),
        CheckConstraint("paid_to_date >= 0", name="chk_student_fee_paid_non_negative"),
        CheckConstraint("paid_to_date <= amount_owed", name="chk_student_fee_not_overpaid"),
        CheckConstraint(
            "status IN ('PENDING','PARTIAL','PAID','OVERDUE')",
            name="chk_student_fee_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_id = Column(UUID(as_uuid=True), ForeignKey("fee_templates.id", ondelete="RESTRICT"), nullable=False, index=True)

    amount_owed = Column(Numeric(12, 2), nullable=False)
    paid_to_date = Column(Numeric(12, 2), nullable=False, default=0)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=StudentFeeStatus.PENDING.value)

    academic_year = Column(String(20), nullable=False, default="")
    term = Column(String(50), nullable=False, default="")
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school = relationship("School")
    student = relationship("Student")
    fee = relationship("FeeTemplate")
