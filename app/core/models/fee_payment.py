"""Fee payment (allocation): the portion of one payment applied to one student fee."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeePayment(Base):
    __tablename__ = "fee_payments"
    __table_args__ = (
        UniqueConstraint("payment_id", "student_fee_id", name="uq_fee_payment_payment_student_fee"),
        CheckConstraint("amount > 0", name="chk_fee_payment_amount_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    student_fee_id = Column(
        UUID(as_uuid=True),
        ForeignKey("student_fees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    payment = relationship("Payment", back_populates="allocations")
    student_fee = relationship("StudentFee")
