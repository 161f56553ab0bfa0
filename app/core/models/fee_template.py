"""Fee template (Tuition, Bus, Exam...). Tenant-scoped catalog entry, optionally scoped to one grade."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import FeeFrequency
from app.db.session import Base


class FeeTemplate(Base):
    """
    Reusable chargeable item. Never deleted while obligations reference it:
    deactivate with is_active=False instead, which only removes it from future bulk assignment.
    """

    __tablename__ = "fee_templates"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_fee_template_amount_positive"),
        CheckConstraint(
            "frequency IN ('ONE_TIME','MONTHLY','QUARTERLY','YEARLY')",
            name="chk_fee_template_frequency",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    frequency = Column(String(20), nullable=False, default=FeeFrequency.ONE_TIME.value)
    # NULL = applies to every grade
    grade_id = Column(UUID(as_uuid=True), ForeignKey("grades.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school = relationship("School")
    grade = relationship("Grade")
