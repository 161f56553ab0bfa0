from app.core.models.school import School
from app.core.models.grade import Grade
from app.core.models.student import Student
from app.core.models.fee_template import FeeTemplate
from app.core.models.student_fee import StudentFee
from app.core.models.payment import Payment
from app.core.models.fee_payment import FeePayment
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "School",
    "Grade",
    "Student",
    "FeeTemplate",
    "StudentFee",
    "Payment",
    "FeePayment",
    "FeeAuditLog",
]
