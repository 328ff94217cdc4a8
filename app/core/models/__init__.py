from app.core.models.academic_year import AcademicYear
from app.core.models.class_model import SchoolClass
from app.core.models.student import Student
from app.core.models.student_academic_record import StudentAcademicRecord
from app.core.models.fee_type import FeeType
from app.core.models.fee_structure import FeeStructure
from app.core.models.student_fee import StudentFee
from app.core.models.monthly_due import MonthlyDue
from app.core.models.payment import Payment
from app.core.models.payment_allocation import PaymentAllocation
from app.core.models.receipt import Receipt
from app.core.models.receipt_sequence import ReceiptSequence
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "AcademicYear",
    "SchoolClass",
    "Student",
    "StudentAcademicRecord",
    "FeeType",
    "FeeStructure",
    "StudentFee",
    "MonthlyDue",
    "Payment",
    "PaymentAllocation",
    "Receipt",
    "ReceiptSequence",
    "FeeAuditLog",
]
