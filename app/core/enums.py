from enum import Enum


class AcademicYearStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PROMOTED = "PROMOTED"
    LEFT = "LEFT"


class FeeCategory(str, Enum):
    ACADEMIC = "ACADEMIC"
    EXAM = "EXAM"
    TRANSPORT = "TRANSPORT"
    FACILITY = "FACILITY"
    HOSTEL = "HOSTEL"
    OTHER = "OTHER"


class FeeFrequency(str, Enum):
    ONE_TIME = "ONE_TIME"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    YEARLY = "YEARLY"


class FeeStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    ONLINE = "ONLINE"


# Statuses that still carry an open balance
UNSETTLED_STATUSES = (FeeStatus.PENDING.value, FeeStatus.PARTIAL.value, FeeStatus.OVERDUE.value)
