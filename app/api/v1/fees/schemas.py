"""Fees schemas: assignment, payments, receipts, dues reports."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import FeeCategory, FeeStatus, PaymentMethod


# --- Monthly dues ---
class MonthlyDueResponse(BaseModel):
    id: UUID
    student_fee_id: UUID
    student_id: UUID
    period_index: int
    year: int
    month: int
    amount: Decimal
    paid_amount: Decimal
    discount_amount: Decimal
    due_amount: Decimal
    status: FeeStatus
    due_date: date
    paid_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class MonthlyDueWithDetails(MonthlyDueResponse):
    student_name: Optional[str] = None
    admission_number: Optional[str] = None
    class_id: Optional[UUID] = None
    class_name: Optional[str] = None
    fee_type_name: Optional[str] = None
    fee_type_code: Optional[str] = None


# --- Student fee ---
class StudentFeeResponse(BaseModel):
    id: UUID
    student_id: UUID
    fee_structure_id: UUID
    fee_type_id: UUID
    academic_year_id: UUID
    total_amount: Decimal
    paid_amount: Decimal
    discount_amount: Decimal
    due_amount: Decimal
    status: FeeStatus
    due_date: Optional[date] = None
    last_payment_date: Optional[datetime] = None
    waived_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    monthly_dues: List[MonthlyDueResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class StudentFeeWithDetails(StudentFeeResponse):
    student_name: Optional[str] = None
    admission_number: Optional[str] = None
    roll_number: Optional[str] = None
    class_id: Optional[UUID] = None
    class_name: Optional[str] = None
    fee_type_name: Optional[str] = None
    fee_type_code: Optional[str] = None
    fee_type_category: Optional[FeeCategory] = None


# --- Assignment ---
class ClassAssignmentDetail(BaseModel):
    student_id: UUID
    status: str  # assigned, skipped, failed
    student_fee_id: Optional[UUID] = None
    reason: Optional[str] = None


class ClassAssignmentResult(BaseModel):
    fee_structure_id: UUID
    class_id: UUID
    total: int
    assigned: int
    skipped: int
    failed: int
    details: List[ClassAssignmentDetail] = Field(default_factory=list)


# --- Payment ---
class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    discount_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    discount_reason: Optional[str] = None
    payment_method: PaymentMethod
    transaction_id: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = None
    payment_date: Optional[datetime] = None
    collected_by: Optional[UUID] = None


class PaymentReverseRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    collected_by: Optional[UUID] = None


class PaymentAllocationResponse(BaseModel):
    monthly_due_id: UUID
    amount: Decimal
    discount_amount: Decimal

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_fee_id: UUID
    amount: Decimal
    discount_amount: Decimal
    discount_reason: Optional[str] = None
    payment_method: PaymentMethod
    payment_date: datetime
    receipt_number: str
    transaction_id: Optional[str] = None
    remarks: Optional[str] = None
    collected_by: Optional[UUID] = None
    reversal_of_id: Optional[UUID] = None
    created_at: datetime
    allocations: List[PaymentAllocationResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class WaiveRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    changed_by: Optional[UUID] = None


class OverdueRefreshResult(BaseModel):
    as_of: date
    student_fees_marked: int
    monthly_dues_marked: int


# --- Receipt ---
class ReceiptResponse(BaseModel):
    receipt_number: str
    payment_id: UUID
    student_fee_id: UUID
    student_id: UUID
    student_name: str
    admission_number: Optional[str] = None
    roll_number: Optional[str] = None
    class_name: Optional[str] = None
    section: Optional[str] = None
    academic_year_name: Optional[str] = None
    fee_type_name: str
    fee_type_code: str
    fee_type_category: str
    amount: Decimal
    discount_amount: Decimal
    discount_reason: Optional[str] = None
    payment_method: str
    transaction_id: Optional[str] = None
    remarks: Optional[str] = None
    payment_date: datetime
    is_reversal: bool
    fee_total_amount: Decimal
    fee_paid_amount: Decimal
    fee_discount_amount: Decimal
    fee_due_amount: Decimal
    fee_status: str
    issued_at: datetime

    class Config:
        from_attributes = True


# --- Reports ---
class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class DuesSummary(BaseModel):
    count: int = 0
    total_amount: Decimal = Decimal("0.00")
    paid_amount: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    due_amount: Decimal = Decimal("0.00")


class DuesListResponse(BaseModel):
    items: List[StudentFeeWithDetails]
    summary: DuesSummary
    pagination: Pagination


class OverdueFeeItem(StudentFeeWithDetails):
    days_overdue: int


class OverdueMonthlyDueItem(MonthlyDueWithDetails):
    days_overdue: int


class OverdueReport(BaseModel):
    as_of: date
    fees: List[OverdueFeeItem]
    monthly_dues: List[OverdueMonthlyDueItem]
    fees_due_total: Decimal
    monthly_dues_due_total: Decimal


class MonthlyBreakdownItem(BaseModel):
    year: int
    month: int
    count: int
    amount: Decimal
    paid_amount: Decimal
    discount_amount: Decimal
    due_amount: Decimal


class MonthlyViewResponse(BaseModel):
    year: int
    items: List[MonthlyDueWithDetails]
    breakdown: List[MonthlyBreakdownItem]


class PaymentListResponse(BaseModel):
    items: List[PaymentResponse]
    pagination: Pagination
