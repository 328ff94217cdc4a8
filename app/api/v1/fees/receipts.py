"""Receipt numbering and issuance. A receipt is written once with its payment and only ever read back."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.models import (
    AcademicYear,
    FeeType,
    Payment,
    Receipt,
    ReceiptSequence,
    SchoolClass,
    Student,
    StudentAcademicRecord,
    StudentFee,
)
from app.core.money import to_money

from .schemas import ReceiptResponse

RECEIPT_SEQUENCE = "receipt"


async def next_receipt_number(db: AsyncSession, issued_on: datetime) -> str:
    """
    Take the next serial from the counter row inside the caller's transaction.
    The row stays write-locked until commit, so concurrent payments queue behind it.
    """
    result = await db.execute(
        update(ReceiptSequence)
        .where(ReceiptSequence.name == RECEIPT_SEQUENCE)
        .values(last_value=ReceiptSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # First receipt ever; a concurrent first insert fails on the primary key
        db.add(ReceiptSequence(name=RECEIPT_SEQUENCE, last_value=1))
        await db.flush()
        serial = 1
    else:
        serial = (
            await db.execute(
                select(ReceiptSequence.last_value).where(ReceiptSequence.name == RECEIPT_SEQUENCE)
            )
        ).scalar_one()
    return f"{settings.receipt_prefix}-{issued_on.year}-{serial:06d}"


def issue(
    payment: Payment,
    student_fee: StudentFee,
    student: Student,
    fee_type: FeeType,
    enrollment: Optional[StudentAcademicRecord] = None,
    school_class: Optional[SchoolClass] = None,
    academic_year: Optional[AcademicYear] = None,
) -> Receipt:
    """Build the receipt snapshot for a completed payment. Pure: reads its arguments, touches no session."""
    return Receipt(
        receipt_number=payment.receipt_number,
        payment_id=payment.id,
        student_fee_id=student_fee.id,
        student_id=student.id,
        student_name=student.full_name,
        admission_number=student.admission_number,
        roll_number=enrollment.roll_number if enrollment else None,
        class_name=school_class.name if school_class else None,
        section=school_class.section if school_class else None,
        academic_year_name=academic_year.name if academic_year else None,
        fee_type_name=fee_type.name,
        fee_type_code=fee_type.code,
        fee_type_category=fee_type.category,
        amount=to_money(payment.amount),
        discount_amount=to_money(payment.discount_amount),
        discount_reason=payment.discount_reason,
        payment_method=payment.payment_method,
        transaction_id=payment.transaction_id,
        remarks=payment.remarks,
        payment_date=payment.payment_date,
        is_reversal=payment.reversal_of_id is not None,
        fee_total_amount=to_money(student_fee.total_amount),
        fee_paid_amount=to_money(student_fee.paid_amount),
        fee_discount_amount=to_money(student_fee.discount_amount),
        fee_due_amount=to_money(student_fee.due_amount),
        fee_status=student_fee.status,
        issued_at=datetime.now(timezone.utc),
    )


async def issue_for_payment(db: AsyncSession, payment: Payment, student_fee: StudentFee) -> Receipt:
    """Load the directory labels as they are right now and add the receipt to the session."""
    student = await db.get(Student, student_fee.student_id)
    fee_type = await db.get(FeeType, student_fee.fee_type_id)
    academic_year = await db.get(AcademicYear, student_fee.academic_year_id)
    enrollment = (
        await db.execute(
            select(StudentAcademicRecord).where(
                StudentAcademicRecord.student_id == student_fee.student_id,
                StudentAcademicRecord.academic_year_id == student_fee.academic_year_id,
            )
        )
    ).scalar_one_or_none()
    school_class = await db.get(SchoolClass, enrollment.class_id) if enrollment else None
    receipt = issue(payment, student_fee, student, fee_type, enrollment, school_class, academic_year)
    db.add(receipt)
    return receipt


def receipt_to_response(r: Receipt) -> ReceiptResponse:
    return ReceiptResponse(
        receipt_number=r.receipt_number,
        payment_id=r.payment_id,
        student_fee_id=r.student_fee_id,
        student_id=r.student_id,
        student_name=r.student_name,
        admission_number=r.admission_number,
        roll_number=r.roll_number,
        class_name=r.class_name,
        section=r.section,
        academic_year_name=r.academic_year_name,
        fee_type_name=r.fee_type_name,
        fee_type_code=r.fee_type_code,
        fee_type_category=r.fee_type_category,
        amount=to_money(r.amount),
        discount_amount=to_money(r.discount_amount),
        discount_reason=r.discount_reason,
        payment_method=r.payment_method,
        transaction_id=r.transaction_id,
        remarks=r.remarks,
        payment_date=r.payment_date,
        is_reversal=r.is_reversal,
        fee_total_amount=to_money(r.fee_total_amount),
        fee_paid_amount=to_money(r.fee_paid_amount),
        fee_discount_amount=to_money(r.fee_discount_amount),
        fee_due_amount=to_money(r.fee_due_amount),
        fee_status=r.fee_status,
        issued_at=r.issued_at,
    )


async def get_receipt(db: AsyncSession, receipt_number: str) -> ReceiptResponse:
    """Reprint: return the stored snapshot exactly as issued."""
    receipt = (
        await db.execute(select(Receipt).where(Receipt.receipt_number == receipt_number.strip()))
    ).scalar_one_or_none()
    if not receipt:
        raise NotFoundError("Receipt not found")
    return receipt_to_response(receipt)
