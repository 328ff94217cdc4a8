"""Fees service: assigning fee structures to students and generating their instalments."""

import logging
from calendar import monthrange
from datetime import date
from decimal import Decimal
from typing import List, NamedTuple, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import AcademicYearStatus, EnrollmentStatus, FeeFrequency, FeeStatus
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.models import (
    AcademicYear,
    FeeStructure,
    FeeType,
    MonthlyDue,
    Student,
    StudentAcademicRecord,
    StudentFee,
)
from app.core.money import ZERO, split_evenly, to_money, to_uuid

from .audit_service import log_fee_audit
from .schemas import (
    ClassAssignmentDetail,
    ClassAssignmentResult,
    MonthlyDueResponse,
    StudentFeeResponse,
)

logger = logging.getLogger(__name__)

# Months between consecutive instalments
_FREQUENCY_STEP = {
    FeeFrequency.MONTHLY.value: 1,
    FeeFrequency.QUARTERLY.value: 3,
    FeeFrequency.HALF_YEARLY.value: 6,
    FeeFrequency.YEARLY.value: 12,
}


class Instalment(NamedTuple):
    period_index: int
    year: int
    month: int
    amount: Decimal
    due_date: date


class AssignmentTerms(NamedTuple):
    """Plain copy of everything assignment needs, so it survives a per-student rollback."""

    fee_structure_id: UUID
    fee_type_id: UUID
    academic_year_id: UUID
    class_id: UUID
    amount: Decimal
    frequency: str
    is_recurring: bool
    due_date: Optional[date]
    year_start: date
    year_end: date


def _due_date_in(year: int, month: int, due_day: int) -> date:
    return date(year, month, min(due_day, monthrange(year, month)[1]))


def _months_spanned(start: date, end: date) -> int:
    return max(1, (end.year - start.year) * 12 + end.month - start.month + 1)


def build_instalment_plan(
    frequency: str,
    is_recurring: bool,
    year_start: date,
    year_end: date,
    total: Decimal,
    due_day: int,
) -> List[Instalment]:
    """
    Spread total over the academic year. ONE_TIME fees have no instalments unless the
    fee type is recurring, in which case they are billed monthly. The last instalment
    absorbs the rounding remainder. Periods whose share rounds down to 0.00 get no
    instalment, so a fee smaller than a cent per period is billed in its last period.
    """
    if frequency == FeeFrequency.ONE_TIME.value:
        if not is_recurring:
            return []
        frequency = FeeFrequency.MONTHLY.value
    step = _FREQUENCY_STEP[frequency]
    periods = (_months_spanned(year_start, year_end) + step - 1) // step
    shares = split_evenly(total, periods)

    plan = []
    for period, share in enumerate(shares):
        if share <= ZERO:
            continue
        offset = year_start.month - 1 + period * step
        year = year_start.year + offset // 12
        month = offset % 12 + 1
        plan.append(Instalment(len(plan), year, month, share, _due_date_in(year, month, due_day)))
    return plan


def _fee_due_date(terms: AssignmentTerms, plan: List[Instalment], due_day: int) -> date:
    if terms.due_date is not None:
        return terms.due_date
    if plan:
        return plan[-1].due_date
    return _due_date_in(terms.year_start.year, terms.year_start.month, due_day)


def monthly_due_to_response(md: MonthlyDue) -> MonthlyDueResponse:
    amount = to_money(md.amount)
    paid = to_money(md.paid_amount)
    discount = to_money(md.discount_amount)
    return MonthlyDueResponse(
        id=to_uuid(md.id),
        student_fee_id=to_uuid(md.student_fee_id),
        student_id=to_uuid(md.student_id),
        period_index=md.period_index,
        year=md.year,
        month=md.month,
        amount=amount,
        paid_amount=paid,
        discount_amount=discount,
        due_amount=max(ZERO, amount - paid - discount),
        status=md.status,
        due_date=md.due_date,
        paid_date=md.paid_date,
    )


def student_fee_fields(sf: StudentFee) -> dict:
    return dict(
        id=to_uuid(sf.id),
        student_id=to_uuid(sf.student_id),
        fee_structure_id=to_uuid(sf.fee_structure_id),
        fee_type_id=to_uuid(sf.fee_type_id),
        academic_year_id=to_uuid(sf.academic_year_id),
        total_amount=to_money(sf.total_amount),
        paid_amount=to_money(sf.paid_amount),
        discount_amount=to_money(sf.discount_amount),
        due_amount=to_money(sf.due_amount),
        status=sf.status,
        due_date=sf.due_date,
        last_payment_date=sf.last_payment_date,
        waived_reason=sf.waived_reason,
        created_at=sf.created_at,
        updated_at=sf.updated_at,
    )


async def _student_fee_response(db: AsyncSession, sf: StudentFee) -> StudentFeeResponse:
    dues = (
        await db.execute(
            select(MonthlyDue)
            .where(MonthlyDue.student_fee_id == sf.id)
            .order_by(MonthlyDue.period_index)
        )
    ).scalars().all()
    return StudentFeeResponse(
        **student_fee_fields(sf),
        monthly_dues=[monthly_due_to_response(d) for d in dues],
    )


async def _find_existing(db: AsyncSession, student_id: UUID, fee_structure_id: UUID) -> Optional[StudentFee]:
    return (
        await db.execute(
            select(StudentFee).where(
                StudentFee.student_id == student_id,
                StudentFee.fee_structure_id == fee_structure_id,
            )
        )
    ).scalar_one_or_none()


async def _load_terms(db: AsyncSession, fs: FeeStructure) -> AssignmentTerms:
    """Check the structure can be assigned and snapshot its terms."""
    if not fs.is_active:
        raise ValidationError("Fee structure is not active")
    ay = await db.get(AcademicYear, fs.academic_year_id)
    if not ay:
        raise ValidationError("Invalid academic year")
    if ay.status != AcademicYearStatus.ACTIVE.value:
        raise ValidationError("Cannot assign fees for a CLOSED academic year")
    ft = await db.get(FeeType, fs.fee_type_id)
    if not ft:
        raise ValidationError("Invalid fee type")
    return AssignmentTerms(
        fee_structure_id=to_uuid(fs.id),
        fee_type_id=to_uuid(fs.fee_type_id),
        academic_year_id=to_uuid(fs.academic_year_id),
        class_id=to_uuid(fs.class_id),
        amount=to_money(fs.amount),
        frequency=fs.frequency,
        is_recurring=bool(ft.is_recurring),
        due_date=fs.due_date,
        year_start=ay.start_date,
        year_end=ay.end_date,
    )


async def _create_student_fee(
    db: AsyncSession,
    terms: AssignmentTerms,
    student_id: UUID,
    changed_by: Optional[UUID],
) -> StudentFee:
    """Insert the obligation and its instalments. Caller commits."""
    due_day = settings.fee_due_day
    plan = build_instalment_plan(
        terms.frequency, terms.is_recurring, terms.year_start, terms.year_end, terms.amount, due_day
    )
    sf = StudentFee(
        student_id=student_id,
        fee_structure_id=terms.fee_structure_id,
        fee_type_id=terms.fee_type_id,
        academic_year_id=terms.academic_year_id,
        total_amount=terms.amount,
        paid_amount=ZERO,
        discount_amount=ZERO,
        due_amount=terms.amount,
        status=FeeStatus.PENDING.value,
        due_date=_fee_due_date(terms, plan, due_day),
    )
    db.add(sf)
    await db.flush()
    for inst in plan:
        db.add(
            MonthlyDue(
                student_fee_id=sf.id,
                student_id=student_id,
                period_index=inst.period_index,
                year=inst.year,
                month=inst.month,
                amount=inst.amount,
                paid_amount=ZERO,
                discount_amount=ZERO,
                status=FeeStatus.PENDING.value,
                due_date=inst.due_date,
            )
        )
    await db.flush()
    await log_fee_audit(
        db,
        "student_fees",
        sf.id,
        "CREATE",
        None,
        {
            "student_id": str(student_id),
            "fee_structure_id": str(terms.fee_structure_id),
            "total_amount": str(terms.amount),
            "instalments": len(plan),
        },
        changed_by,
    )
    return sf


async def _is_enrolled(db: AsyncSession, student_id: UUID, class_id: UUID, academic_year_id: UUID) -> bool:
    rec = (
        await db.execute(
            select(StudentAcademicRecord.id).where(
                StudentAcademicRecord.student_id == student_id,
                StudentAcademicRecord.class_id == class_id,
                StudentAcademicRecord.academic_year_id == academic_year_id,
                StudentAcademicRecord.status == EnrollmentStatus.ACTIVE.value,
            )
        )
    ).scalar_one_or_none()
    return rec is not None


async def assign_fee_to_student(
    db: AsyncSession,
    fee_structure_id: UUID,
    student_id: UUID,
    changed_by: Optional[UUID] = None,
) -> Tuple[StudentFeeResponse, bool]:
    """
    Assign one fee structure to one student. Idempotent: an existing (student, structure)
    obligation is returned unchanged. Returns (student_fee, created).
    """
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")

    existing = await _find_existing(db, student_id, fee_structure_id)
    if existing:
        return await _student_fee_response(db, existing), False

    terms = await _load_terms(db, fs)
    if not await _is_enrolled(db, student_id, terms.class_id, terms.academic_year_id):
        raise ValidationError("Student is not enrolled in this class for the academic year")

    try:
        sf = await _create_student_fee(db, terms, student_id, changed_by)
        await db.commit()
    except IntegrityError:
        # Lost the race to a concurrent assignment of the same pair; that row is the answer
        await db.rollback()
        existing = await _find_existing(db, student_id, fee_structure_id)
        if existing is None:
            raise ConflictError("Fee assignment conflicted with a concurrent change; retry")
        return await _student_fee_response(db, existing), False

    logger.info("Assigned fee structure %s to student %s as %s", fee_structure_id, student_id, sf.id)
    return await _student_fee_response(db, sf), True


async def assign_fee_to_class(
    db: AsyncSession,
    class_id: UUID,
    fee_structure_id: UUID,
    changed_by: Optional[UUID] = None,
) -> ClassAssignmentResult:
    """
    Assign a structure to every active enrollment of the class. Each student is its own
    transaction: a failure is reported in the breakdown and does not undo the others.
    """
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")
    if to_uuid(fs.class_id) != class_id:
        raise ValidationError("Fee structure does not belong to this class")
    terms = await _load_terms(db, fs)

    student_ids = (
        await db.execute(
            select(StudentAcademicRecord.student_id)
            .join(Student, Student.id == StudentAcademicRecord.student_id)
            .where(
                StudentAcademicRecord.class_id == class_id,
                StudentAcademicRecord.academic_year_id == terms.academic_year_id,
                StudentAcademicRecord.status == EnrollmentStatus.ACTIVE.value,
            )
            .order_by(StudentAcademicRecord.roll_number, Student.full_name)
        )
    ).scalars().all()
    already = set(
        (
            await db.execute(
                select(StudentFee.student_id).where(StudentFee.fee_structure_id == fee_structure_id)
            )
        ).scalars().all()
    )

    details: List[ClassAssignmentDetail] = []
    for sid in student_ids:
        sid = to_uuid(sid)
        if sid in already:
            details.append(ClassAssignmentDetail(student_id=sid, status="skipped", reason="Already assigned"))
            continue
        try:
            sf = await _create_student_fee(db, terms, sid, changed_by)
            await db.commit()
            details.append(ClassAssignmentDetail(student_id=sid, status="assigned", student_fee_id=to_uuid(sf.id)))
        except IntegrityError:
            await db.rollback()
            details.append(ClassAssignmentDetail(student_id=sid, status="skipped", reason="Already assigned"))
        except SQLAlchemyError as e:
            await db.rollback()
            logger.exception("Assigning fee structure %s to student %s failed", fee_structure_id, sid)
            details.append(ClassAssignmentDetail(student_id=sid, status="failed", reason=str(e.__class__.__name__)))

    result = ClassAssignmentResult(
        fee_structure_id=fee_structure_id,
        class_id=class_id,
        total=len(details),
        assigned=sum(1 for d in details if d.status == "assigned"),
        skipped=sum(1 for d in details if d.status == "skipped"),
        failed=sum(1 for d in details if d.status == "failed"),
        details=details,
    )
    logger.info(
        "Class assignment of %s to class %s: %d assigned, %d skipped, %d failed",
        fee_structure_id, class_id, result.assigned, result.skipped, result.failed,
    )
    return result
