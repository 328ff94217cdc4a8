"""Read-only fee reports: dues lists, overdue, monthly view, per-student fees, collections."""

from datetime import date, datetime, time
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import FeeStatus
from app.core.models import (
    FeeStructure,
    FeeType,
    MonthlyDue,
    Payment,
    PaymentAllocation,
    SchoolClass,
    Student,
    StudentAcademicRecord,
    StudentFee,
)
from app.core.money import ZERO, to_money, to_uuid

from .ledger import payment_to_response
from .schemas import (
    DuesListResponse,
    DuesSummary,
    MonthlyBreakdownItem,
    MonthlyDueResponse,
    MonthlyDueWithDetails,
    MonthlyViewResponse,
    OverdueFeeItem,
    OverdueMonthlyDueItem,
    OverdueReport,
    Pagination,
    PaymentListResponse,
    StudentFeeWithDetails,
)
from .service import monthly_due_to_response, student_fee_fields

_CLOSED_STATUSES = (FeeStatus.PAID.value, FeeStatus.WAIVED.value)


def _pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, total_pages=(total + limit - 1) // limit if limit else 0)


def _fee_query():
    """StudentFee rows with the labels reports show. Class comes from the structure."""
    return (
        select(
            StudentFee,
            Student.full_name,
            Student.admission_number,
            StudentAcademicRecord.roll_number,
            FeeStructure.class_id,
            SchoolClass.name,
            FeeType.name,
            FeeType.code,
            FeeType.category,
        )
        .join(Student, Student.id == StudentFee.student_id)
        .join(FeeStructure, FeeStructure.id == StudentFee.fee_structure_id)
        .join(FeeType, FeeType.id == StudentFee.fee_type_id)
        .outerjoin(SchoolClass, SchoolClass.id == FeeStructure.class_id)
        .outerjoin(
            StudentAcademicRecord,
            and_(
                StudentAcademicRecord.student_id == StudentFee.student_id,
                StudentAcademicRecord.academic_year_id == StudentFee.academic_year_id,
            ),
        )
    )


async def _dues_by_fee(db: AsyncSession, student_fee_ids: List[UUID]) -> Dict[UUID, List[MonthlyDueResponse]]:
    out: Dict[UUID, List[MonthlyDueResponse]] = {}
    if not student_fee_ids:
        return out
    rows = (
        await db.execute(
            select(MonthlyDue)
            .where(MonthlyDue.student_fee_id.in_(student_fee_ids))
            .order_by(MonthlyDue.period_index)
        )
    ).scalars().all()
    for md in rows:
        out.setdefault(to_uuid(md.student_fee_id), []).append(monthly_due_to_response(md))
    return out


def _fee_details(row, dues: List[MonthlyDueResponse], cls=StudentFeeWithDetails, **extra):
    sf, name, adm, roll, class_id, class_name, ft_name, ft_code, ft_category = row
    return cls(
        **student_fee_fields(sf),
        monthly_dues=dues,
        student_name=name,
        admission_number=adm,
        roll_number=roll,
        class_id=to_uuid(class_id),
        class_name=class_name,
        fee_type_name=ft_name,
        fee_type_code=ft_code,
        fee_type_category=ft_category,
        **extra,
    )


async def list_dues(
    db: AsyncSession,
    academic_year_id: UUID,
    class_id: Optional[UUID] = None,
    fee_type_id: Optional[UUID] = None,
    status: Optional[str] = None,
    student_id: Optional[UUID] = None,
    outstanding_only: bool = False,
    page: int = 1,
    limit: Optional[int] = None,
) -> DuesListResponse:
    """
    Filtered student fees with a summary over the whole filter (not just the page).
    No matches gives an empty page and a zero summary.
    """
    limit = limit or settings.default_page_size
    conditions = [StudentFee.academic_year_id == academic_year_id]
    if class_id:
        conditions.append(FeeStructure.class_id == class_id)
    if fee_type_id:
        conditions.append(StudentFee.fee_type_id == fee_type_id)
    if status:
        conditions.append(StudentFee.status == status)
    if student_id:
        conditions.append(StudentFee.student_id == student_id)
    if outstanding_only:
        conditions.append(StudentFee.due_amount > 0)
        conditions.append(StudentFee.status != FeeStatus.WAIVED.value)

    summary_row = (
        await db.execute(
            select(
                func.count(StudentFee.id),
                func.coalesce(func.sum(StudentFee.total_amount), 0),
                func.coalesce(func.sum(StudentFee.paid_amount), 0),
                func.coalesce(func.sum(StudentFee.discount_amount), 0),
                func.coalesce(func.sum(StudentFee.due_amount), 0),
            )
            .select_from(StudentFee)
            .join(FeeStructure, FeeStructure.id == StudentFee.fee_structure_id)
            .where(*conditions)
        )
    ).one()
    count = summary_row[0] or 0
    summary = DuesSummary(
        count=count,
        total_amount=to_money(summary_row[1]),
        paid_amount=to_money(summary_row[2]),
        discount_amount=to_money(summary_row[3]),
        due_amount=to_money(summary_row[4]),
    )

    rows = (
        await db.execute(
            _fee_query()
            .where(*conditions)
            .order_by(StudentFee.due_date, Student.full_name, FeeType.name)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()
    dues = await _dues_by_fee(db, [to_uuid(r[0].id) for r in rows])
    items = [_fee_details(r, dues.get(to_uuid(r[0].id), [])) for r in rows]
    return DuesListResponse(items=items, summary=summary, pagination=_pagination(page, limit, count))


async def overdue(
    db: AsyncSession,
    as_of: date,
    academic_year_id: Optional[UUID] = None,
    class_id: Optional[UUID] = None,
) -> OverdueReport:
    """Unsettled fees and instalments whose due date is before as_of, oldest first."""
    fee_conditions = [
        StudentFee.due_date < as_of,
        StudentFee.status.notin_(_CLOSED_STATUSES),
        StudentFee.due_amount > 0,
    ]
    if academic_year_id:
        fee_conditions.append(StudentFee.academic_year_id == academic_year_id)
    if class_id:
        fee_conditions.append(FeeStructure.class_id == class_id)

    fee_rows = (
        await db.execute(
            _fee_query().where(*fee_conditions).order_by(StudentFee.due_date, Student.full_name)
        )
    ).all()
    fees = [
        _fee_details(r, [], cls=OverdueFeeItem, days_overdue=(as_of - r[0].due_date).days)
        for r in fee_rows
    ]

    due_conditions = [
        MonthlyDue.due_date < as_of,
        MonthlyDue.status.notin_(_CLOSED_STATUSES),
        MonthlyDue.amount - MonthlyDue.paid_amount - MonthlyDue.discount_amount > 0,
    ]
    if academic_year_id:
        due_conditions.append(StudentFee.academic_year_id == academic_year_id)
    if class_id:
        due_conditions.append(FeeStructure.class_id == class_id)
    due_rows = (
        await db.execute(
            _monthly_due_query().where(*due_conditions).order_by(MonthlyDue.due_date, Student.full_name)
        )
    ).all()
    monthly = [
        _monthly_details(r, cls=OverdueMonthlyDueItem, days_overdue=(as_of - r[0].due_date).days)
        for r in due_rows
    ]

    return OverdueReport(
        as_of=as_of,
        fees=fees,
        monthly_dues=monthly,
        fees_due_total=to_money(sum((f.due_amount for f in fees), ZERO)),
        monthly_dues_due_total=to_money(sum((m.due_amount for m in monthly), ZERO)),
    )


def _monthly_due_query():
    return (
        select(
            MonthlyDue,
            Student.full_name,
            Student.admission_number,
            FeeStructure.class_id,
            SchoolClass.name,
            FeeType.name,
            FeeType.code,
        )
        .join(StudentFee, StudentFee.id == MonthlyDue.student_fee_id)
        .join(Student, Student.id == MonthlyDue.student_id)
        .join(FeeStructure, FeeStructure.id == StudentFee.fee_structure_id)
        .join(FeeType, FeeType.id == StudentFee.fee_type_id)
        .outerjoin(SchoolClass, SchoolClass.id == FeeStructure.class_id)
    )


def _monthly_details(row, cls=MonthlyDueWithDetails, **extra):
    md, name, adm, class_id, class_name, ft_name, ft_code = row
    return cls(
        **monthly_due_to_response(md).model_dump(),
        student_name=name,
        admission_number=adm,
        class_id=to_uuid(class_id),
        class_name=class_name,
        fee_type_name=ft_name,
        fee_type_code=ft_code,
        **extra,
    )


async def monthly_view(
    db: AsyncSession,
    year: int,
    academic_year_id: Optional[UUID] = None,
    class_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
    month: Optional[int] = None,
    status: Optional[str] = None,
) -> MonthlyViewResponse:
    """Instalments of a calendar year, flat and per month."""
    conditions = [MonthlyDue.year == year]
    if academic_year_id:
        conditions.append(StudentFee.academic_year_id == academic_year_id)
    if class_id:
        conditions.append(FeeStructure.class_id == class_id)
    if student_id:
        conditions.append(MonthlyDue.student_id == student_id)
    if month:
        conditions.append(MonthlyDue.month == month)
    if status:
        conditions.append(MonthlyDue.status == status)

    rows = (
        await db.execute(
            _monthly_due_query()
            .where(*conditions)
            .order_by(MonthlyDue.year, MonthlyDue.month, Student.full_name, FeeType.name)
        )
    ).all()
    items = [_monthly_details(r) for r in rows]

    breakdown: Dict[tuple, MonthlyBreakdownItem] = {}
    for item in items:
        key = (item.year, item.month)
        b = breakdown.get(key)
        if b is None:
            b = breakdown[key] = MonthlyBreakdownItem(
                year=item.year, month=item.month, count=0,
                amount=ZERO, paid_amount=ZERO, discount_amount=ZERO, due_amount=ZERO,
            )
        b.count += 1
        b.amount += item.amount
        b.paid_amount += item.paid_amount
        b.discount_amount += item.discount_amount
        b.due_amount += item.due_amount

    return MonthlyViewResponse(year=year, items=items, breakdown=[breakdown[k] for k in sorted(breakdown)])


async def get_student_fees(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
) -> List[StudentFeeWithDetails]:
    conditions = [StudentFee.student_id == student_id]
    if academic_year_id:
        conditions.append(StudentFee.academic_year_id == academic_year_id)
    rows = (
        await db.execute(_fee_query().where(*conditions).order_by(StudentFee.due_date, FeeType.name))
    ).all()
    dues = await _dues_by_fee(db, [to_uuid(r[0].id) for r in rows])
    return [_fee_details(r, dues.get(to_uuid(r[0].id), [])) for r in rows]


async def list_payments(
    db: AsyncSession,
    student_id: Optional[UUID] = None,
    student_fee_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_method: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> PaymentListResponse:
    """Collections, newest first. Reversal entries are listed alongside the payments they undo."""
    limit = limit or settings.default_page_size
    conditions = []
    if student_id:
        conditions.append(Payment.student_id == student_id)
    if student_fee_id:
        conditions.append(Payment.student_fee_id == student_fee_id)
    if start_date:
        conditions.append(Payment.payment_date >= datetime.combine(start_date, time.min))
    if end_date:
        conditions.append(Payment.payment_date <= datetime.combine(end_date, time.max))
    if payment_method:
        conditions.append(Payment.payment_method == payment_method)

    total = (
        await db.execute(select(func.count(Payment.id)).where(*conditions))
    ).scalar_one()
    payments = (
        await db.execute(
            select(Payment)
            .where(*conditions)
            .order_by(Payment.payment_date.desc(), Payment.receipt_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()

    allocations: Dict[UUID, List[PaymentAllocation]] = {}
    if payments:
        for a in (
            await db.execute(
                select(PaymentAllocation).where(PaymentAllocation.payment_id.in_([p.id for p in payments]))
            )
        ).scalars().all():
            allocations.setdefault(to_uuid(a.payment_id), []).append(a)

    return PaymentListResponse(
        items=[payment_to_response(p, allocations.get(to_uuid(p.id), [])) for p in payments],
        pagination=_pagination(page, limit, total),
    )
