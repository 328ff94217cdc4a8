"""
Payment ledger: records payments and discounts against student fees, allocates them to
instalments oldest-due first, reverses payments, waives fees and marks overdue rows.

Every mutation runs in one transaction. The student fee row is read FOR UPDATE and
written with a version check, so two payments racing on the same fee can never both
spend the same due amount.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.enums import UNSETTLED_STATUSES, FeeStatus
from app.core.exceptions import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from app.core.models import MonthlyDue, Payment, PaymentAllocation, StudentFee
from app.core.money import ZERO, to_money, to_uuid

from . import receipts
from .audit_service import log_fee_audit
from .schemas import (
    OverdueRefreshResult,
    PaymentAllocationResponse,
    PaymentCreate,
    PaymentResponse,
    StudentFeeResponse,
)
from .service import _student_fee_response

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "The fee was changed by another transaction; refresh the due amount and retry"


def payment_to_response(p: Payment, allocations: Optional[List[PaymentAllocation]] = None) -> PaymentResponse:
    return PaymentResponse(
        id=to_uuid(p.id),
        student_id=to_uuid(p.student_id),
        student_fee_id=to_uuid(p.student_fee_id),
        amount=to_money(p.amount),
        discount_amount=to_money(p.discount_amount),
        discount_reason=p.discount_reason,
        payment_method=p.payment_method,
        payment_date=p.payment_date,
        receipt_number=p.receipt_number,
        transaction_id=p.transaction_id,
        remarks=p.remarks,
        collected_by=to_uuid(p.collected_by),
        reversal_of_id=to_uuid(p.reversal_of_id),
        created_at=p.created_at,
        allocations=[
            PaymentAllocationResponse(
                monthly_due_id=to_uuid(a.monthly_due_id),
                amount=to_money(a.amount),
                discount_amount=to_money(a.discount_amount),
            )
            for a in (allocations or [])
        ],
    )


def derive_status(paid: Decimal, discount: Decimal, due: Decimal) -> str:
    """Status implied by balances on the payment path. WAIVED and OVERDUE are never produced here."""
    if due == ZERO:
        return FeeStatus.PAID.value
    if paid + discount > ZERO:
        return FeeStatus.PARTIAL.value
    return FeeStatus.PENDING.value


def _open_balance(md: MonthlyDue) -> Decimal:
    return to_money(md.amount) - to_money(md.paid_amount) - to_money(md.discount_amount)


def allocate_oldest_first(
    dues: List[MonthlyDue],
    amount: Decimal,
    discount: Decimal,
) -> Tuple[List[Tuple[MonthlyDue, Decimal, Decimal]], Decimal]:
    """
    Plan how a payment settles instalments. dues must already be ordered oldest first.
    Cash fills each month's open balance before spilling into the next; the discount then
    does the same over whatever remains. Returns ([(due, cash, discount)], unallocated).
    """
    remaining: Dict[int, Decimal] = {i: _open_balance(d) for i, d in enumerate(dues)}
    cash_parts: Dict[int, Decimal] = {}
    discount_parts: Dict[int, Decimal] = {}
    unallocated = ZERO

    for value, parts in ((amount, cash_parts), (discount, discount_parts)):
        left = value
        for i in range(len(dues)):
            if left <= ZERO:
                break
            take = min(left, remaining[i])
            if take <= ZERO:
                continue
            remaining[i] -= take
            parts[i] = parts.get(i, ZERO) + take
            left -= take
        unallocated += left

    plan = [
        (dues[i], cash_parts.get(i, ZERO), discount_parts.get(i, ZERO))
        for i in range(len(dues))
        if i in cash_parts or i in discount_parts
    ]
    return plan, unallocated


def _restatus_monthly_due(md: MonthlyDue, when: datetime) -> None:
    settled = to_money(md.paid_amount) + to_money(md.discount_amount)
    if settled >= to_money(md.amount):
        md.status = FeeStatus.PAID.value
        md.paid_date = md.paid_date or when
    elif settled > ZERO:
        md.status = FeeStatus.PARTIAL.value
        md.paid_date = None
    else:
        md.status = FeeStatus.PENDING.value
        md.paid_date = None


def _check_invariant(sf: StudentFee) -> None:
    total = to_money(sf.total_amount)
    paid = to_money(sf.paid_amount)
    discount = to_money(sf.discount_amount)
    due = to_money(sf.due_amount)
    if due < ZERO or paid < ZERO or discount < ZERO or paid + discount + due != total:
        logger.error(
            "Ledger invariant broken for student fee %s: total=%s paid=%s discount=%s due=%s",
            sf.id, total, paid, discount, due,
        )
        raise ConsistencyError("Ledger invariant violated; the operation was rolled back")


def _balances(sf: StudentFee) -> dict:
    return {
        "paid_amount": str(to_money(sf.paid_amount)),
        "discount_amount": str(to_money(sf.discount_amount)),
        "due_amount": str(to_money(sf.due_amount)),
        "status": sf.status,
    }


async def _get_student_fee_for_update(db: AsyncSession, student_fee_id: UUID) -> Optional[StudentFee]:
    """Fresh, row-locked read of the fee (the lock is a no-op on SQLite; the version check still applies)."""
    return (
        await db.execute(
            select(StudentFee)
            .where(StudentFee.id == student_fee_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def _unsettled_monthly_dues(db: AsyncSession, student_fee_id: UUID) -> List[MonthlyDue]:
    return list(
        (
            await db.execute(
                select(MonthlyDue)
                .where(
                    MonthlyDue.student_fee_id == student_fee_id,
                    MonthlyDue.status.in_(UNSETTLED_STATUSES),
                )
                .order_by(MonthlyDue.due_date, MonthlyDue.period_index)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def record_payment(
    db: AsyncSession,
    student_fee_id: UUID,
    payload: PaymentCreate,
) -> PaymentResponse:
    """
    Record a payment (and optional discount) against a student fee, all or nothing.

    amount + discount may not exceed the current due amount. A discount needs a reason.
    """
    amount = to_money(payload.amount)
    discount = to_money(payload.discount_amount)
    reason = (payload.discount_reason or "").strip() or None
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than zero")
    if discount < ZERO:
        raise ValidationError("Discount amount cannot be negative")
    if discount > ZERO and not reason:
        raise ValidationError("A discount reason is required when a discount is applied")

    try:
        sf = await _get_student_fee_for_update(db, student_fee_id)
        if not sf:
            raise NotFoundError("Student fee not found")
        if sf.status == FeeStatus.WAIVED.value:
            raise ValidationError("This fee has been waived and cannot take payments")
        due = to_money(sf.due_amount)
        if amount + discount > due:
            raise ValidationError(
                f"Payment of {amount + discount} exceeds the remaining due amount of {due}"
            )

        paid_at = payload.payment_date or _now()
        old = _balances(sf)
        sf.paid_amount = to_money(sf.paid_amount) + amount
        sf.discount_amount = to_money(sf.discount_amount) + discount
        sf.due_amount = to_money(sf.total_amount) - sf.paid_amount - sf.discount_amount
        _check_invariant(sf)
        sf.status = derive_status(sf.paid_amount, sf.discount_amount, sf.due_amount)
        sf.last_payment_date = paid_at

        dues = await _unsettled_monthly_dues(db, student_fee_id)
        plan: List[Tuple[MonthlyDue, Decimal, Decimal]] = []
        if dues:
            plan, unallocated = allocate_oldest_first(dues, amount, discount)
            if unallocated > ZERO:
                logger.error(
                    "Instalments of student fee %s cannot absorb %s; instalments and fee disagree",
                    student_fee_id, unallocated,
                )
                raise ConsistencyError("Instalment balances do not match the fee due amount")

        payment = Payment(
            student_id=sf.student_id,
            student_fee_id=sf.id,
            amount=amount,
            discount_amount=discount,
            discount_reason=reason,
            payment_method=payload.payment_method.value,
            payment_date=paid_at,
            receipt_number=await receipts.next_receipt_number(db, paid_at),
            transaction_id=(payload.transaction_id or "").strip() or None,
            remarks=(payload.remarks or "").strip() or None,
            collected_by=payload.collected_by,
        )
        db.add(payment)
        await db.flush()

        allocations: List[PaymentAllocation] = []
        for md, cash, disc in plan:
            md.paid_amount = to_money(md.paid_amount) + cash
            md.discount_amount = to_money(md.discount_amount) + disc
            _restatus_monthly_due(md, paid_at)
            alloc = PaymentAllocation(payment_id=payment.id, monthly_due_id=md.id, amount=cash, discount_amount=disc)
            db.add(alloc)
            allocations.append(alloc)

        await receipts.issue_for_payment(db, payment, sf)
        await log_fee_audit(
            db, "payments", payment.id, "PAYMENT", old,
            {
                **_balances(sf),
                "amount": str(amount),
                "discount": str(discount),
                "receipt_number": payment.receipt_number,
                "months": len(plan),
            },
            payload.collected_by,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except StaleDataError:
        await db.rollback()
        logger.warning("Concurrent update lost on student fee %s", student_fee_id)
        raise ConflictError(CONFLICT_MESSAGE)
    except (IntegrityError, OperationalError) as e:
        await db.rollback()
        logger.warning("Payment on student fee %s rejected by the database: %s", student_fee_id, e.__class__.__name__)
        raise ConflictError(CONFLICT_MESSAGE)

    logger.info(
        "Recorded payment %s of %s (discount %s) on student fee %s; status %s",
        payment.receipt_number, amount, discount, student_fee_id, sf.status,
    )
    return payment_to_response(payment, allocations)


async def reverse_payment(
    db: AsyncSession,
    payment_id: UUID,
    reason: str,
    collected_by: Optional[UUID] = None,
) -> PaymentResponse:
    """
    Correct a payment by appending an equal and opposite entry. The original row is left
    untouched; its instalment allocations are unwound month by month.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to reverse a payment")

    try:
        original = await db.get(Payment, payment_id)
        if not original:
            raise NotFoundError("Payment not found")
        if original.reversal_of_id is not None:
            raise ConflictError("A reversal entry cannot itself be reversed")
        already = (
            await db.execute(select(Payment.id).where(Payment.reversal_of_id == payment_id))
        ).scalar_one_or_none()
        if already:
            raise ConflictError("Payment has already been reversed")

        sf = await _get_student_fee_for_update(db, original.student_fee_id)
        if not sf:
            raise ConsistencyError("Payment references a missing student fee")
        if sf.status == FeeStatus.WAIVED.value:
            raise ConflictError("Cannot reverse a payment on a waived fee")

        amount = to_money(original.amount)
        discount = to_money(original.discount_amount)
        now = _now()
        old = _balances(sf)
        sf.paid_amount = to_money(sf.paid_amount) - amount
        sf.discount_amount = to_money(sf.discount_amount) - discount
        sf.due_amount = to_money(sf.total_amount) - sf.paid_amount - sf.discount_amount
        _check_invariant(sf)
        sf.status = derive_status(sf.paid_amount, sf.discount_amount, sf.due_amount)

        reversal = Payment(
            student_id=original.student_id,
            student_fee_id=original.student_fee_id,
            amount=-amount,
            discount_amount=-discount,
            discount_reason=reason if discount > ZERO else None,
            payment_method=original.payment_method,
            payment_date=now,
            receipt_number=await receipts.next_receipt_number(db, now),
            transaction_id=original.transaction_id,
            remarks=f"Reversal of {original.receipt_number}: {reason}",
            collected_by=collected_by,
            reversal_of_id=original.id,
        )
        db.add(reversal)
        await db.flush()

        original_allocs = (
            await db.execute(select(PaymentAllocation).where(PaymentAllocation.payment_id == original.id))
        ).scalars().all()
        allocations: List[PaymentAllocation] = []
        for alloc in original_allocs:
            md = await db.get(MonthlyDue, alloc.monthly_due_id, with_for_update=True, populate_existing=True)
            md.paid_amount = to_money(md.paid_amount) - to_money(alloc.amount)
            md.discount_amount = to_money(md.discount_amount) - to_money(alloc.discount_amount)
            if md.paid_amount < ZERO or md.discount_amount < ZERO:
                logger.error("Reversing payment %s drives instalment %s negative", payment_id, md.id)
                raise ConsistencyError("Instalment balance would go negative")
            _restatus_monthly_due(md, now)
            undo = PaymentAllocation(
                payment_id=reversal.id,
                monthly_due_id=md.id,
                amount=-to_money(alloc.amount),
                discount_amount=-to_money(alloc.discount_amount),
            )
            db.add(undo)
            allocations.append(undo)

        await receipts.issue_for_payment(db, reversal, sf)
        await log_fee_audit(
            db, "payments", reversal.id, "REVERSAL", old,
            {**_balances(sf), "reversal_of": str(original.id), "reason": reason},
            collected_by,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except StaleDataError:
        await db.rollback()
        logger.warning("Concurrent update lost while reversing payment %s", payment_id)
        raise ConflictError(CONFLICT_MESSAGE)
    except (IntegrityError, OperationalError):
        await db.rollback()
        raise ConflictError("Payment has already been reversed or the fee changed; retry")

    logger.info("Reversed payment %s with %s", payment_id, reversal.receipt_number)
    return payment_to_response(reversal, allocations)


async def waive_student_fee(
    db: AsyncSession,
    student_fee_id: UUID,
    reason: str,
    changed_by: Optional[UUID] = None,
) -> StudentFeeResponse:
    """Administrative waiver. Terminal; balances are kept as they were for the record."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to waive a fee")

    try:
        sf = await _get_student_fee_for_update(db, student_fee_id)
        if not sf:
            raise NotFoundError("Student fee not found")
        if sf.status == FeeStatus.WAIVED.value:
            response = await _student_fee_response(db, sf)
            await db.commit()
            return response
        if sf.status == FeeStatus.PAID.value:
            raise ConflictError("Fee is already fully settled")

        old_status = sf.status
        sf.status = FeeStatus.WAIVED.value
        sf.waived_reason = reason
        for md in await _unsettled_monthly_dues(db, student_fee_id):
            md.status = FeeStatus.WAIVED.value
        await log_fee_audit(
            db, "student_fees", sf.id, "WAIVE",
            {"status": old_status},
            {"status": sf.status, "reason": reason, "due_amount": str(to_money(sf.due_amount))},
            changed_by,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except (StaleDataError, OperationalError):
        await db.rollback()
        raise ConflictError(CONFLICT_MESSAGE)

    logger.info("Waived student fee %s: %s", student_fee_id, reason)
    return await _student_fee_response(db, sf)


async def refresh_overdue_statuses(
    db: AsyncSession,
    as_of: date,
    academic_year_id: Optional[UUID] = None,
) -> OverdueRefreshResult:
    """
    Persist OVERDUE on unresolved rows whose due date has passed. Idempotent and safe to
    rerun; payments later move rows back to PARTIAL or PAID.
    """
    fee_stmt = (
        update(StudentFee)
        .where(
            StudentFee.due_date < as_of,
            StudentFee.status.in_((FeeStatus.PENDING.value, FeeStatus.PARTIAL.value)),
        )
        .values(status=FeeStatus.OVERDUE.value, version=StudentFee.version + 1)
        .execution_options(synchronize_session=False)
    )
    due_stmt = (
        update(MonthlyDue)
        .where(
            MonthlyDue.due_date < as_of,
            MonthlyDue.status.in_((FeeStatus.PENDING.value, FeeStatus.PARTIAL.value)),
            MonthlyDue.amount - MonthlyDue.paid_amount - MonthlyDue.discount_amount > 0,
        )
        .values(status=FeeStatus.OVERDUE.value)
        .execution_options(synchronize_session=False)
    )
    if academic_year_id is not None:
        fee_stmt = fee_stmt.where(StudentFee.academic_year_id == academic_year_id)
        due_stmt = due_stmt.where(
            MonthlyDue.student_fee_id.in_(
                select(StudentFee.id).where(StudentFee.academic_year_id == academic_year_id)
            )
        )
    try:
        fees_marked = (await db.execute(fee_stmt)).rowcount
        dues_marked = (await db.execute(due_stmt)).rowcount
        await db.commit()
    except OperationalError:
        await db.rollback()
        raise ConflictError("Overdue refresh collided with other writes; retry")

    logger.info("Overdue refresh as of %s: %d fees, %d instalments", as_of, fees_marked, dues_marked)
    return OverdueRefreshResult(as_of=as_of, student_fees_marked=fees_marked, monthly_dues_marked=dues_marked)
