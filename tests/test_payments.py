import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees import ledger, reports
from app.api.v1.fees.schemas import PaymentCreate, PaymentResponse
from app.api.v1.fees.service import assign_fee_to_student
from app.core.enums import FeeFrequency, PaymentMethod
from app.core.exceptions import ConflictError, ConsistencyError, NotFoundError, ServiceError, ValidationError
from app.core.models import FeeAuditLog, MonthlyDue, Payment, Receipt, StudentFee

PAID_ON = datetime(2026, 5, 2, 10, 30, tzinfo=timezone.utc)


def pay(amount: str, discount: str = "0", reason: str = None, **kwargs) -> PaymentCreate:
    return PaymentCreate(
        amount=Decimal(amount),
        discount_amount=Decimal(discount),
        discount_reason=reason,
        payment_method=kwargs.pop("payment_method", PaymentMethod.CASH),
        payment_date=kwargs.pop("payment_date", PAID_ON),
        **kwargs,
    )


@pytest.fixture()
async def one_time_fee(db_session: AsyncSession, admission_type, make_structure, enroll):
    """A 5000.00 one-time fee with no instalments."""
    fs = await make_structure(admission_type, "5000.00", FeeFrequency.ONE_TIME, due_date=date(2026, 6, 30))
    student = await enroll("Asha Rao")
    sf, _ = await assign_fee_to_student(db_session, fs.id, student.id)
    return sf


@pytest.fixture()
async def monthly_fee(db_session: AsyncSession, tuition_type, make_structure, enroll):
    """A 12000.00 tuition fee split into twelve 1000.00 months."""
    fs = await make_structure(tuition_type, "12000.00")
    student = await enroll("Ravi Kumar")
    sf, _ = await assign_fee_to_student(db_session, fs.id, student.id)
    return sf


async def _months(db: AsyncSession, student_fee_id):
    return (
        await db.execute(
            select(MonthlyDue)
            .where(MonthlyDue.student_fee_id == student_fee_id)
            .order_by(MonthlyDue.period_index)
            .execution_options(populate_existing=True)
        )
    ).scalars().all()


async def _fee(db: AsyncSession, student_fee_id) -> StudentFee:
    return (
        await db.execute(
            select(StudentFee).where(StudentFee.id == student_fee_id).execution_options(populate_existing=True)
        )
    ).scalar_one()


def _month_dues(md: MonthlyDue) -> Decimal:
    return md.amount - md.paid_amount - md.discount_amount


def test_allocation_fills_oldest_month_first() -> None:
    dues = [
        MonthlyDue(amount=Decimal("1000.00"), paid_amount=Decimal("0.00"), discount_amount=Decimal("0.00"))
        for _ in range(3)
    ]
    plan, unallocated = ledger.allocate_oldest_first(dues, Decimal("1500.00"), Decimal("600.00"))

    assert unallocated == Decimal("0.00")
    assert [(cash, disc) for _, cash, disc in plan] == [
        (Decimal("1000.00"), Decimal("0.00")),
        (Decimal("500.00"), Decimal("500.00")),
        (Decimal("0.00"), Decimal("100.00")),
    ]


def test_allocation_reports_amount_the_months_cannot_absorb() -> None:
    dues = [MonthlyDue(amount=Decimal("100.00"), paid_amount=Decimal("60.00"), discount_amount=Decimal("0.00"))]
    _, unallocated = ledger.allocate_oldest_first(dues, Decimal("50.00"), Decimal("0.00"))
    assert unallocated == Decimal("10.00")


def test_derive_status() -> None:
    assert ledger.derive_status(Decimal("0"), Decimal("0"), Decimal("5000.00")) == "PENDING"
    assert ledger.derive_status(Decimal("3000.00"), Decimal("0"), Decimal("2000.00")) == "PARTIAL"
    assert ledger.derive_status(Decimal("0"), Decimal("100.00"), Decimal("4900.00")) == "PARTIAL"
    assert ledger.derive_status(Decimal("4900.00"), Decimal("100.00"), Decimal("0.00")) == "PAID"


def test_broken_balances_raise_consistency_error() -> None:
    sf = StudentFee(
        total_amount=Decimal("5000.00"),
        paid_amount=Decimal("3000.00"),
        discount_amount=Decimal("0.00"),
        due_amount=Decimal("2500.00"),
    )
    with pytest.raises(ConsistencyError):
        ledger._check_invariant(sf)


@pytest.mark.asyncio
async def test_partial_payment_spills_into_next_month(db_session: AsyncSession, monthly_fee) -> None:
    payment = await ledger.record_payment(db_session, monthly_fee.id, pay("1500.00"))

    months = await _months(db_session, monthly_fee.id)
    assert (months[0].status, months[0].paid_amount) == ("PAID", Decimal("1000.00"))
    assert months[0].paid_date is not None
    assert (months[1].status, months[1].paid_amount) == ("PARTIAL", Decimal("500.00"))
    assert all(m.status == "PENDING" for m in months[2:])
    assert [a.amount for a in payment.allocations] == [Decimal("1000.00"), Decimal("500.00")]

    sf = await _fee(db_session, monthly_fee.id)
    assert (sf.paid_amount, sf.due_amount, sf.status) == (Decimal("1500.00"), Decimal("10500.00"), "PARTIAL")


@pytest.mark.asyncio
async def test_status_moves_pending_partial_paid(db_session: AsyncSession, one_time_fee) -> None:
    await ledger.record_payment(db_session, one_time_fee.id, pay("3000.00"))
    sf = await _fee(db_session, one_time_fee.id)
    assert (sf.due_amount, sf.status) == (Decimal("2000.00"), "PARTIAL")

    await ledger.record_payment(db_session, one_time_fee.id, pay("2000.00"))
    sf = await _fee(db_session, one_time_fee.id)
    assert (sf.due_amount, sf.status) == (Decimal("0.00"), "PAID")
    assert sf.paid_amount + sf.discount_amount + sf.due_amount == sf.total_amount


@pytest.mark.asyncio
async def test_overpayment_rejected_without_side_effects(db_session: AsyncSession, one_time_fee) -> None:
    with pytest.raises(ValidationError):
        await ledger.record_payment(db_session, one_time_fee.id, pay("5000.01"))
    with pytest.raises(ValidationError):
        await ledger.record_payment(db_session, one_time_fee.id, pay("4500.00", "600.00", "Sibling"))

    sf = await _fee(db_session, one_time_fee.id)
    assert (sf.paid_amount, sf.due_amount, sf.status) == (Decimal("0.00"), Decimal("5000.00"), "PENDING")
    assert (await db_session.execute(select(func.count(Payment.id)))).scalar_one() == 0
    assert (await db_session.execute(select(func.count(Receipt.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_second_payment_exceeding_remaining_due_is_rejected(db_session: AsyncSession, one_time_fee) -> None:
    await ledger.record_payment(db_session, one_time_fee.id, pay("3000.00"))
    with pytest.raises(ValidationError):
        await ledger.record_payment(db_session, one_time_fee.id, pay("3000.00"))

    sf = await _fee(db_session, one_time_fee.id)
    assert (sf.paid_amount, sf.due_amount) == (Decimal("3000.00"), Decimal("2000.00"))


@pytest.mark.asyncio
async def test_discount_requires_reason(db_session: AsyncSession, one_time_fee) -> None:
    with pytest.raises(ValidationError):
        await ledger.record_payment(db_session, one_time_fee.id, pay("1000.00", "500.00", "   "))

    payment = await ledger.record_payment(db_session, one_time_fee.id, pay("1000.00", "500.00", "Staff child"))
    assert payment.discount_reason == "Staff child"
    sf = await _fee(db_session, one_time_fee.id)
    assert (sf.paid_amount, sf.discount_amount, sf.due_amount) == (
        Decimal("1000.00"), Decimal("500.00"), Decimal("3500.00"),
    )


@pytest.mark.asyncio
async def test_discount_settles_months_after_cash(db_session: AsyncSession, monthly_fee) -> None:
    await ledger.record_payment(db_session, monthly_fee.id, pay("1000.00", "1000.00", "Scholarship"))

    months = await _months(db_session, monthly_fee.id)
    assert (months[0].paid_amount, months[0].discount_amount, months[0].status) == (
        Decimal("1000.00"), Decimal("0.00"), "PAID",
    )
    assert (months[1].paid_amount, months[1].discount_amount, months[1].status) == (
        Decimal("0.00"), Decimal("1000.00"), "PAID",
    )


@pytest.mark.asyncio
async def test_paying_in_full_settles_every_month(db_session: AsyncSession, monthly_fee) -> None:
    await ledger.record_payment(db_session, monthly_fee.id, pay("12000.00"))

    months = await _months(db_session, monthly_fee.id)
    assert {m.status for m in months} == {"PAID"}
    assert sum(_month_dues(m) for m in months) == Decimal("0.00")
    assert (await _fee(db_session, monthly_fee.id)).status == "PAID"


@pytest.mark.asyncio
async def test_sub_cent_monthly_fee_settles_and_leaves_nothing_overdue(
    db_session: AsyncSession, tuition_type, make_structure, enroll
) -> None:
    fs = await make_structure(tuition_type, "0.05")
    student = await enroll("Ira Menon")
    sf, _ = await assign_fee_to_student(db_session, fs.id, student.id)

    months = await _months(db_session, sf.id)
    assert [(m.year, m.month, m.amount) for m in months] == [(2027, 3, Decimal("0.05"))]
    later = date(2028, 1, 1)
    assert len((await reports.overdue(db_session, later)).monthly_dues) == 1

    await ledger.record_payment(db_session, sf.id, pay("0.05"))

    assert {m.status for m in await _months(db_session, sf.id)} == {"PAID"}
    assert (await _fee(db_session, sf.id)).status == "PAID"
    report = await reports.overdue(db_session, later)
    assert report.fees == [] and report.monthly_dues == []
    assert (await ledger.refresh_overdue_statuses(db_session, later)).monthly_dues_marked == 0


@pytest.mark.asyncio
async def test_unknown_fee_is_not_found(db_session: AsyncSession, monthly_fee) -> None:
    with pytest.raises(NotFoundError):
        await ledger.record_payment(db_session, monthly_fee.student_id, pay("10.00"))


@pytest.mark.asyncio
async def test_receipt_numbers_strictly_increase(db_session: AsyncSession, one_time_fee) -> None:
    first = await ledger.record_payment(db_session, one_time_fee.id, pay("100.00"))
    second = await ledger.record_payment(db_session, one_time_fee.id, pay("100.00"))
    third = await ledger.record_payment(db_session, one_time_fee.id, pay("100.00"))

    assert first.receipt_number == "RCP-2026-000001"
    assert second.receipt_number == "RCP-2026-000002"
    assert third.receipt_number == "RCP-2026-000003"


@pytest.mark.asyncio
async def test_payment_writes_audit_row(db_session: AsyncSession, one_time_fee) -> None:
    payment = await ledger.record_payment(db_session, one_time_fee.id, pay("250.00"))

    audit = (
        await db_session.execute(select(FeeAuditLog).where(FeeAuditLog.action_type == "PAYMENT"))
    ).scalar_one()
    assert audit.reference_id == payment.id
    assert audit.old_value["due_amount"] == "5000.00"
    assert audit.new_value["due_amount"] == "4750.00"


@pytest.mark.asyncio
async def test_stale_fee_snapshot_loses_with_conflict(
    session_factory, db_session: AsyncSession, one_time_fee, monkeypatch
) -> None:
    """Two desks read due 5000; the second writer must fail rather than double-spend."""
    async with session_factory() as desk_b:
        stale = await desk_b.get(StudentFee, one_time_fee.id)
        await desk_b.commit()
        assert stale.due_amount == Decimal("5000.00")

        async with session_factory() as desk_a:
            await ledger.record_payment(desk_a, one_time_fee.id, pay("3000.00"))

        async def stale_read(db, student_fee_id):
            return stale

        monkeypatch.setattr(ledger, "_get_student_fee_for_update", stale_read)
        with pytest.raises(ConflictError):
            await ledger.record_payment(desk_b, one_time_fee.id, pay("3000.00"))

    monkeypatch.undo()
    sf = await _fee(db_session, one_time_fee.id)
    assert (sf.paid_amount, sf.due_amount, sf.status) == (Decimal("3000.00"), Decimal("2000.00"), "PARTIAL")
    assert (await db_session.execute(select(func.count(Payment.id)))).scalar_one() == 1


@pytest.mark.asyncio
async def test_simultaneous_desks_cannot_both_spend_the_same_due(
    session_factory, db_session: AsyncSession, one_time_fee
) -> None:
    """Two desks post 3000 each against a 5000 due at the same time; exactly one lands."""

    async def desk(amount: str):
        async with session_factory() as db:
            return await ledger.record_payment(db, one_time_fee.id, pay(amount))

    results = await asyncio.gather(desk("3000.00"), desk("3000.00"), return_exceptions=True)

    landed = [r for r in results if isinstance(r, PaymentResponse)]
    refused = [r for r in results if isinstance(r, ServiceError)]
    assert len(landed) == 1 and len(refused) == 1
    assert refused[0].status_code in (400, 409)

    sf = await _fee(db_session, one_time_fee.id)
    assert (sf.paid_amount, sf.due_amount, sf.status) == (Decimal("3000.00"), Decimal("2000.00"), "PARTIAL")
    assert (await db_session.execute(select(func.count(Payment.id)))).scalar_one() == 1
    assert (await db_session.execute(select(func.count(Receipt.id)))).scalar_one() == 1


@pytest.mark.asyncio
async def test_reversal_restores_balances_and_months(db_session: AsyncSession, monthly_fee) -> None:
    payment = await ledger.record_payment(db_session, monthly_fee.id, pay("1500.00", "200.00", "Early bird"))

    reversal = await ledger.reverse_payment(db_session, payment.id, "Cheque bounced")

    assert reversal.reversal_of_id == payment.id
    assert (reversal.amount, reversal.discount_amount) == (Decimal("-1500.00"), Decimal("-200.00"))
    assert reversal.receipt_number != payment.receipt_number
    sf = await _fee(db_session, monthly_fee.id)
    assert (sf.paid_amount, sf.discount_amount, sf.due_amount, sf.status) == (
        Decimal("0.00"), Decimal("0.00"), Decimal("12000.00"), "PENDING",
    )
    months = await _months(db_session, monthly_fee.id)
    assert all(m.status == "PENDING" and m.paid_amount == 0 and m.discount_amount == 0 for m in months)
    assert all(m.paid_date is None for m in months)

    # Original entry stays in the ledger
    assert (await db_session.execute(select(func.count(Payment.id)))).scalar_one() == 2


@pytest.mark.asyncio
async def test_payment_reversed_only_once(db_session: AsyncSession, one_time_fee) -> None:
    payment = await ledger.record_payment(db_session, one_time_fee.id, pay("1000.00"))
    reversal = await ledger.reverse_payment(db_session, payment.id, "Entered twice")

    with pytest.raises(ConflictError):
        await ledger.reverse_payment(db_session, payment.id, "Again")
    with pytest.raises(ConflictError):
        await ledger.reverse_payment(db_session, reversal.id, "Undo the undo")
    with pytest.raises(ValidationError):
        await ledger.reverse_payment(db_session, payment.id, "  ")


@pytest.mark.asyncio
async def test_waived_fee_rejects_payments_and_reversals(db_session: AsyncSession, monthly_fee) -> None:
    payment = await ledger.record_payment(db_session, monthly_fee.id, pay("1000.00"))

    waived = await ledger.waive_student_fee(db_session, monthly_fee.id, "Hardship")
    assert waived.status == "WAIVED"
    assert waived.waived_reason == "Hardship"
    assert waived.due_amount == Decimal("11000.00")
    assert [m.status for m in waived.monthly_dues] == ["PAID"] + ["WAIVED"] * 11

    with pytest.raises(ValidationError):
        await ledger.record_payment(db_session, monthly_fee.id, pay("10.00"))
    with pytest.raises(ConflictError):
        await ledger.reverse_payment(db_session, payment.id, "Too late")

    again = await ledger.waive_student_fee(db_session, monthly_fee.id, "Hardship")
    assert again.status == "WAIVED"


@pytest.mark.asyncio
async def test_refresh_overdue_is_idempotent_and_payment_clears_it(
    db_session: AsyncSession, one_time_fee, monthly_fee
) -> None:
    result = await ledger.refresh_overdue_statuses(db_session, date(2026, 7, 1))
    # One-time fee due 30 June; April, May and June tuition months
    assert (result.student_fees_marked, result.monthly_dues_marked) == (1, 3)

    again = await ledger.refresh_overdue_statuses(db_session, date(2026, 7, 1))
    assert (again.student_fees_marked, again.monthly_dues_marked) == (0, 0)

    assert (await _fee(db_session, one_time_fee.id)).status == "OVERDUE"
    await ledger.record_payment(db_session, one_time_fee.id, pay("1000.00"))
    assert (await _fee(db_session, one_time_fee.id)).status == "PARTIAL"

    await ledger.record_payment(db_session, monthly_fee.id, pay("1000.00"))
    months = await _months(db_session, monthly_fee.id)
    assert [m.status for m in months[:4]] == ["PAID", "OVERDUE", "OVERDUE", "PENDING"]


@pytest.mark.asyncio
async def test_pay_endpoint_and_error_mapping(client: AsyncClient, one_time_fee) -> None:
    body = {"amount": "1200.00", "payment_method": "UPI", "transaction_id": "UPI-778", "payment_date": PAID_ON.isoformat()}
    response = await client.post(f"/api/v1/fees/pay/{one_time_fee.id}", json=body)
    assert response.status_code == 201
    data = response.json()
    assert data["receipt_number"] == "RCP-2026-000001"
    assert Decimal(data["amount"]) == Decimal("1200.00")

    response = await client.post(f"/api/v1/fees/pay/{one_time_fee.id}", json={**body, "amount": "9999.00"})
    assert response.status_code == 400
    response = await client.post(f"/api/v1/fees/pay/{one_time_fee.student_id}", json=body)
    assert response.status_code == 404

    response = await client.post(f"/api/v1/fees/payments/{data['id']}/reverse", json={"reason": "Wrong student"})
    assert response.status_code == 201
    response = await client.post(f"/api/v1/fees/payments/{data['id']}/reverse", json={"reason": "Wrong student"})
    assert response.status_code == 409

    response = await client.get("/api/v1/fees/payments", params={"student_id": str(one_time_fee.student_id)})
    assert response.json()["pagination"]["total"] == 2
