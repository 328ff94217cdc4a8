from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees.service import assign_fee_to_student
from app.core.enums import AcademicYearStatus, FeeFrequency
from app.core.models import AcademicYear, FeeAuditLog, FeeStructure


@pytest.mark.asyncio
async def test_create_fee_type_uppercases_code(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/fee-types",
        json={"name": "Bus Fee", "code": "bus-01", "category": "TRANSPORT", "is_recurring": True},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["code"] == "BUS-01"
    assert data["category"] == "TRANSPORT"
    assert data["is_active"] is True


@pytest.mark.asyncio
async def test_duplicate_fee_type_code_conflicts(client: AsyncClient) -> None:
    payload = {"name": "Exam", "code": "EXAM", "category": "EXAM"}
    assert (await client.post("/api/v1/fee-types", json=payload)).status_code == 201
    response = await client.post("/api/v1/fee-types", json={**payload, "code": "exam"})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_list_fee_types_filters(client: AsyncClient) -> None:
    await client.post("/api/v1/fee-types", json={"name": "Tuition", "code": "TUI", "category": "ACADEMIC", "is_recurring": True})
    await client.post("/api/v1/fee-types", json={"name": "Lab", "code": "LAB", "category": "FACILITY"})

    response = await client.get("/api/v1/fee-types", params={"is_recurring": True})
    assert [ft["code"] for ft in response.json()] == ["TUI"]

    response = await client.get("/api/v1/fee-types", params={"category": "FACILITY"})
    assert [ft["code"] for ft in response.json()] == ["LAB"]


@pytest.mark.asyncio
async def test_fee_type_locked_once_students_assigned(
    client: AsyncClient, db_session: AsyncSession, tuition_type, make_structure, enroll
) -> None:
    fs = await make_structure(tuition_type, "12000.00")
    student = await enroll()
    await assign_fee_to_student(db_session, fs.id, student.id)

    response = await client.patch(f"/api/v1/fee-types/{tuition_type.id}", json={"name": "Tuition Fee"})
    assert response.status_code == 409

    response = await client.patch(f"/api/v1/fee-types/{tuition_type.id}", json={"description": "Term tuition"})
    assert response.status_code == 200
    assert response.json()["description"] == "Term tuition"


@pytest.mark.asyncio
async def test_create_fee_structure_and_reject_duplicate_active_triple(
    client: AsyncClient, academic_year, school_class, tuition_type
) -> None:
    payload = {
        "academic_year_id": str(academic_year.id),
        "class_id": str(school_class.id),
        "fee_type_id": str(tuition_type.id),
        "amount": "12000.00",
        "frequency": "MONTHLY",
    }
    response = await client.post("/api/v1/fee-structures", json=payload)
    assert response.status_code == 201
    assert Decimal(response.json()["amount"]) == Decimal("12000.00")

    response = await client.post("/api/v1/fee-structures", json=payload)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_fee_structure_rejects_closed_year(
    client: AsyncClient, db_session: AsyncSession, school_class, tuition_type
) -> None:
    closed = AcademicYear(
        name="2024-2025", start_date=date(2024, 4, 1), end_date=date(2025, 3, 31),
        status=AcademicYearStatus.CLOSED.value,
    )
    db_session.add(closed)
    await db_session.commit()

    response = await client.post(
        "/api/v1/fee-structures",
        json={
            "academic_year_id": str(closed.id),
            "class_id": str(school_class.id),
            "fee_type_id": str(tuition_type.id),
            "amount": "500.00",
            "frequency": "ONE_TIME",
        },
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_fee_structure_amount_must_be_positive(client: AsyncClient, academic_year, school_class, tuition_type) -> None:
    response = await client.post(
        "/api/v1/fee-structures",
        json={
            "academic_year_id": str(academic_year.id),
            "class_id": str(school_class.id),
            "fee_type_id": str(tuition_type.id),
            "amount": "0",
            "frequency": "MONTHLY",
        },
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_fee_structures_reports_assigned_count(
    client: AsyncClient, db_session: AsyncSession, academic_year, tuition_type, make_structure, enroll
) -> None:
    fs = await make_structure(tuition_type, "1200.00")
    for _ in range(3):
        student = await enroll()
        await assign_fee_to_student(db_session, fs.id, student.id)

    response = await client.get("/api/v1/fee-structures", params={"academic_year_id": str(academic_year.id)})
    assert response.status_code == 200
    [item] = response.json()
    assert item["assigned_count"] == 3
    assert item["class_name"] == "Grade 5"
    assert item["fee_type_code"] == "TUITION"


@pytest.mark.asyncio
async def test_structure_with_assigned_students_cannot_be_repriced_or_deleted(
    client: AsyncClient, db_session: AsyncSession, tuition_type, make_structure, enroll
) -> None:
    fs = await make_structure(tuition_type, "12000.00")
    student = await enroll()
    await assign_fee_to_student(db_session, fs.id, student.id)

    response = await client.patch(f"/api/v1/fee-structures/{fs.id}", json={"amount": "15000.00"})
    assert response.status_code == 409
    response = await client.delete(f"/api/v1/fee-structures/{fs.id}")
    assert response.status_code == 409

    response = await client.patch(f"/api/v1/fee-structures/{fs.id}", json={"is_active": False})
    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert Decimal(response.json()["amount"]) == Decimal("12000.00")


@pytest.mark.asyncio
async def test_assigned_structure_accepts_full_form_with_unchanged_pricing(
    client: AsyncClient, db_session: AsyncSession, tuition_type, make_structure, enroll
) -> None:
    fs = await make_structure(tuition_type, "12000.00")
    student = await enroll()
    await assign_fee_to_student(db_session, fs.id, student.id)

    response = await client.patch(
        f"/api/v1/fee-structures/{fs.id}",
        json={"amount": "12000", "frequency": "MONTHLY", "due_date": None, "description": "  ", "is_active": False},
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert Decimal(response.json()["amount"]) == Decimal("12000.00")

    response = await client.patch(
        f"/api/v1/fee-structures/{fs.id}", json={"amount": "12000.00", "frequency": "QUARTERLY"}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unassigned_structure_can_be_edited_and_deleted(
    client: AsyncClient, db_session: AsyncSession, tuition_type, make_structure
) -> None:
    fs = await make_structure(tuition_type, "12000.00")

    response = await client.patch(
        f"/api/v1/fee-structures/{fs.id}", json={"amount": "9000.00", "frequency": "QUARTERLY"}
    )
    assert response.status_code == 200
    assert response.json()["frequency"] == "QUARTERLY"

    response = await client.delete(f"/api/v1/fee-structures/{fs.id}")
    assert response.status_code == 204
    remaining = (await db_session.execute(select(func.count(FeeStructure.id)))).scalar_one()
    assert remaining == 0

    actions = (await db_session.execute(select(FeeAuditLog.action_type))).scalars().all()
    assert "UPDATE" in actions and "DELETE" in actions


@pytest.mark.asyncio
async def test_reactivating_structure_respects_active_uniqueness(
    client: AsyncClient, tuition_type, make_structure
) -> None:
    old = await make_structure(tuition_type, "10000.00")
    await client.patch(f"/api/v1/fee-structures/{old.id}", json={"is_active": False})
    await make_structure(tuition_type, "11000.00", FeeFrequency.QUARTERLY)

    response = await client.patch(f"/api/v1/fee-structures/{old.id}", json={"is_active": True})
    assert response.status_code == 409
