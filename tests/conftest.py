import os
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./fee_ledger_test.db")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.enums import AcademicYearStatus, FeeCategory, FeeFrequency
from app.core.models import (
    AcademicYear,
    FeeStructure,
    FeeType,
    SchoolClass,
    Student,
    StudentAcademicRecord,
)
from app.db.session import Base, get_db
from app.main import app


@pytest.fixture()
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """A fresh file-backed SQLite DB per test, so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fees.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield factory
    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def academic_year(db_session: AsyncSession) -> AcademicYear:
    """April 2026 to March 2027: twelve calendar months."""
    ay = AcademicYear(
        name="2026-2027",
        start_date=date(2026, 4, 1),
        end_date=date(2027, 3, 31),
        status=AcademicYearStatus.ACTIVE.value,
    )
    db_session.add(ay)
    await db_session.commit()
    return ay


@pytest.fixture()
async def school_class(db_session: AsyncSession) -> SchoolClass:
    cl = SchoolClass(name="Grade 5", section="A", display_order=5, is_active=True)
    db_session.add(cl)
    await db_session.commit()
    return cl


@pytest.fixture()
async def tuition_type(db_session: AsyncSession) -> FeeType:
    ft = FeeType(name="Tuition", code="TUITION", category=FeeCategory.ACADEMIC.value, is_recurring=True, is_active=True)
    db_session.add(ft)
    await db_session.commit()
    return ft


@pytest.fixture()
async def admission_type(db_session: AsyncSession) -> FeeType:
    ft = FeeType(name="Admission", code="ADMISSION", category=FeeCategory.OTHER.value, is_recurring=False, is_active=True)
    db_session.add(ft)
    await db_session.commit()
    return ft


@pytest.fixture()
def enroll(db_session: AsyncSession, academic_year: AcademicYear, school_class: SchoolClass):
    """Factory: create a student with an ACTIVE enrollment in the test class."""
    counter = {"n": 0}

    async def _enroll(full_name: str = None, school_class_: SchoolClass = None) -> Student:
        counter["n"] += 1
        n = counter["n"]
        student = Student(full_name=full_name or f"Student {n:03d}", admission_number=f"ADM-{n:04d}", is_active=True)
        db_session.add(student)
        await db_session.flush()
        db_session.add(
            StudentAcademicRecord(
                student_id=student.id,
                academic_year_id=academic_year.id,
                class_id=(school_class_ or school_class).id,
                roll_number=str(n),
            )
        )
        await db_session.commit()
        return student

    return _enroll


@pytest.fixture()
def make_structure(db_session: AsyncSession, academic_year: AcademicYear, school_class: SchoolClass):
    """Factory: create an active fee structure for the test class and year."""

    async def _make(
        fee_type: FeeType,
        amount: str,
        frequency: FeeFrequency = FeeFrequency.MONTHLY,
        due_date: date = None,
    ) -> FeeStructure:
        fs = FeeStructure(
            academic_year_id=academic_year.id,
            class_id=school_class.id,
            fee_type_id=fee_type.id,
            amount=Decimal(amount),
            frequency=frequency.value,
            due_date=due_date,
            is_active=True,
        )
        db_session.add(fs)
        await db_session.commit()
        return fs

    return _make
