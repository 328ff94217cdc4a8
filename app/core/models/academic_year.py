import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, String, Uuid

from app.core.enums import AcademicYearStatus
from app.db.session import Base


class AcademicYear(Base):
    """
    Academic year calendar (e.g. 2026-2027, April to March).
    Fee structures are defined per year and instalments are spread across start_date..end_date.
    CLOSED years are read-only for the fee catalog and assignment.
    """

    __tablename__ = "academic_years"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=AcademicYearStatus.ACTIVE.value)  # ACTIVE | CLOSED
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
