import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.core.enums import EnrollmentStatus
from app.db.session import Base


class StudentAcademicRecord(Base):
    """
    Student enrollment per academic year. One record per (student, academic_year).
    Promotion creates NEW records; old record status → PROMOTED.
    A student belongs to a class for fee purposes only while the record is ACTIVE.
    """

    __tablename__ = "student_academic_records"
    __table_args__ = (
        UniqueConstraint("student_id", "academic_year_id", name="uq_student_record_student_year"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    academic_year_id = Column(Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id"), nullable=False, index=True)
    roll_number = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value)  # ACTIVE | PROMOTED | LEFT
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student", backref="academic_records")
    academic_year = relationship("AcademicYear")
    school_class = relationship("SchoolClass", foreign_keys=[class_id])
