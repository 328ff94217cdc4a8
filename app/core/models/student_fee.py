"""Student fee: a student's obligation instantiated from a fee structure. total_amount is frozen at assignment."""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.core.enums import FeeStatus
from app.db.session import Base


class StudentFee(Base):
    """
    Obligation of one student for one fee structure.
    total_amount == paid_amount + discount_amount + due_amount after every commit.
    version is bumped on every UPDATE; a stale write fails instead of overwriting balances.
    """

    __tablename__ = "student_fees"
    __table_args__ = (
        UniqueConstraint("student_id", "fee_structure_id", name="uq_student_fee_student_structure"),
        CheckConstraint("due_amount >= 0", name="chk_student_fee_due_non_negative"),
        CheckConstraint(
            "status IN ('PENDING','PARTIAL','PAID','OVERDUE','WAIVED')",
            name="chk_student_fee_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="RESTRICT"), nullable=False)
    # Denormalised from the structure so reports filter without a join
    fee_type_id = Column(Uuid, ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=False)
    academic_year_id = Column(Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False, index=True)

    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    due_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=FeeStatus.PENDING.value)
    due_date = Column(Date, nullable=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    waived_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    student = relationship("Student")
    fee_structure = relationship("FeeStructure", backref="student_fees")
    fee_type = relationship("FeeType")
    academic_year = relationship("AcademicYear")
    monthly_dues = relationship(
        "MonthlyDue",
        back_populates="student_fee",
        order_by="MonthlyDue.period_index",
    )
