"""Fee structure: amount a class owes for one fee type in one academic year."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeeStructure(Base):
    """
    Fee per class per academic year per fee type. amount is the total for the year;
    periodic frequencies split it into instalments at assignment time.
    Only one active structure may exist for a (class, fee_type, academic_year) triple.
    """

    __tablename__ = "fee_structures"
    __table_args__ = (
        Index(
            "uq_fee_structure_active_class_type_year",
            "class_id",
            "fee_type_id",
            "academic_year_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        CheckConstraint("amount > 0", name="chk_fee_structure_amount_positive"),
        CheckConstraint(
            "frequency IN ('ONE_TIME','MONTHLY','QUARTERLY','HALF_YEARLY','YEARLY')",
            name="chk_fee_structure_frequency",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    academic_year_id = Column(Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    fee_type_id = Column(Uuid, ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    frequency = Column(String(20), nullable=False)
    due_date = Column(Date, nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    academic_year = relationship("AcademicYear")
    school_class = relationship("SchoolClass", foreign_keys=[class_id])
    fee_type = relationship("FeeType")
