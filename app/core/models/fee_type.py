"""Fee type master (Tuition, Exam, Transport, Library)."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String, Text, Uuid

from app.db.session import Base


class FeeType(Base):
    """
    Fee type referenced by fee structures. Soft delete via is_active.
    name/code/category/is_recurring are frozen once a structure using it has assigned students.
    """

    __tablename__ = "fee_types"
    __table_args__ = (
        CheckConstraint(
            "category IN ('ACADEMIC','EXAM','TRANSPORT','FACILITY','HOSTEL','OTHER')",
            name="chk_fee_type_category",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    category = Column(String(30), nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
