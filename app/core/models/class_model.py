"""School classes (e.g. Nursery, 1st, 10th). Model named SchoolClass to avoid Python 'class' keyword."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint, Uuid

from app.db.session import Base


class SchoolClass(Base):
    """Class master owned by the directory. Read by the fee ledger for membership and receipt labels."""

    __tablename__ = "classes"
    __table_args__ = (UniqueConstraint("name", "section", name="uq_class_name_section"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    section = Column(String(20), nullable=True)
    display_order = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
