import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, String, Uuid

from app.db.session import Base


class Student(Base):
    """Student directory record. Names shown on receipts are copied at payment time."""

    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    admission_number = Column(String(50), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
