"""Receipt: frozen, reprintable snapshot of a payment."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, Text, Uuid

from app.db.session import Base


class Receipt(Base):
    """
    Denormalised copy of a payment and the directory labels at payment time.
    Reprints read this row as is; later renames or re-pricing never touch it.
    """

    __tablename__ = "receipts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    receipt_number = Column(String(40), nullable=False, unique=True)
    payment_id = Column(Uuid, ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False, unique=True)
    student_fee_id = Column(Uuid, nullable=False)
    student_id = Column(Uuid, nullable=False, index=True)

    student_name = Column(String(255), nullable=False)
    admission_number = Column(String(50), nullable=True)
    roll_number = Column(String(50), nullable=True)
    class_name = Column(String(50), nullable=True)
    section = Column(String(20), nullable=True)
    academic_year_name = Column(String(50), nullable=True)
    fee_type_name = Column(String(100), nullable=False)
    fee_type_code = Column(String(50), nullable=False)
    fee_type_category = Column(String(30), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    discount_reason = Column(Text, nullable=True)
    payment_method = Column(String(30), nullable=False)
    transaction_id = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    is_reversal = Column(Boolean, nullable=False, default=False)

    fee_total_amount = Column(Numeric(12, 2), nullable=False)
    fee_paid_amount = Column(Numeric(12, 2), nullable=False)
    fee_discount_amount = Column(Numeric(12, 2), nullable=False)
    fee_due_amount = Column(Numeric(12, 2), nullable=False)
    fee_status = Column(String(20), nullable=False)

    issued_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
