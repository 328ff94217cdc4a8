"""Payment: append-only ledger entry against a student fee."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class Payment(Base):
    """
    Payment against a student fee. Supports partial payments and discounts.
    Never updated: a correction is a new row with negative amounts and reversal_of_id set.
    """

    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_fee_id = Column(Uuid, ForeignKey("student_fees.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(Text, nullable=True)
    payment_method = Column(String(30), nullable=False)  # CASH, CARD, UPI, BANK_TRANSFER, CHEQUE, ONLINE
    payment_date = Column(DateTime(timezone=True), nullable=False)
    receipt_number = Column(String(40), nullable=False, unique=True)
    transaction_id = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)
    collected_by = Column(Uuid, nullable=True)
    reversal_of_id = Column(Uuid, ForeignKey("payments.id", ondelete="RESTRICT"), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student")
    student_fee = relationship("StudentFee", backref="payments")
    allocations = relationship("PaymentAllocation", back_populates="payment")
