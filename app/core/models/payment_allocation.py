import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class PaymentAllocation(Base):
    """How much cash and discount one payment applied to one monthly due."""

    __tablename__ = "payment_allocations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id = Column(Uuid, ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False, index=True)
    monthly_due_id = Column(Uuid, ForeignKey("monthly_dues.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    payment = relationship("Payment", back_populates="allocations")
    monthly_due = relationship("MonthlyDue")
