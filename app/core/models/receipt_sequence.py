from sqlalchemy import BigInteger, Column, String

from app.db.session import Base


class ReceiptSequence(Base):
    """Named monotonic counter. Incremented inside the payment transaction so numbers never repeat."""

    __tablename__ = "receipt_sequences"

    name = Column(String(50), primary_key=True)
    last_value = Column(BigInteger, nullable=False, default=0)
