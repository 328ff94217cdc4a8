"""Fee structure schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import FeeFrequency


class FeeStructureCreate(BaseModel):
    academic_year_id: UUID
    class_id: UUID
    fee_type_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    frequency: FeeFrequency
    due_date: Optional[date] = None
    description: Optional[str] = None


class FeeStructureUpdate(BaseModel):
    """Amount/frequency/due_date/description are editable only while nobody is assigned."""

    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    frequency: Optional[FeeFrequency] = None
    due_date: Optional[date] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class FeeStructureResponse(BaseModel):
    id: UUID
    academic_year_id: UUID
    class_id: UUID
    class_name: Optional[str] = None
    fee_type_id: UUID
    fee_type_name: Optional[str] = None
    fee_type_code: Optional[str] = None
    is_recurring: Optional[bool] = None
    amount: Decimal
    frequency: FeeFrequency
    due_date: Optional[date] = None
    description: Optional[str] = None
    is_active: bool
    assigned_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
