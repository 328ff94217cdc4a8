"""Fee type service layer."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeCategory
from app.core.exceptions import ConflictError, NotFoundError
from app.core.models import FeeStructure, FeeType, StudentFee

from .schemas import FeeTypeCreate, FeeTypeResponse, FeeTypeUpdate

logger = logging.getLogger(__name__)

# Fields that may no longer change once students owe money against this type
_LOCKED_FIELDS = ("name", "code", "category", "is_recurring")


def _to_response(ft: FeeType) -> FeeTypeResponse:
    return FeeTypeResponse(
        id=ft.id,
        name=ft.name,
        code=ft.code,
        category=ft.category,
        is_recurring=ft.is_recurring,
        description=ft.description,
        is_active=ft.is_active,
        created_at=ft.created_at,
        updated_at=ft.updated_at,
    )


def _category_value(category) -> str:
    return category.value if isinstance(category, FeeCategory) else str(category).strip().upper()


async def create_fee_type(db: AsyncSession, payload: FeeTypeCreate) -> FeeTypeResponse:
    ft = FeeType(
        name=payload.name.strip(),
        code=payload.code.strip().upper()[:50],
        category=_category_value(payload.category),
        is_recurring=payload.is_recurring,
        description=(payload.description or "").strip() or None,
        is_active=True,
    )
    db.add(ft)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee type with this code already exists")
    await db.refresh(ft)
    logger.info("Created fee type %s (%s)", ft.code, ft.id)
    return _to_response(ft)


async def list_fee_types(
    db: AsyncSession,
    category: Optional[FeeCategory] = None,
    is_recurring: Optional[bool] = None,
    active_only: bool = True,
) -> List[FeeTypeResponse]:
    stmt = select(FeeType)
    if active_only:
        stmt = stmt.where(FeeType.is_active.is_(True))
    if category is not None:
        stmt = stmt.where(FeeType.category == _category_value(category))
    if is_recurring is not None:
        stmt = stmt.where(FeeType.is_recurring.is_(is_recurring))
    stmt = stmt.order_by(FeeType.name)
    result = await db.execute(stmt)
    return [_to_response(ft) for ft in result.scalars().all()]


async def count_assigned_students(db: AsyncSession, fee_type_id: UUID) -> int:
    """Students holding an obligation under any structure of this fee type."""
    return (
        await db.execute(
            select(func.count(StudentFee.id))
            .join(FeeStructure, StudentFee.fee_structure_id == FeeStructure.id)
            .where(FeeStructure.fee_type_id == fee_type_id)
        )
    ).scalar() or 0


async def update_fee_type(
    db: AsyncSession,
    fee_type_id: UUID,
    payload: FeeTypeUpdate,
) -> FeeTypeResponse:
    ft = await db.get(FeeType, fee_type_id)
    if not ft:
        raise NotFoundError("Fee type not found")

    changes = payload.model_dump(exclude_unset=True)
    if "code" in changes and changes["code"] is not None:
        changes["code"] = changes["code"].strip().upper()[:50]
    if "category" in changes and changes["category"] is not None:
        changes["category"] = _category_value(changes["category"])
    if "name" in changes and changes["name"] is not None:
        changes["name"] = changes["name"].strip()

    locked = [f for f in _LOCKED_FIELDS if f in changes and changes[f] != getattr(ft, f)]
    if locked and await count_assigned_students(db, fee_type_id) > 0:
        raise ConflictError(
            f"Fee type is in use by assigned students; cannot change {', '.join(locked)}"
        )

    for field, value in changes.items():
        if field == "description":
            ft.description = (value or "").strip() or None
        elif value is not None:
            setattr(ft, field, value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee type with this code already exists")
    await db.refresh(ft)
    return _to_response(ft)
