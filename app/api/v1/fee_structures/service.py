"""Fee structure service: per class, per academic year, per fee type amounts."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees.audit_service import log_fee_audit
from app.core.enums import AcademicYearStatus, FeeFrequency
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.models import AcademicYear, FeeStructure, FeeType, SchoolClass, StudentFee
from app.core.money import to_money

from .schemas import FeeStructureCreate, FeeStructureResponse, FeeStructureUpdate

logger = logging.getLogger(__name__)


def _to_response(
    fs: FeeStructure,
    fee_type: Optional[FeeType] = None,
    school_class: Optional[SchoolClass] = None,
    assigned_count: int = 0,
) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=fs.id,
        academic_year_id=fs.academic_year_id,
        class_id=fs.class_id,
        class_name=school_class.name if school_class else None,
        fee_type_id=fs.fee_type_id,
        fee_type_name=fee_type.name if fee_type else None,
        fee_type_code=fee_type.code if fee_type else None,
        is_recurring=fee_type.is_recurring if fee_type else None,
        amount=to_money(fs.amount),
        frequency=fs.frequency,
        due_date=fs.due_date,
        description=fs.description,
        is_active=fs.is_active,
        assigned_count=assigned_count,
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


def _frequency_value(frequency) -> str:
    return frequency.value if isinstance(frequency, FeeFrequency) else str(frequency).strip().upper()


async def count_assigned(db: AsyncSession, fee_structure_id: UUID) -> int:
    return (
        await db.execute(
            select(func.count(StudentFee.id)).where(StudentFee.fee_structure_id == fee_structure_id)
        )
    ).scalar() or 0


async def _active_duplicate_exists(
    db: AsyncSession,
    class_id: UUID,
    fee_type_id: UUID,
    academic_year_id: UUID,
    exclude_id: Optional[UUID] = None,
) -> bool:
    stmt = select(FeeStructure.id).where(
        FeeStructure.class_id == class_id,
        FeeStructure.fee_type_id == fee_type_id,
        FeeStructure.academic_year_id == academic_year_id,
        FeeStructure.is_active.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(FeeStructure.id != exclude_id)
    return (await db.execute(stmt.limit(1))).scalar_one_or_none() is not None


async def create_fee_structure(
    db: AsyncSession,
    payload: FeeStructureCreate,
    changed_by: Optional[UUID] = None,
) -> FeeStructureResponse:
    ay = await db.get(AcademicYear, payload.academic_year_id)
    if not ay:
        raise ValidationError("Invalid academic year")
    if ay.status != AcademicYearStatus.ACTIVE.value:
        raise ValidationError("Cannot modify fee structure for a CLOSED academic year")
    cl = await db.get(SchoolClass, payload.class_id)
    if not cl:
        raise ValidationError("Invalid class")
    ft = await db.get(FeeType, payload.fee_type_id)
    if not ft or not ft.is_active:
        raise ValidationError("Invalid fee type")
    if await _active_duplicate_exists(db, payload.class_id, payload.fee_type_id, payload.academic_year_id):
        raise ConflictError("This class already has an active structure for this fee type and academic year")

    fs = FeeStructure(
        academic_year_id=payload.academic_year_id,
        class_id=payload.class_id,
        fee_type_id=payload.fee_type_id,
        amount=to_money(payload.amount),
        frequency=_frequency_value(payload.frequency),
        due_date=payload.due_date,
        description=(payload.description or "").strip() or None,
        is_active=True,
    )
    db.add(fs)
    try:
        await db.flush()
        await log_fee_audit(
            db, "fee_structures", fs.id, "CREATE", None,
            {
                "amount": str(fs.amount),
                "frequency": fs.frequency,
                "class_id": str(payload.class_id),
                "fee_type_id": str(payload.fee_type_id),
                "academic_year_id": str(payload.academic_year_id),
            },
            changed_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("This class already has an active structure for this fee type and academic year")
    await db.refresh(fs)
    logger.info("Created fee structure %s (%s %s) for class %s", fs.id, ft.code, fs.frequency, cl.name)
    return _to_response(fs, ft, cl)


async def list_fee_structures(
    db: AsyncSession,
    academic_year_id: UUID,
    class_id: Optional[UUID] = None,
    fee_type_id: Optional[UUID] = None,
    active_only: bool = True,
) -> List[FeeStructureResponse]:
    assigned_subq = (
        select(
            StudentFee.fee_structure_id,
            func.count(StudentFee.id).label("assigned_count"),
        )
        .group_by(StudentFee.fee_structure_id)
    ).subquery()

    stmt = (
        select(
            FeeStructure,
            FeeType,
            SchoolClass,
            func.coalesce(assigned_subq.c.assigned_count, 0).label("assigned_count"),
        )
        .join(FeeType, FeeStructure.fee_type_id == FeeType.id)
        .join(SchoolClass, FeeStructure.class_id == SchoolClass.id)
        .outerjoin(assigned_subq, FeeStructure.id == assigned_subq.c.fee_structure_id)
        .where(FeeStructure.academic_year_id == academic_year_id)
    )
    if active_only:
        stmt = stmt.where(FeeStructure.is_active.is_(True))
    if class_id is not None:
        stmt = stmt.where(FeeStructure.class_id == class_id)
    if fee_type_id is not None:
        stmt = stmt.where(FeeStructure.fee_type_id == fee_type_id)
    stmt = stmt.order_by(SchoolClass.display_order.nullslast(), SchoolClass.name, FeeType.name)

    result = await db.execute(stmt)
    return [_to_response(fs, ft, cl, int(count)) for fs, ft, cl, count in result.all()]


def _pricing_changes(fs: FeeStructure, changes: dict) -> List[str]:
    """Pricing fields in changes whose value differs from what is stored."""
    requested = {}
    if changes.get("amount") is not None:
        requested["amount"] = to_money(changes["amount"])
    if changes.get("frequency") is not None:
        requested["frequency"] = _frequency_value(changes["frequency"])
    if "due_date" in changes:
        requested["due_date"] = changes["due_date"]
    if "description" in changes:
        requested["description"] = (changes["description"] or "").strip() or None
    return [f for f, value in requested.items() if value != getattr(fs, f)]


async def update_fee_structure(
    db: AsyncSession,
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
    changed_by: Optional[UUID] = None,
) -> FeeStructureResponse:
    """Once students are assigned, only is_active may change; existing obligations keep their amounts."""
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")

    changes = payload.model_dump(exclude_unset=True)
    assigned = await count_assigned(db, fee_structure_id)
    if assigned > 0 and _pricing_changes(fs, changes):
        raise ConflictError(
            f"{assigned} students are assigned this fee; only is_active can be changed"
        )

    old = {"amount": str(fs.amount), "frequency": fs.frequency, "is_active": fs.is_active}
    if changes.get("is_active") is True and not fs.is_active:
        if await _active_duplicate_exists(db, fs.class_id, fs.fee_type_id, fs.academic_year_id, exclude_id=fs.id):
            raise ConflictError("Another active structure exists for this class, fee type and academic year")

    if changes.get("amount") is not None:
        fs.amount = to_money(changes["amount"])
    if changes.get("frequency") is not None:
        fs.frequency = _frequency_value(changes["frequency"])
    if "due_date" in changes:
        fs.due_date = changes["due_date"]
    if "description" in changes:
        fs.description = (changes["description"] or "").strip() or None
    if changes.get("is_active") is not None:
        fs.is_active = changes["is_active"]

    try:
        await log_fee_audit(
            db, "fee_structures", fs.id, "UPDATE", old,
            {"amount": str(fs.amount), "frequency": fs.frequency, "is_active": fs.is_active},
            changed_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another active structure exists for this class, fee type and academic year")
    await db.refresh(fs)
    ft = await db.get(FeeType, fs.fee_type_id)
    cl = await db.get(SchoolClass, fs.class_id)
    return _to_response(fs, ft, cl, assigned)


async def delete_fee_structure(
    db: AsyncSession,
    fee_structure_id: UUID,
    changed_by: Optional[UUID] = None,
) -> None:
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")
    assigned = await count_assigned(db, fee_structure_id)
    if assigned > 0:
        raise ConflictError(f"Cannot delete: {assigned} students are assigned this fee")
    await log_fee_audit(
        db, "fee_structures", fs.id, "DELETE",
        {"amount": str(fs.amount), "frequency": fs.frequency, "class_id": str(fs.class_id)},
        None,
        changed_by,
    )
    await db.execute(delete(FeeStructure).where(FeeStructure.id == fee_structure_id))
    try:
        await db.commit()
    except IntegrityError:
        # A student was assigned between the count and the delete
        await db.rollback()
        raise ConflictError("Cannot delete: students were assigned this fee")
    logger.info("Deleted fee structure %s", fee_structure_id)
