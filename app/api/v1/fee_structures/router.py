"""Fee structures router: class fee amounts per academic year."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import FeeStructureCreate, FeeStructureResponse, FeeStructureUpdate
from . import service

router = APIRouter(prefix="/api/v1/fee-structures", tags=["fee-structures"])


@router.post("", response_model=FeeStructureResponse, status_code=status.HTTP_201_CREATED)
async def create_fee_structure(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
) -> FeeStructureResponse:
    try:
        return await service.create_fee_structure(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[FeeStructureResponse])
async def list_fee_structures(
    academic_year_id: UUID,
    class_id: Optional[UUID] = Query(None),
    fee_type_id: Optional[UUID] = Query(None),
    active_only: bool = Query(True, description="Return only active structures by default"),
    db: AsyncSession = Depends(get_db),
) -> List[FeeStructureResponse]:
    return await service.list_fee_structures(
        db,
        academic_year_id,
        class_id=class_id,
        fee_type_id=fee_type_id,
        active_only=active_only,
    )


@router.patch("/{fee_structure_id}", response_model=FeeStructureResponse)
async def update_fee_structure(
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
    db: AsyncSession = Depends(get_db),
) -> FeeStructureResponse:
    try:
        return await service.update_fee_structure(db, fee_structure_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{fee_structure_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        await service.delete_fee_structure(db, fee_structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
