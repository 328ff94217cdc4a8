"""Fee types router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeCategory
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import FeeTypeCreate, FeeTypeResponse, FeeTypeUpdate
from . import service

router = APIRouter(prefix="/api/v1/fee-types", tags=["fee-types"])


@router.post("", response_model=FeeTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_fee_type(
    payload: FeeTypeCreate,
    db: AsyncSession = Depends(get_db),
) -> FeeTypeResponse:
    try:
        return await service.create_fee_type(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[FeeTypeResponse])
async def list_fee_types(
    category: Optional[FeeCategory] = Query(None),
    is_recurring: Optional[bool] = Query(None),
    active_only: bool = Query(True, description="Return only active fee types by default"),
    db: AsyncSession = Depends(get_db),
) -> List[FeeTypeResponse]:
    return await service.list_fee_types(
        db, category=category, is_recurring=is_recurring, active_only=active_only
    )


@router.patch("/{fee_type_id}", response_model=FeeTypeResponse)
async def update_fee_type(
    fee_type_id: UUID,
    payload: FeeTypeUpdate,
    db: AsyncSession = Depends(get_db),
) -> FeeTypeResponse:
    try:
        return await service.update_fee_type(db, fee_type_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
