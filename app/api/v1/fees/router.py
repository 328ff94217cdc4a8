"""Fees router: assignment, payments, reversals, waivers, dues reports, receipts."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeStatus, PaymentMethod
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    ClassAssignmentResult,
    DuesListResponse,
    MonthlyViewResponse,
    OverdueRefreshResult,
    OverdueReport,
    PaymentCreate,
    PaymentListResponse,
    PaymentResponse,
    PaymentReverseRequest,
    ReceiptResponse,
    StudentFeeResponse,
    StudentFeeWithDetails,
    WaiveRequest,
)
from . import ledger, receipts, reports, service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


# --- Assignment ---
@router.post(
    "/assign/{fee_structure_id}/student/{student_id}",
    response_model=StudentFeeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_fee_to_student(
    fee_structure_id: UUID,
    student_id: UUID,
    response: Response,
    changed_by: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> StudentFeeResponse:
    try:
        student_fee, created = await service.assign_fee_to_student(
            db, fee_structure_id, student_id, changed_by=changed_by
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not created:
        response.status_code = status.HTTP_200_OK
    return student_fee


@router.post(
    "/assign/{fee_structure_id}/class/{class_id}",
    response_model=ClassAssignmentResult,
)
async def assign_fee_to_class(
    fee_structure_id: UUID,
    class_id: UUID,
    changed_by: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> ClassAssignmentResult:
    try:
        return await service.assign_fee_to_class(db, class_id, fee_structure_id, changed_by=changed_by)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/student/{student_id}", response_model=List[StudentFeeWithDetails])
async def get_student_fees(
    student_id: UUID,
    academic_year_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[StudentFeeWithDetails]:
    return await reports.get_student_fees(db, student_id, academic_year_id=academic_year_id)


# --- Payments ---
@router.post(
    "/pay/{student_fee_id}",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    student_fee_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    try:
        return await ledger.record_payment(db, student_fee_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/payments/{payment_id}/reverse",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def reverse_payment(
    payment_id: UUID,
    payload: PaymentReverseRequest,
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    try:
        return await ledger.reverse_payment(db, payment_id, payload.reason, collected_by=payload.collected_by)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    student_id: Optional[UUID] = Query(None),
    student_fee_id: Optional[UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> PaymentListResponse:
    return await reports.list_payments(
        db,
        student_id=student_id,
        student_fee_id=student_fee_id,
        start_date=start_date,
        end_date=end_date,
        payment_method=payment_method.value if payment_method else None,
        page=page,
        limit=limit,
    )


@router.post("/student-fees/{student_fee_id}/waive", response_model=StudentFeeResponse)
async def waive_student_fee(
    student_fee_id: UUID,
    payload: WaiveRequest,
    db: AsyncSession = Depends(get_db),
) -> StudentFeeResponse:
    try:
        return await ledger.waive_student_fee(db, student_fee_id, payload.reason, changed_by=payload.changed_by)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Reports ---
@router.get("/dues", response_model=DuesListResponse)
async def list_dues(
    academic_year_id: UUID,
    class_id: Optional[UUID] = Query(None),
    fee_type_id: Optional[UUID] = Query(None),
    status_filter: Optional[FeeStatus] = Query(None, alias="status"),
    student_id: Optional[UUID] = Query(None),
    outstanding_only: bool = Query(False, description="Only fees with something left to pay"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> DuesListResponse:
    return await reports.list_dues(
        db,
        academic_year_id,
        class_id=class_id,
        fee_type_id=fee_type_id,
        status=status_filter.value if status_filter else None,
        student_id=student_id,
        outstanding_only=outstanding_only,
        page=page,
        limit=limit,
    )


@router.get("/dues/monthly", response_model=MonthlyViewResponse)
async def monthly_view(
    year: int = Query(..., ge=2000, le=2100),
    academic_year_id: Optional[UUID] = Query(None),
    class_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    status_filter: Optional[FeeStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> MonthlyViewResponse:
    return await reports.monthly_view(
        db,
        year,
        academic_year_id=academic_year_id,
        class_id=class_id,
        student_id=student_id,
        month=month,
        status=status_filter.value if status_filter else None,
    )


@router.get("/overdue", response_model=OverdueReport)
async def overdue(
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    academic_year_id: Optional[UUID] = Query(None),
    class_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> OverdueReport:
    return await reports.overdue(
        db, as_of or date.today(), academic_year_id=academic_year_id, class_id=class_id
    )


@router.post("/overdue/refresh", response_model=OverdueRefreshResult)
async def refresh_overdue(
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    academic_year_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> OverdueRefreshResult:
    try:
        return await ledger.refresh_overdue_statuses(
            db, as_of or date.today(), academic_year_id=academic_year_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Receipts ---
@router.get("/receipts/{receipt_number}", response_model=ReceiptResponse)
async def get_receipt(
    receipt_number: str,
    db: AsyncSession = Depends(get_db),
) -> ReceiptResponse:
    try:
        return await receipts.get_receipt(db, receipt_number)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
