"""Refund API"""

from datetime import timedelta
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log, parse_date_param
from clinicpos.core.deps import get_db, get_current_user, require_roles
from clinicpos.core.errors import NotFoundError
from clinicpos.models.refund import Refund
from clinicpos.models.transaction import Transaction
from clinicpos.models.user import User
from clinicpos.schemas.refund import (
    RefundCreate, RefundApprove, RefundReject, RefundCancel, RefundComplete,
    RefundResponse, RefundListResponse, RefundEligibility
)
from clinicpos.services import refund_service

router = APIRouter()

approvers = require_roles("admin", "manager")


async def _audit(db: AsyncSession, user: User, action: str, refund: Refund, description: str = None, **values):
    await create_audit_log(
        db, user.id, action, "refund",
        resource_id=refund.id,
        resource_name=refund.transaction_number,
        description=description,
        new_value=values or None)


@router.get("/", response_model=RefundListResponse)
async def list_refunds(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Transaction number or customer name"),
    status: Optional[str] = Query(None),
    refund_reason: Optional[str] = Query(None),
    refund_method: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD")) -> Any:
    """List refunds, newest first"""
    query = select(Refund)

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Refund.transaction_number.ilike(pattern), Refund.customer_name.ilike(pattern)))
    if status:
        conditions.append(Refund.status == status)
    if refund_reason:
        conditions.append(Refund.refund_reason == refund_reason)
    if refund_method:
        conditions.append(Refund.refund_method == refund_method)
    if customer_id:
        conditions.append(Refund.customer_id == customer_id)
    if start_date:
        conditions.append(Refund.request_date >= parse_date_param(start_date, "start_date"))
    if end_date:
        conditions.append(Refund.request_date < parse_date_param(end_date, "end_date") + timedelta(days=1))

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Refund.request_date.desc(), Refund.id.desc()).offset((page - 1) * limit).limit(limit)
    refunds = (await db.execute(query)).scalars().unique().all()

    return RefundListResponse(
        data=[RefundResponse.model_validate(r) for r in refunds],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/statistics")
async def refund_statistics(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(approvers),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD")) -> Any:
    """Refund totals grouped by status, reason, method and day"""
    start = parse_date_param(start_date, "start_date") if start_date else None
    end = parse_date_param(end_date, "end_date").replace(hour=23, minute=59, second=59) if end_date else None
    return await refund_service.get_refund_statistics(db, start, end)


@router.get("/transaction/{transaction_id}", response_model=List[RefundResponse])
async def list_transaction_refunds(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    transaction_id: int) -> Any:
    """All refunds of one transaction"""
    if not await db.get(Transaction, transaction_id):
        raise NotFoundError("Transaction")
    result = await db.execute(
        select(Refund).where(Refund.transaction_id == transaction_id).order_by(Refund.request_date.desc())
    )
    return [RefundResponse.model_validate(r) for r in result.scalars().unique().all()]


@router.get("/eligibility/{transaction_id}", response_model=RefundEligibility)
async def refund_eligibility(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    transaction_id: int) -> Any:
    """What can still be refunded on a transaction"""
    return await refund_service.get_refund_eligibility(db, transaction_id)


@router.post("/", response_model=RefundResponse, status_code=201)
async def create_refund(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    refund_in: RefundCreate) -> Any:
    """Open a pending refund"""
    refund = await refund_service.create_refund(
        db,
        transaction_id=refund_in.transaction_id,
        items=[item.model_dump() for item in refund_in.items],
        refund_method=refund_in.refund_method,
        refund_reason=refund_in.refund_reason,
        created_by=current_user.id,
        notes=refund_in.notes)
    await _audit(
        db, current_user, "refund", refund,
        description=f"Refund of {refund.refund_amount} requested ({refund.refund_type})",
        refund_amount=float(refund.refund_amount))
    await db.commit()
    await db.refresh(refund)
    return RefundResponse.model_validate(refund)


@router.get("/{refund_id}", response_model=RefundResponse)
async def get_refund(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    refund_id: int) -> Any:
    """Refund detail"""
    return RefundResponse.model_validate(await refund_service.get_refund(db, refund_id))


@router.post("/{refund_id}/approve", response_model=RefundResponse)
async def approve_refund(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(approvers),
    refund_id: int,
    approve_in: RefundApprove) -> Any:
    """pending -> approved"""
    refund = await refund_service.approve_refund(db, refund_id, current_user.id, approve_in.approval_notes)
    await _audit(db, current_user, "update", refund, "Refund approved", status="approved")
    await db.commit()
    await db.refresh(refund)
    return RefundResponse.model_validate(refund)


@router.post("/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(approvers),
    refund_id: int,
    reject_in: RefundReject) -> Any:
    """pending -> rejected"""
    refund = await refund_service.reject_refund(db, refund_id, current_user.id, reject_in.rejection_reason)
    await _audit(db, current_user, "update", refund, reject_in.rejection_reason, status="rejected")
    await db.commit()
    await db.refresh(refund)
    return RefundResponse.model_validate(refund)


@router.post("/{refund_id}/process", response_model=RefundResponse)
async def process_refund(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(approvers),
    refund_id: int) -> Any:
    """approved -> processing, returning the items to stock"""
    refund = await refund_service.process_refund(db, refund_id, current_user.id)
    await _audit(db, current_user, "update", refund, "Refund processed", status="processing")
    await db.commit()
    await db.refresh(refund)
    return RefundResponse.model_validate(refund)


@router.post("/{refund_id}/complete", response_model=RefundResponse)
async def complete_refund(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(approvers),
    refund_id: int,
    complete_in: RefundComplete) -> Any:
    """processing -> completed"""
    payment_details = complete_in.payment_details.model_dump() if complete_in.payment_details else None
    refund = await refund_service.complete_refund(db, refund_id, current_user.id, payment_details)
    await _audit(db, current_user, "update", refund, "Refund completed", status="completed")
    await db.commit()
    await db.refresh(refund)
    return RefundResponse.model_validate(refund)


@router.post("/{refund_id}/cancel", response_model=RefundResponse)
async def cancel_refund(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(approvers),
    refund_id: int,
    cancel_in: RefundCancel) -> Any:
    """Cancel a refund that has not completed"""
    refund = await refund_service.cancel_refund(db, refund_id, current_user.id, cancel_in.reason)
    await _audit(db, current_user, "cancel", refund, cancel_in.reason, status="cancelled")
    await db.commit()
    await db.refresh(refund)
    return RefundResponse.model_validate(refund)
