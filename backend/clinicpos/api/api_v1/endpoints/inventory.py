"""Inventory movement API"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.core.deps import get_db, get_current_user
from clinicpos.models.inventory_movement import InventoryMovement
from clinicpos.models.user import User
from clinicpos.schemas.inventory import InventoryMovementResponse, InventoryMovementListResponse

router = APIRouter()


@router.get("/movements", response_model=InventoryMovementListResponse)
async def list_movements(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    product_id: Optional[int] = Query(None),
    movement_type: Optional[str] = Query(None),
    reference: Optional[str] = Query(None)) -> Any:
    """Stock movements, newest first"""
    query = select(InventoryMovement)

    conditions = []
    if product_id:
        conditions.append(InventoryMovement.product_id == product_id)
    if movement_type:
        conditions.append(InventoryMovement.movement_type == movement_type)
    if reference:
        conditions.append(InventoryMovement.reference == reference)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
    query = query.offset((page - 1) * limit).limit(limit)
    movements = (await db.execute(query)).scalars().unique().all()

    return InventoryMovementListResponse(
        data=[InventoryMovementResponse.model_validate(m) for m in movements],
        total=total,
        page=page,
        limit=limit
    )
