"""Restock API"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.deps import get_db, require_roles
from clinicpos.models.user import User
from clinicpos.schemas.inventory import InventoryMovementResponse
from clinicpos.schemas.restock import (
    RestockCreate, BulkRestockCreate, RestockResultResponse, BulkRestockResponse,
    RestockSuggestionResponse, RestockSuggestionSummary
)
from clinicpos.services.restock import (
    restock_product, bulk_restock, get_restock_suggestions, get_restock_history
)

router = APIRouter()


@router.get("/suggestions", response_model=RestockSuggestionResponse)
async def restock_suggestions(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    threshold: float = Query(1.0, gt=0, le=5),
    category: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None)) -> Any:
    """Low-stock products with a suggested order quantity, most urgent first"""
    items = await get_restock_suggestions(db, threshold, category, supplier_id)
    summary = RestockSuggestionSummary(
        total=len(items),
        high=sum(1 for i in items if i["priority"] == "high"),
        medium=sum(1 for i in items if i["priority"] == "medium"),
        low=sum(1 for i in items if i["priority"] == "low"))
    return RestockSuggestionResponse(items=items, summary=summary)


@router.get("/", response_model=List[InventoryMovementResponse])
async def restock_history(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    product_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500)) -> Any:
    movements = await get_restock_history(db, product_id, limit)
    return [InventoryMovementResponse.model_validate(m) for m in movements]


@router.post("/", response_model=RestockResultResponse)
async def restock(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    restock_in: RestockCreate) -> Any:
    result = await restock_product(
        db, restock_in.product_id, restock_in.quantity, current_user.id,
        reference=restock_in.reference, notes=restock_in.notes)

    await create_audit_log(
        db, current_user.id, "restock", "inventory",
        resource_id=restock_in.product_id,
        description=restock_in.notes,
        old_value={"current_stock": result.previous_stock},
        new_value={"current_stock": result.new_stock})
    await db.commit()
    return RestockResultResponse.model_validate(result)


@router.post("/bulk", response_model=BulkRestockResponse)
async def restock_bulk(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    bulk_in: BulkRestockCreate) -> Any:
    """Restock several products; failures are reported per operation"""
    result = await bulk_restock(
        db, [op.model_dump() for op in bulk_in.operations], current_user.id,
        batch_reference=bulk_in.batch_reference)

    await create_audit_log(
        db, current_user.id, "restock", "inventory",
        resource_name=result.batch_id,
        description=f"Bulk restock: {result.success_count}/{result.total_operations} successful",
        new_value={"product_ids": [r.product_id for r in result.results if r.success]})
    await db.commit()
    return BulkRestockResponse.model_validate(result)
