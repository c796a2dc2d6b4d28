"""
Restocking: receiving stock against products and suggesting what to reorder.

Every restock writes one `adjustment` movement with reference_type
"restock" and updates the product's restock history (count, running
average quantity, last date). Nothing here commits.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.core.errors import AppError, NotFoundError, ValidationError
from clinicpos.models.inventory_movement import InventoryMovement
from clinicpos.models.product import Product
from clinicpos.services.inventory import record_movement
from clinicpos.services.transaction_utils import to_decimal

logger = logging.getLogger(__name__)

RESTOCK_REFERENCE_TYPE = "restock"
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass
class RestockResult:
    product_id: int
    success: bool = True
    previous_stock: float = 0
    new_stock: float = 0
    quantity_added: float = 0
    movement_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class BulkRestockResult:
    batch_id: str
    total_operations: int = 0
    success_count: int = 0
    failure_count: int = 0
    results: List[RestockResult] = field(default_factory=list)


def restock_reference(now: Optional[datetime] = None) -> str:
    return f"RESTOCK-{(now or datetime.utcnow()).strftime('%Y%m%d%H%M%S')}"


def update_restock_analytics(product: Product, quantity: Decimal) -> None:
    count = (product.restock_count or 0) + 1
    if count == 1:
        average = quantity
    else:
        average = (to_decimal(product.average_restock_quantity) * (count - 1) + quantity) / count
    product.restock_count = count
    product.average_restock_quantity = average.quantize(Decimal("0.001"))
    product.last_restock_date = datetime.utcnow()


async def restock_product(
    db: AsyncSession,
    product_id: int,
    quantity: Any,
    operator_id: int,
    reference: Optional[str] = None,
    notes: Optional[str] = None) -> RestockResult:
    """
    Add `quantity` (in the product's unit) to a product's stock.

    Raises:
        NotFoundError: unknown or deleted product
        ValidationError: quantity is not positive
    """
    quantity = to_decimal(quantity)
    if quantity <= 0:
        raise ValidationError("Quantity must be positive", details={"product_id": product_id})

    product = await db.get(Product, product_id)
    if not product or product.is_deleted:
        raise NotFoundError("Product", details={"product_id": product_id})

    movement = await record_movement(
        db, product, "adjustment", quantity, operator_id,
        reference=reference or restock_reference(),
        reference_id=product.id,
        reference_type=RESTOCK_REFERENCE_TYPE,
        reason="Restock",
        notes=notes or "Product restocked",
        signed_change=quantity)
    update_restock_analytics(product, quantity)
    await db.flush()

    return RestockResult(
        product_id=product.id,
        previous_stock=float(movement.stock_before),
        new_stock=float(movement.stock_after),
        quantity_added=float(quantity),
        movement_id=movement.id)


async def bulk_restock(
    db: AsyncSession,
    operations: List[Dict[str, Any]],
    operator_id: int,
    batch_reference: Optional[str] = None) -> BulkRestockResult:
    """
    Restock several products. A failed operation is reported in its result
    and the remaining operations still run; operations without their own
    reference share the batch id.
    """
    batch_id = batch_reference or f"BATCH-{datetime.utcnow().strftime('%Y%m%d%H%M%S')}"
    result = BulkRestockResult(batch_id=batch_id, total_operations=len(operations))

    for operation in operations:
        product_id = operation["product_id"]
        try:
            outcome = await restock_product(
                db, product_id, operation.get("quantity"), operator_id,
                reference=operation.get("reference") or batch_id,
                notes=operation.get("notes"))
        except AppError as e:
            outcome = RestockResult(product_id=product_id, success=False, error=e.message)

        if outcome.success:
            result.success_count += 1
        else:
            result.failure_count += 1
        result.results.append(outcome)

    logger.info(f"Bulk restock {batch_id}: {result.success_count}/{result.total_operations} successful")
    return result


def suggested_quantity(product: Product) -> float:
    stock = float(product.current_stock or 0)
    reorder_point = float(product.reorder_point or 0)
    average = float(product.average_restock_quantity or 0)
    if average > 0:
        return max(average, reorder_point - stock)
    return max(reorder_point, reorder_point - stock)


def restock_priority(product: Product) -> str:
    stock = float(product.current_stock or 0)
    reorder_point = float(product.reorder_point or 0)
    if stock <= 0 or stock <= reorder_point * 0.5:
        return "high"
    if stock <= reorder_point * 0.8:
        return "medium"
    return "low"


def days_until_stockout(product: Product) -> Optional[int]:
    """Estimated from the restock rhythm; None until there are two restocks"""
    average = float(product.average_restock_quantity or 0)
    if average <= 0 or (product.restock_count or 0) <= 1:
        return None
    daily_usage = average / (product.restock_frequency or 30)
    return math.floor(max(float(product.current_stock or 0), 0) / daily_usage)


async def find_low_stock_products(
    db: AsyncSession,
    threshold: float = 1.0,
    category: Optional[str] = None,
    supplier_id: Optional[int] = None) -> List[Product]:
    """Active products at or below reorder_point x threshold"""
    conditions = [
        Product.is_deleted == False,  # noqa: E712
        Product.status == "active",
        Product.current_stock <= Product.reorder_point * threshold,
    ]
    if category:
        conditions.append(Product.category == category)
    if supplier_id:
        conditions.append(Product.supplier_id == supplier_id)

    result = await db.execute(select(Product).where(and_(*conditions)).order_by(Product.name))
    return list(result.scalars().unique().all())


async def get_restock_suggestions(
    db: AsyncSession,
    threshold: float = 1.0,
    category: Optional[str] = None,
    supplier_id: Optional[int] = None) -> List[Dict[str, Any]]:
    products = await find_low_stock_products(db, threshold, category, supplier_id)
    suggestions = [
        {
            "product_id": product.id,
            "name": product.name,
            "sku": product.sku,
            "unit_name": product.unit_name,
            "current_stock": float(product.current_stock or 0),
            "reorder_point": float(product.reorder_point or 0),
            "suggested_quantity": suggested_quantity(product),
            "days_until_stockout": days_until_stockout(product),
            "priority": restock_priority(product),
        }
        for product in products
    ]
    suggestions.sort(key=lambda s: PRIORITY_ORDER[s["priority"]])
    return suggestions


async def get_restock_history(
    db: AsyncSession,
    product_id: Optional[int] = None,
    limit: int = 100) -> List[InventoryMovement]:
    query = select(InventoryMovement).where(InventoryMovement.reference_type == RESTOCK_REFERENCE_TYPE)
    if product_id:
        query = query.where(InventoryMovement.product_id == product_id)
    query = query.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit)
    return list((await db.execute(query)).scalars().unique().all())
