"""
Stock movement helpers.

Every change to Product.current_stock goes through `record_movement`, which
writes an InventoryMovement with the before/after stock. Nothing here
commits; callers own the session transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.models.inventory_movement import InventoryMovement, STOCK_DIRECTION
from clinicpos.models.product import Product
from clinicpos.services.transaction_utils import to_decimal
from clinicpos.services.unit_conversion import convert_or_same

logger = logging.getLogger(__name__)


async def record_movement(
    db: AsyncSession,
    product: Product,
    movement_type: str,
    quantity: Any,
    operator_id: int,
    reference: str,
    unit_name: Optional[str] = None,
    reference_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    signed_change: Optional[Decimal] = None) -> InventoryMovement:
    """
    Apply a stock change to `product` and log it.

    Args:
        quantity: amount in `unit_name` (defaults to the product's unit); always positive
        signed_change: explicit +/- change for adjustment/transfer movements,
            which have no fixed direction

    Stock is allowed to go negative on sales; a warning is logged.
    """
    unit_name = unit_name or product.unit_name
    quantity = abs(to_decimal(quantity))
    converted = to_decimal(convert_or_same(float(quantity), unit_name, product.unit_name))
    converted = converted.quantize(Decimal("0.001"))

    if signed_change is not None:
        change = to_decimal(signed_change)
    else:
        direction = STOCK_DIRECTION.get(movement_type)
        if direction is None:
            raise ValueError(f"Movement type {movement_type} needs an explicit signed change")
        change = converted * direction

    before = to_decimal(product.current_stock)
    after = before + change
    product.current_stock = after
    product.updated_at = datetime.utcnow()

    if after < 0 <= before:
        logger.warning(
            f"Stock for product {product.id} ({product.name}) went negative: {before} -> {after} [{reference}]"
        )

    movement = InventoryMovement(
        product_id=product.id,
        product_name=product.name,
        movement_type=movement_type,
        quantity=quantity,
        unit_name=unit_name,
        base_unit=product.unit_name,
        converted_quantity=converted,
        stock_before=before,
        stock_after=after,
        reference=reference,
        reference_id=reference_id,
        reference_type=reference_type,
        reason=reason,
        notes=notes,
        created_by=operator_id,
        created_at=datetime.utcnow())
    db.add(movement)
    return movement


async def adjust_stock(
    db: AsyncSession,
    product: Product,
    change: Any,
    operator_id: int,
    reason: Optional[str] = None) -> InventoryMovement:
    """Manual stock correction; negative `change` removes stock"""
    change = to_decimal(change)
    if change == 0:
        raise ValueError("Adjustment quantity cannot be zero")
    if to_decimal(product.current_stock) + change < 0:
        # Manual corrections must not push stock below zero
        raise ValueError(
            f"Insufficient stock: current {product.current_stock}, adjustment {change}"
        )
    return await record_movement(
        db, product, "adjustment", abs(change), operator_id,
        reference=f"ADJ-{product.sku}",
        reference_id=product.id,
        reference_type="product",
        reason=reason or "Manual adjustment",
        signed_change=change)
