"""
Stock deduction and reversal for sales transactions.

Deduction is idempotent per transaction number: once reversible movements
exist for a transaction, processing it again is a no-op. A failure on one
line item is collected and the remaining items are still processed.

Nothing here commits; the caller saves the transaction and its movements
in one session transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.models.blend_template import BlendTemplate
from clinicpos.models.bundle import Bundle
from clinicpos.models.inventory_movement import InventoryMovement, REVERSIBLE_MOVEMENT_TYPES
from clinicpos.models.product import Product
from clinicpos.models.transaction import Transaction, TransactionItem
from clinicpos.services.inventory import record_movement
from clinicpos.services.transaction_utils import to_decimal

logger = logging.getLogger(__name__)

# Line items that never touch stock
NO_INVENTORY_ITEM_TYPES = {"miscellaneous", "service", "consultation"}


class InventoryItemError(Exception):
    pass


@dataclass
class InventoryDeductionResult:
    success: bool = True
    skipped: bool = False
    movements: List[InventoryMovement] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class InventoryReversalResult:
    success: bool = True
    skipped: bool = False
    original_movement_count: int = 0
    reversed_movements: List[InventoryMovement] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def reversed_count(self) -> int:
        return len(self.reversed_movements)


async def _get_product(db: AsyncSession, product_id: Any) -> Product:
    product = await db.get(Product, product_id) if product_id else None
    if not product:
        raise InventoryItemError(f"Product not found: {product_id}")
    return product


async def _deduct_blend_ingredients(
    db: AsyncSession,
    template_id: Any,
    quantity: Decimal,
    transaction: Transaction,
    operator_id: int,
    movement_type: str,
    label: str) -> List[InventoryMovement]:
    template = await db.get(BlendTemplate, template_id) if template_id else None
    if not template:
        raise InventoryItemError(f"Blend template not found: {template_id}")

    # Resolve every ingredient before changing any stock
    pairs = [(ingredient, await _get_product(db, ingredient.product_id)) for ingredient in template.ingredients]

    movements = []
    for ingredient, product in pairs:
        scaled = to_decimal(ingredient.quantity) * quantity
        movements.append(await record_movement(
            db, product, movement_type, scaled, operator_id,
            reference=transaction.transaction_number,
            unit_name=ingredient.unit_name,
            reference_id=transaction.id,
            reference_type="transaction",
            notes=f"{label}: {ingredient.name} for {template.name} x {quantity:g}"))
    return movements


async def _process_product(db, item: TransactionItem, transaction: Transaction, operator_id: int):
    product = await _get_product(db, item.product_id)
    volume_note = " (volume)" if item.sale_type == "volume" else ""
    movement = await record_movement(
        db, product, "sale", to_decimal(item.quantity), operator_id,
        reference=transaction.transaction_number,
        unit_name=item.unit_name or product.unit_name,
        reference_id=transaction.id,
        reference_type="transaction",
        notes=f"Sale: {item.name} x {to_decimal(item.quantity):g}{volume_note}")
    return [movement]


async def _process_fixed_blend(db, item: TransactionItem, transaction: Transaction, operator_id: int):
    quantity = to_decimal(item.quantity)
    movements = await _deduct_blend_ingredients(
        db, item.blend_template_id, quantity, transaction, operator_id,
        "fixed_blend", "Fixed blend ingredient")

    template = await db.get(BlendTemplate, item.blend_template_id)
    template.usage_count = (template.usage_count or 0) + int(quantity)
    template.last_used = datetime.utcnow()
    return movements


async def _process_bundle(db, item: TransactionItem, transaction: Transaction, operator_id: int):
    bundle = await db.get(Bundle, item.bundle_id) if item.bundle_id else None
    if not bundle:
        raise InventoryItemError(f"Bundle not found: {item.bundle_id}")

    movements = []
    for bundle_item in bundle.items:
        total_qty = to_decimal(bundle_item.quantity) * to_decimal(item.quantity)
        if bundle_item.product_type == "fixed_blend" and bundle_item.blend_template_id:
            movements.extend(await _deduct_blend_ingredients(
                db, bundle_item.blend_template_id, total_qty, transaction, operator_id,
                "bundle_blend_ingredient", "Bundle blend ingredient"))
            continue

        product = await db.get(Product, bundle_item.product_id)
        if not product:
            logger.warning(f"Bundle product not found: {bundle_item.product_id}, skipping")
            continue
        movements.append(await record_movement(
            db, product, "bundle_sale", total_qty, operator_id,
            reference=transaction.transaction_number,
            unit_name=bundle_item.unit_name or product.unit_name,
            reference_id=transaction.id,
            reference_type="transaction",
            notes=f"Bundle sale: {bundle_item.name} from {bundle.name} x {to_decimal(item.quantity):g}"))
    return movements


async def _process_custom_blend(db, item: TransactionItem, transaction: Transaction, operator_id: int):
    ingredients = (item.custom_blend_data or {}).get("ingredients") or []
    if not ingredients:
        raise InventoryItemError("Custom blend has no ingredients")

    quantity = to_decimal(item.quantity)
    pairs = [(ingredient, await _get_product(db, ingredient.get("product_id"))) for ingredient in ingredients]

    movements = []
    for ingredient, product in pairs:
        name = ingredient.get("name") or product.name
        movements.append(await record_movement(
            db, product, "custom_blend", to_decimal(ingredient.get("quantity")) * quantity, operator_id,
            reference=transaction.transaction_number,
            unit_name=ingredient.get("unit_name") or product.unit_name,
            reference_id=transaction.id,
            reference_type="transaction",
            notes=f"Custom blend ingredient: {name} for {item.name} x {quantity:g}"))
    return movements


ITEM_PROCESSORS: Dict[str, Callable] = {
    "product": _process_product,
    "fixed_blend": _process_fixed_blend,
    "bundle": _process_bundle,
    "custom_blend": _process_custom_blend,
}


async def _existing_movements(db: AsyncSession, reference: str, types=None) -> List[InventoryMovement]:
    query = select(InventoryMovement).where(InventoryMovement.reference == reference)
    if types:
        query = query.where(InventoryMovement.movement_type.in_(types))
    result = await db.execute(query.order_by(InventoryMovement.id))
    return list(result.scalars().all())


async def process_transaction_inventory(
    db: AsyncSession,
    transaction: Transaction,
    operator_id: int) -> InventoryDeductionResult:
    """Deduct stock for every stocked line item of a transaction"""
    result = InventoryDeductionResult()

    existing = await _existing_movements(db, transaction.transaction_number, REVERSIBLE_MOVEMENT_TYPES)
    if existing:
        result.skipped = True
        result.movements = existing
        result.warnings.append(
            f"Inventory movements already exist ({len(existing)}). Skipping to prevent duplicate deduction."
        )
        return result

    for item in transaction.items:
        item_type = item.item_type or "product"
        if item.is_service or item_type in NO_INVENTORY_ITEM_TYPES:
            continue
        processor = ITEM_PROCESSORS.get(item_type, _process_product)
        try:
            result.movements.extend(await processor(db, item, transaction, operator_id))
        except InventoryItemError as e:
            result.errors.append(f"Failed to process {item.name}: {e}")

    if result.errors:
        result.success = False
        logger.warning(f"{transaction.transaction_number}: {len(result.errors)} inventory errors: {result.errors}")
    await db.flush()
    return result


async def reverse_transaction_inventory(
    db: AsyncSession,
    transaction_number: str,
    operator_id: int,
    reference_id: int = None) -> InventoryReversalResult:
    """Put back everything a transaction took out of stock"""
    result = InventoryReversalResult()
    cancel_reference = f"CANCEL-{transaction_number}"

    already = await _existing_movements(db, cancel_reference)
    if already:
        result.skipped = True
        result.warnings.append(f"Already reversed ({len(already)} movements). Skipping.")
        return result

    originals = await _existing_movements(db, transaction_number, REVERSIBLE_MOVEMENT_TYPES)
    result.original_movement_count = len(originals)
    if not originals:
        result.warnings.append(f"No movements found for {transaction_number}.")
        return result

    for original in originals:
        product = await db.get(Product, original.product_id)
        if not product:
            result.errors.append(f"Failed to reverse {original.product_name}: product not found")
            continue
        result.reversed_movements.append(await record_movement(
            db, product, "return", original.converted_quantity, operator_id,
            reference=cancel_reference,
            unit_name=original.base_unit,
            reference_id=reference_id,
            reference_type="transaction",
            notes=f"Cancellation reversal for {original.movement_type}: {original.notes or ''}"))

    if result.errors:
        result.success = False
    await db.flush()
    return result
