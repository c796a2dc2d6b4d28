"""
Membership discount rules.

    item type       eligible
    product         yes
    fixed_blend     yes
    custom_blend    no  (priced from ingredient cost)
    bundle          no  (already discounted)
    consultation    no
    service         no
    miscellaneous   no

A product flagged discountable_for_members=False is never eligible, and an
item's discount may not exceed the patient's membership percentage (with
0.5 percentage points of rounding tolerance).
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.models.patient import Patient
from clinicpos.models.product import Product
from clinicpos.services.transaction_utils import to_decimal

logger = logging.getLogger(__name__)

DISCOUNT_ELIGIBLE_ITEM_TYPES = {"product", "fixed_blend"}
DISCOUNT_TOLERANCE_PCT = Decimal("0.5")


@dataclass
class DiscountValidationResult:
    valid: bool = True
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    max_discount_percentage: Decimal = Decimal("0")

    def add_error(self, code: str, message: str, item_index: Optional[int] = None, item: Optional[str] = None):
        self.valid = False
        self.errors.append({"item_index": item_index, "item": item, "code": code, "message": message})

    def as_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "max_discount_percentage": float(self.max_discount_percentage),
        }


def _attr(item: Any, key: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(key, default)
    return getattr(item, key, default)


def _is_item_eligible(item: Any, member_flags: Dict[int, bool]) -> bool:
    if _attr(item, "is_service"):
        return False
    if _attr(item, "item_type") not in DISCOUNT_ELIGIBLE_ITEM_TYPES:
        return False
    product_id = _attr(item, "product_id")
    return member_flags.get(product_id, True) if product_id else True


def validate_item_discounts(
    items: Sequence[Any],
    max_discount_pct: Any,
    member_flags: Optional[Dict[int, bool]] = None,
    result: Optional[DiscountValidationResult] = None) -> DiscountValidationResult:
    """
    Check every discounted line item against the membership rules.

    Args:
        items: objects or dicts with product_id, name, item_type, is_service,
            unit_price, quantity, discount_amount
        max_discount_pct: the patient's membership percentage (0 without one)
        member_flags: product_id -> discountable_for_members; missing means True
    """
    result = result or DiscountValidationResult()
    member_flags = member_flags or {}
    max_pct = to_decimal(max_discount_pct)
    result.max_discount_percentage = max_pct

    for index, item in enumerate(items):
        discount = to_decimal(_attr(item, "discount_amount"))
        if discount <= 0:
            continue
        name = _attr(item, "name") or "Unknown Item"
        item_type = _attr(item, "item_type")

        if _attr(item, "is_service"):
            result.add_error(
                "ITEM_TYPE_NOT_ELIGIBLE",
                f'Item "{name}" is a service and not eligible for membership discounts',
                index, name)
            continue

        if item_type not in DISCOUNT_ELIGIBLE_ITEM_TYPES:
            result.add_error(
                "ITEM_TYPE_NOT_ELIGIBLE",
                f'Item "{name}" (type: {item_type or "unknown"}) is not eligible for membership discounts',
                index, name)
            continue

        product_id = _attr(item, "product_id")
        if product_id and member_flags.get(product_id) is False:
            result.add_error(
                "PRODUCT_NOT_DISCOUNTABLE",
                f'Item "{name}" is not eligible for membership discounts (product flagged as non-discountable)',
                index, name)
            continue

        item_total = to_decimal(_attr(item, "unit_price")) * to_decimal(_attr(item, "quantity"))
        if item_total <= 0:
            result.add_error(
                "EXCEEDS_TIER_LIMIT",
                f'Item "{name}" has a discount but zero or negative subtotal',
                index, name)
            continue

        applied_pct = discount / item_total * 100
        if applied_pct > max_pct + DISCOUNT_TOLERANCE_PCT:
            result.add_error(
                "EXCEEDS_TIER_LIMIT",
                f'Item "{name}" has {applied_pct:.1f}% discount but patient\'s tier allows max {max_pct.normalize():f}%',
                index, name)

    return result


def validate_bill_discount(
    bill_discount: Any,
    items: Sequence[Any],
    member_flags: Optional[Dict[int, bool]] = None,
    result: Optional[DiscountValidationResult] = None) -> DiscountValidationResult:
    """A bill level discount is only allowed when every item is eligible"""
    result = result or DiscountValidationResult()
    if to_decimal(bill_discount) <= 0:
        return result

    member_flags = member_flags or {}
    not_eligible = [
        _attr(item, "name") or "Unknown Item"
        for item in items
        if not _is_item_eligible(item, member_flags)
    ]
    if not_eligible:
        result.add_error(
            "BILL_DISCOUNT_NOT_ELIGIBLE",
            f"Bill-level discount cannot be applied because {len(not_eligible)} item(s) are not "
            f"eligible for discounts: {', '.join(not_eligible)}. Use per-item discounts on eligible items instead.")
    return result


async def load_member_flags(db: AsyncSession, product_ids: Iterable[Optional[int]]) -> Dict[int, bool]:
    ids = {pid for pid in product_ids if pid}
    if not ids:
        return {}
    result = await db.execute(
        select(Product.id, Product.discountable_for_members).where(Product.id.in_(ids))
    )
    return {pid: bool(flag) for pid, flag in result.all()}


async def validate_transaction_discounts(
    db: AsyncSession,
    patient: Patient,
    items: Sequence[Any],
    bill_discount: Any = 0) -> DiscountValidationResult:
    """Full membership check for a patient's transaction"""
    result = DiscountValidationResult()
    max_pct = patient.active_discount_percentage()
    result.max_discount_percentage = max_pct

    has_item_discount = any(to_decimal(_attr(i, "discount_amount")) > 0 for i in items)
    if not has_item_discount and to_decimal(bill_discount) <= 0:
        return result

    if not patient.is_active:
        result.warnings.append(f"Patient {patient.full_name} is inactive")
        logger.warning(f"Discount applied for inactive patient {patient.id}")

    flags = await load_member_flags(db, (_attr(i, "product_id") for i in items))
    validate_item_discounts(items, max_pct, flags, result)
    validate_bill_discount(bill_discount, items, flags, result)
    return result
