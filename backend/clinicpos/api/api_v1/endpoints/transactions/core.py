"""
Transaction core helpers
- transaction number generation
- item building and totals
- discount permission and membership checks
- base query and response building
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence, Type
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from clinicpos.core.config import settings
from clinicpos.core.errors import DiscountLimitExceededError, NotFoundError, ValidationError
from clinicpos.core.permissions import check_discount_permission
from clinicpos.models.counter import Counter
from clinicpos.models.inventory_movement import InventoryMovement
from clinicpos.models.patient import Patient
from clinicpos.models.transaction import Transaction, TransactionItem
from clinicpos.schemas.transaction import TransactionItemIn, TransactionResponse
from clinicpos.services.discount_validation import validate_transaction_discounts
from clinicpos.services.transaction_utils import (
    calculate_item_total, calculate_transaction_totals, to_decimal
)

ITEM_DECIMAL_FIELDS = ("quantity", "unit_price", "cost_price", "discount_amount", "converted_quantity")
TRANSACTION_DECIMAL_FIELDS = ("discount_amount", "paid_amount", "change_amount")


async def generate_transaction_number(db: AsyncSession) -> str:
    """
    TXN-YYYYMMDD-NNNN, numbered per business day.

    The sequence lives in a counter row so a number is never handed out
    twice, even after the day's latest transaction is deleted. A missing
    counter starts from the highest number already stored for the day.
    """
    date_str = datetime.now(ZoneInfo(settings.BUSINESS_TIMEZONE)).strftime("%Y%m%d")
    prefix = f"TXN-{date_str}-"

    counter = await db.get(
        Counter, f"transaction:{date_str}", with_for_update=True, populate_existing=True)
    if counter is None:
        result = await db.execute(
            select(func.max(Transaction.transaction_number)).where(Transaction.transaction_number.like(f"{prefix}%"))
        )
        max_no = result.scalar()
        try:
            start = int(max_no[-4:]) if max_no else 0
        except ValueError:
            start = 0
        counter = Counter(name=f"transaction:{date_str}", value=start)
        db.add(counter)

    counter.value += 1
    await db.flush()
    return f"{prefix}{counter.value:04d}"


def is_placeholder_number(number: Optional[str]) -> bool:
    """Client numbers that are empty or start with DRAFT are replaced"""
    number = (number or "").strip()
    return not number or number.upper().startswith("DRAFT")


async def transaction_number_taken(db: AsyncSession, number: str) -> bool:
    """True when a transaction or a stock movement already uses the number"""
    if (await db.execute(select(Transaction.id).where(Transaction.transaction_number == number))).first():
        return True
    movement = await db.execute(
        select(InventoryMovement.id).where(InventoryMovement.reference == number).limit(1))
    return movement.first() is not None


def base_transaction_query():
    return select(Transaction).options(selectinload(Transaction.items))


async def load_transaction(db: AsyncSession, transaction_id: int) -> Transaction:
    result = await db.execute(
        base_transaction_query()
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    transaction = result.scalar_one_or_none()
    if not transaction:
        raise NotFoundError("Transaction")
    return transaction


def money_fields(data: dict, fields: Sequence[str]) -> dict:
    for key in fields:
        if data.get(key) is not None:
            data[key] = to_decimal(data[key])
    return data


def build_items(items_in: Sequence[TransactionItemIn]) -> List[TransactionItem]:
    items = []
    for item in items_in:
        data = money_fields(item.model_dump(), ITEM_DECIMAL_FIELDS)
        data["total_price"] = calculate_item_total(data["unit_price"], data["quantity"], data["discount_amount"])
        items.append(TransactionItem(**data))
    return items


def copy_items(items: Sequence[TransactionItem]) -> List[TransactionItem]:
    columns = [c.key for c in TransactionItem.__table__.columns if c.key not in ("id", "transaction_id")]
    return [TransactionItem(**{key: getattr(item, key) for key in columns}) for item in items]


def apply_totals(transaction: Transaction) -> None:
    subtotal, _, total = calculate_transaction_totals(transaction.items, transaction.discount_amount)
    transaction.subtotal = subtotal
    transaction.total_amount = total


def check_discount_permissions(user: Any, items: Sequence[Any], bill_discount: Any = 0) -> None:
    """
    Every line item discount is checked as a product discount and the bill
    discount as a bill discount. Percentages are taken against the gross
    amount (unit price x quantity).

    Raises:
        DiscountLimitExceededError: the first discount the user may not give
    """
    subtotal = 0.0
    for item in items:
        gross = float(item.unit_price or 0) * float(item.quantity or 0)
        subtotal += gross
        discount = float(item.discount_amount or 0)
        if discount <= 0:
            continue
        percent = discount / gross * 100 if gross > 0 else 100.0
        allowed, reason = check_discount_permission(user, percent, discount, "product")
        if not allowed:
            raise DiscountLimitExceededError(
                f"{item.name}: {reason}",
                details={"item": item.name, "discount_amount": discount, "discount_percent": round(percent, 2)})

    bill_discount = float(bill_discount or 0)
    if bill_discount > 0:
        percent = bill_discount / subtotal * 100 if subtotal > 0 else 100.0
        allowed, reason = check_discount_permission(user, percent, bill_discount, "bill")
        if not allowed:
            raise DiscountLimitExceededError(
                reason,
                details={"discount_amount": bill_discount, "discount_percent": round(percent, 2)})


async def check_member_discounts(
    db: AsyncSession,
    customer_id: Optional[int],
    items: Sequence[Any],
    bill_discount: Any = 0) -> List[str]:
    """
    Membership rules for patients; other customers are not checked.

    Returns:
        warnings from the validation
    """
    if not customer_id:
        return []
    patient = await db.get(Patient, customer_id)
    if not patient:
        return []

    result = await validate_transaction_discounts(db, patient, items, bill_discount)
    if not result.valid:
        raise ValidationError("Discount validation failed", details=result.as_dict())
    return result.warnings


def build_transaction_response(
    transaction: Transaction,
    response_class: Type[TransactionResponse] = TransactionResponse,
    **extra: Any) -> TransactionResponse:
    response = response_class.model_validate(transaction)
    if extra:
        response = response.model_copy(update=extra)
    return response
