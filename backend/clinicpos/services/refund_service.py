"""
Refund workflow.

The functions here validate and mutate but never commit; the refunds
endpoints commit once per request so a refund and the transaction's refund
tracking are saved together.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.core.errors import ConflictError, NotFoundError, ValidationError
from clinicpos.models.product import Product
from clinicpos.models.refund import Refund, LIVE_REFUND_STATUSES
from clinicpos.models.transaction import Transaction
from clinicpos.services.inventory import record_movement
from clinicpos.services.transaction_utils import quantize_money, to_decimal

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(seconds=5)
NON_REFUNDABLE_STATUSES = ("cancelled", "refunded")


async def get_refund(db: AsyncSession, refund_id: int) -> Refund:
    refund = await db.get(Refund, refund_id)
    if not refund:
        raise NotFoundError("Refund")
    return refund


async def _live_refunds(db: AsyncSession, transaction_id: int, exclude_id: Optional[int] = None) -> List[Refund]:
    query = select(Refund).where(
        Refund.transaction_id == transaction_id,
        Refund.status.in_(LIVE_REFUND_STATUSES))
    if exclude_id is not None:
        query = query.where(Refund.id != exclude_id)
    result = await db.execute(query)
    return list(result.scalars().unique().all())


def _refunded_quantities(refunds: List[Refund]) -> Dict[Any, Decimal]:
    quantities: Dict[Any, Decimal] = defaultdict(Decimal)
    for refund in refunds:
        for item in refund.items or []:
            quantities[item.get("product_id")] += to_decimal(item.get("refund_quantity"))
    return quantities


async def create_refund(
    db: AsyncSession,
    transaction_id: int,
    items: List[Dict[str, Any]],
    refund_method: str,
    refund_reason: str,
    created_by: int,
    notes: Optional[str] = None) -> Refund:
    """
    Open a pending refund against a transaction.

    Args:
        items: [{product_id, refund_quantity, reason}]

    Raises:
        NotFoundError: transaction missing
        ValidationError: transaction not refundable, unknown product, quantity too large
        ConflictError: a refund for any of the same products was made moments ago
    """
    transaction = await db.get(Transaction, transaction_id)
    if not transaction:
        raise NotFoundError("Transaction")
    if transaction.status in NON_REFUNDABLE_STATUSES or transaction.is_draft:
        raise ValidationError("Transaction cannot be refunded")
    if not items:
        raise ValidationError("At least one item is required")

    requested_ids = {item["product_id"] for item in items}
    now = datetime.utcnow()
    recent = await db.execute(
        select(Refund).where(
            Refund.transaction_id == transaction_id,
            Refund.status != "rejected",
            Refund.created_at >= now - DUPLICATE_WINDOW))
    for existing in recent.scalars().unique().all():
        if requested_ids & set(existing.product_ids):
            logger.warning(f"Duplicate refund prevented for {transaction.transaction_number}")
            raise ConflictError(
                "A refund request for these items was recently submitted. Please wait and try again."
            )

    already_refunded = _refunded_quantities(await _live_refunds(db, transaction_id))
    original_items = {item.product_id: item for item in transaction.items if item.product_id}

    refund_items = []
    total = Decimal("0")
    for item in items:
        original = original_items.get(item["product_id"])
        if not original:
            raise ValidationError(f"Product {item['product_id']} not found in transaction")

        quantity = to_decimal(item["refund_quantity"])
        remaining = to_decimal(original.quantity) - already_refunded[original.product_id]
        if quantity > remaining:
            raise ValidationError(
                f"Refund quantity exceeds refundable quantity for {original.name} ({remaining:g} remaining)"
            )

        amount = quantize_money(to_decimal(original.unit_price) * quantity)
        total += amount
        refund_items.append({
            "product_id": original.product_id,
            "product_name": original.name,
            "original_quantity": float(original.quantity),
            "refund_quantity": float(quantity),
            "unit_name": original.unit_name,
            "unit_price": float(original.unit_price),
            "refund_amount": float(amount),
            "reason": item.get("reason"),
        })

    total = quantize_money(total)
    cumulative = to_decimal(transaction.total_refunded) + total
    refund_type = "full" if cumulative >= to_decimal(transaction.total_amount) else "partial"

    refund = Refund(
        transaction_id=transaction.id,
        transaction_number=transaction.transaction_number,
        customer_id=transaction.customer_id,
        customer_name=transaction.customer_name,
        customer_email=transaction.customer_email,
        customer_phone=transaction.customer_phone,
        items=refund_items,
        original_amount=transaction.total_amount,
        refund_amount=total,
        refund_type=refund_type,
        refund_method=refund_method,
        refund_reason=refund_reason,
        status="pending",
        notes=notes,
        request_date=now,
        created_by=created_by,
        created_at=now,
        updated_at=now)
    db.add(refund)

    transaction.refund_count = (transaction.refund_count or 0) + 1
    transaction.total_refunded = cumulative
    transaction.last_refund_date = now
    if refund_type == "full":
        transaction.refund_status = "full"
        transaction.status = "refunded"
    else:
        transaction.refund_status = "partial"
        transaction.status = "partially_refunded"
    transaction.last_modified_by = created_by

    await db.flush()
    logger.info(f"Refund {refund.id} ({refund_type}, {total}) opened for {transaction.transaction_number}")
    return refund


def _require_status(refund: Refund, expected: str, message: str) -> None:
    if refund.status != expected:
        raise ValidationError(message)


async def approve_refund(db: AsyncSession, refund_id: int, user_id: int, approval_notes: Optional[str] = None) -> Refund:
    refund = await get_refund(db, refund_id)
    _require_status(refund, "pending", "Refund is not in pending status")
    refund.status = "approved"
    refund.approved_by = user_id
    refund.approved_at = datetime.utcnow()
    refund.approval_notes = approval_notes
    refund.last_modified_by = user_id
    return refund


async def reject_refund(db: AsyncSession, refund_id: int, user_id: int, rejection_reason: str) -> Refund:
    """Reject a pending refund; the transaction's refund tracking is reset when nothing else is live"""
    refund = await get_refund(db, refund_id)
    _require_status(refund, "pending", "Refund is not in pending status")
    refund.status = "rejected"
    refund.rejected_by = user_id
    refund.rejected_at = datetime.utcnow()
    refund.rejection_reason = rejection_reason
    refund.last_modified_by = user_id

    transaction = await db.get(Transaction, refund.transaction_id)
    if transaction:
        transaction.refund_count = max(0, (transaction.refund_count or 1) - 1)
        others = await _live_refunds(db, refund.transaction_id, exclude_id=refund.id)
        if not others:
            transaction.refund_status = "none"
            transaction.status = "completed" if transaction.payment_status == "paid" else "pending"
            transaction.total_refunded = Decimal("0.00")
            transaction.last_refund_date = None
        else:
            transaction.total_refunded = quantize_money(sum(to_decimal(r.refund_amount) for r in others))
    return refund


async def process_refund(db: AsyncSession, refund_id: int, user_id: int) -> Refund:
    """Approved -> processing; puts the refunded quantities back into stock"""
    refund = await get_refund(db, refund_id)
    _require_status(refund, "approved", "Refund must be approved before processing")

    for item in refund.items or []:
        product = await db.get(Product, item.get("product_id"))
        if not product:
            logger.warning(f"Refund {refund.id}: product {item.get('product_id')} not found, stock not restored")
            continue
        await record_movement(
            db, product, "return", item.get("refund_quantity"), user_id,
            reference=f"REFUND-{refund.id}",
            unit_name=item.get("unit_name"),
            reference_id=refund.id,
            reference_type="refund",
            reason=refund.refund_reason,
            notes=f"Refund for {refund.transaction_number}: {item.get('product_name')}")

    refund.status = "processing"
    refund.processed_by = user_id
    refund.processed_at = datetime.utcnow()
    refund.last_modified_by = user_id
    await db.flush()
    return refund


async def complete_refund(
    db: AsyncSession,
    refund_id: int,
    user_id: int,
    payment_details: Optional[Dict[str, Any]] = None) -> Refund:
    refund = await get_refund(db, refund_id)
    _require_status(refund, "processing", "Refund must be in processing status")
    now = datetime.utcnow()
    refund.status = "completed"
    refund.completed_by = user_id
    refund.completed_at = now
    refund.last_modified_by = user_id
    if payment_details:
        refund.payment_details = {
            "method": payment_details.get("method") or refund.refund_method,
            "reference": payment_details.get("reference"),
            "amount": payment_details.get("amount") or float(refund.refund_amount),
            "processed_at": now.isoformat(),
        }
    return refund


async def cancel_refund(db: AsyncSession, refund_id: int, user_id: int, reason: Optional[str] = None) -> Refund:
    refund = await get_refund(db, refund_id)
    if refund.status == "completed":
        raise ValidationError("Cannot cancel completed refund")
    refund.status = "cancelled"
    refund.rejection_reason = reason
    refund.last_modified_by = user_id
    return refund


async def get_refund_eligibility(db: AsyncSession, transaction_id: int) -> Dict[str, Any]:
    transaction = await db.get(Transaction, transaction_id)
    if not transaction:
        raise NotFoundError("Transaction")

    if transaction.status == "cancelled":
        return {"eligible": False, "reason": "Transaction is cancelled", "max_refundable_amount": 0, "refundable_items": []}
    if transaction.status == "refunded":
        return {
            "eligible": False,
            "reason": "Transaction is already fully refunded",
            "max_refundable_amount": 0,
            "refundable_items": [],
        }

    refunds = await _live_refunds(db, transaction_id)
    refunded = _refunded_quantities(refunds)
    total_refunded = sum((to_decimal(r.refund_amount) for r in refunds), Decimal("0"))

    refundable_items = []
    for item in transaction.items:
        if not item.product_id:
            continue
        remaining = to_decimal(item.quantity) - refunded[item.product_id]
        if remaining > 0:
            refundable_items.append({
                "product_id": item.product_id,
                "product_name": item.name,
                "max_refundable_quantity": float(remaining),
                "unit_price": float(item.unit_price),
            })

    max_amount = max(Decimal("0"), to_decimal(transaction.total_amount) - total_refunded)
    return {
        "eligible": bool(refundable_items) and max_amount > 0,
        "reason": None,
        "max_refundable_amount": float(quantize_money(max_amount)),
        "refundable_items": refundable_items,
    }


async def get_refund_statistics(
    db: AsyncSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None) -> Dict[str, Any]:
    conditions = []
    if start_date:
        conditions.append(Refund.request_date >= start_date)
    if end_date:
        conditions.append(Refund.request_date <= end_date)
    where = and_(*conditions) if conditions else None

    def grouped(column):
        query = select(column, func.count(Refund.id)).group_by(column)
        return query.where(where) if where is not None else query

    totals_query = select(func.count(Refund.id), func.coalesce(func.sum(Refund.refund_amount), 0))
    if where is not None:
        totals_query = totals_query.where(where)
    count, amount = (await db.execute(totals_query)).one()
    amount = to_decimal(amount)

    by_status = dict((await db.execute(grouped(Refund.status))).all())
    by_reason = dict((await db.execute(grouped(Refund.refund_reason))).all())
    by_method = dict((await db.execute(grouped(Refund.refund_method))).all())

    day = func.date(Refund.request_date)
    trend_query = select(day, func.count(Refund.id), func.coalesce(func.sum(Refund.refund_amount), 0)).group_by(day).order_by(day)
    if where is not None:
        trend_query = trend_query.where(where)
    trends = [
        {"date": str(row[0]), "count": row[1], "amount": float(quantize_money(row[2]))}
        for row in (await db.execute(trend_query)).all()
    ]

    return {
        "total_refunds": count,
        "total_amount": float(quantize_money(amount)),
        "average_refund_amount": float(quantize_money(amount / count)) if count else 0.0,
        "refunds_by_status": by_status,
        "refunds_by_reason": by_reason,
        "refunds_by_method": by_method,
        "trends": trends,
    }
