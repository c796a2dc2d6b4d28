"""
Transaction create, read, update and delete, plus cancel and duplicate
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log, parse_date_param
from clinicpos.core.deps import get_db, get_current_user, require_roles
from clinicpos.core.errors import ConflictError, ValidationError
from clinicpos.models.transaction import Transaction
from clinicpos.models.user import User
from clinicpos.schemas.transaction import (
    TransactionCreate, TransactionUpdate, TransactionResponse, TransactionCreateResponse,
    TransactionListResponse, TransactionCancel, Pagination
)
from clinicpos.services.file_storage import InvalidFilenameError, get_storage
from clinicpos.services.invoice_pipeline import run_invoice_pipeline
from clinicpos.services.transaction_inventory import (
    process_transaction_inventory, reverse_transaction_inventory
)
from clinicpos.services.transaction_utils import normalize_transaction_for_payment, to_utc_naive

from .core import (
    TRANSACTION_DECIMAL_FIELDS, generate_transaction_number, is_placeholder_number, transaction_number_taken,
    base_transaction_query, load_transaction, money_fields, build_items, copy_items,
    apply_totals, check_discount_permissions, check_member_discounts, build_transaction_response
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=TransactionListResponse)
async def list_transactions(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Transaction number, customer name or email"),
    status: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD")) -> Any:
    """List transactions, newest first"""
    query = base_transaction_query()

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            Transaction.transaction_number.ilike(pattern),
            Transaction.customer_name.ilike(pattern),
            Transaction.customer_email.ilike(pattern)
        ))
    if status:
        conditions.append(Transaction.status == status)
    if payment_status:
        conditions.append(Transaction.payment_status == payment_status)
    if customer_id:
        conditions.append(Transaction.customer_id == customer_id)
    if start_date:
        conditions.append(Transaction.transaction_date >= parse_date_param(start_date, "start_date"))
    if end_date:
        end = parse_date_param(end_date, "end_date") + timedelta(days=1)
        conditions.append(Transaction.transaction_date < end)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
    query = query.offset((page - 1) * limit).limit(limit)
    transactions = (await db.execute(query)).scalars().all()

    total_pages = math.ceil(total / limit) if total else 0
    return TransactionListResponse(
        data=[build_transaction_response(t) for t in transactions],
        total=total,
        page=page,
        limit=limit,
        pagination=Pagination(
            current_page=page,
            total_pages=total_pages,
            total_count=total,
            limit=limit,
            has_next_page=page < total_pages,
            has_previous_page=page > 1
        )
    )


@router.post("/", response_model=TransactionCreateResponse, status_code=201)
async def create_transaction(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    background_tasks: BackgroundTasks,
    transaction_in: TransactionCreate) -> Any:
    """
    Create a transaction.

    Non-draft transactions deduct stock in the same database transaction and
    get their invoice generated in the background after the commit.
    """
    if not transaction_in.customer_name or not transaction_in.customer_name.strip():
        raise ValidationError("Customer name is required")
    if not transaction_in.items:
        raise ValidationError("At least one item is required")

    check_discount_permissions(current_user, transaction_in.items, transaction_in.discount_amount)
    await check_member_discounts(db, transaction_in.customer_id, transaction_in.items, transaction_in.discount_amount)

    data = transaction_in.model_dump(exclude={"items", "transaction_number"})
    data = {k: to_utc_naive(v) for k, v in money_fields(data, TRANSACTION_DECIMAL_FIELDS).items()}
    if data["transaction_date"] is None:
        data["transaction_date"] = datetime.utcnow()
    data["customer_name"] = data["customer_name"].strip()

    number = (transaction_in.transaction_number or "").strip()
    if is_placeholder_number(number):
        number = await generate_transaction_number(db)
    elif await transaction_number_taken(db, number):
        raise ConflictError(f"Transaction number {number} already exists")

    transaction = Transaction(**data, transaction_number=number, created_by=current_user.id)
    transaction.items = build_items(transaction_in.items)
    apply_totals(transaction)
    normalize_transaction_for_payment(transaction)
    db.add(transaction)
    await db.flush()

    inventory_errors, inventory_warnings = [], []
    if not transaction.is_draft:
        inventory = await process_transaction_inventory(db, transaction, current_user.id)
        inventory_errors, inventory_warnings = inventory.errors, inventory.warnings
        transaction.invoice_status = "pending"

    await create_audit_log(
        db, current_user.id, "create", "transaction",
        resource_id=transaction.id,
        resource_name=transaction.transaction_number,
        description=f"{transaction.customer_name}: {transaction.total_amount}")
    await db.commit()

    invoice_generating = not transaction.is_draft
    if invoice_generating:
        background_tasks.add_task(run_invoice_pipeline, transaction.id)
    logger.info(f"Created transaction {transaction.transaction_number} ({transaction.type}, {transaction.status})")

    transaction = await load_transaction(db, transaction.id)
    return build_transaction_response(
        transaction, TransactionCreateResponse,
        invoice_generating=invoice_generating,
        inventory_errors=inventory_errors,
        inventory_warnings=inventory_warnings)


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    transaction_id: int) -> Any:
    """Transaction detail"""
    return build_transaction_response(await load_transaction(db, transaction_id))


@router.put("/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    background_tasks: BackgroundTasks,
    transaction_id: int,
    transaction_in: TransactionUpdate) -> Any:
    """
    Update a transaction.

    Given items replace the existing ones. Moving into cancelled puts the
    stock back; completing a draft deducts it.
    """
    transaction = await load_transaction(db, transaction_id)
    was_draft = transaction.is_draft
    old_status = transaction.status

    update_data = transaction_in.model_dump(exclude_unset=True, exclude={"items"})
    update_data = {k: to_utc_naive(v) for k, v in money_fields(update_data, TRANSACTION_DECIMAL_FIELDS).items()}

    if transaction_in.items is not None or "discount_amount" in update_data or "customer_id" in update_data:
        items = transaction_in.items if transaction_in.items is not None else transaction.items
        bill_discount = update_data.get("discount_amount", transaction.discount_amount)
        check_discount_permissions(current_user, items, bill_discount)
        await check_member_discounts(
            db, update_data.get("customer_id", transaction.customer_id), items, bill_discount)

    for field, value in update_data.items():
        setattr(transaction, field, value)
    if transaction_in.items is not None:
        transaction.items = build_items(transaction_in.items)
    apply_totals(transaction)

    if was_draft:
        if transaction.type == "COMPLETED" and transaction.status == "draft":
            transaction.status = "completed"
        elif transaction.type == "DRAFT" and transaction.status in ("pending", "completed"):
            transaction.type = "COMPLETED"
    normalize_transaction_for_payment(transaction)
    transaction.last_modified_by = current_user.id
    transaction.updated_at = datetime.utcnow()
    await db.flush()

    completed_draft = was_draft and not transaction.is_draft and transaction.status != "cancelled"
    if transaction.status == "cancelled" and old_status != "cancelled" and not was_draft:
        reversal = await reverse_transaction_inventory(
            db, transaction.transaction_number, current_user.id, reference_id=transaction.id)
        logger.info(f"{transaction.transaction_number} cancelled: {reversal.reversed_count} movements reversed")
    elif completed_draft:
        inventory = await process_transaction_inventory(db, transaction, current_user.id)
        if inventory.errors:
            logger.warning(f"{transaction.transaction_number}: inventory errors on completion: {inventory.errors}")
        transaction.invoice_status = "pending"

    await create_audit_log(
        db, current_user.id, "update", "transaction",
        resource_id=transaction.id,
        resource_name=transaction.transaction_number,
        old_value={"status": old_status},
        new_value=transaction_in.model_dump(exclude_unset=True, mode="json"))
    await db.commit()

    if completed_draft:
        background_tasks.add_task(run_invoice_pipeline, transaction.id)
    return build_transaction_response(await load_transaction(db, transaction.id))


@router.delete("/{transaction_id}")
async def delete_transaction(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    transaction_id: int) -> Any:
    """Delete a transaction, putting its stock back and removing its invoice file"""
    transaction = await load_transaction(db, transaction_id)
    if transaction.refund_count:
        raise ConflictError("Transactions with refunds cannot be deleted")

    if not transaction.is_draft and transaction.status != "cancelled":
        await reverse_transaction_inventory(
            db, transaction.transaction_number, current_user.id, reference_id=transaction.id)

    if transaction.invoice_filename:
        try:
            get_storage().delete_file(transaction.invoice_filename)
        except InvalidFilenameError:
            logger.warning(f"Not deleting unexpected invoice path {transaction.invoice_path!r}")

    await create_audit_log(
        db, current_user.id, "delete", "transaction",
        resource_id=transaction.id,
        resource_name=transaction.transaction_number)
    await db.delete(transaction)
    await db.commit()
    return {"message": "Transaction deleted successfully"}


@router.post("/{transaction_id}/cancel", response_model=TransactionResponse)
async def cancel_transaction(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    transaction_id: int,
    cancel_in: TransactionCancel) -> Any:
    """Cancel a transaction and put its stock back"""
    transaction = await load_transaction(db, transaction_id)
    if transaction.status == "cancelled":
        raise ValidationError("Transaction is already cancelled")
    if transaction.status in ("refunded", "partially_refunded"):
        raise ValidationError("Refunded transactions cannot be cancelled")

    old_status = transaction.status
    transaction.status = "cancelled"
    transaction.last_modified_by = current_user.id
    transaction.updated_at = datetime.utcnow()
    if cancel_in.reason:
        note = f"Cancelled: {cancel_in.reason}"
        transaction.internal_notes = f"{transaction.internal_notes}\n{note}" if transaction.internal_notes else note

    if transaction.type != "DRAFT" and old_status != "draft":
        await reverse_transaction_inventory(
            db, transaction.transaction_number, current_user.id, reference_id=transaction.id)

    await create_audit_log(
        db, current_user.id, "cancel", "transaction",
        resource_id=transaction.id,
        resource_name=transaction.transaction_number,
        description=cancel_in.reason,
        old_value={"status": old_status},
        new_value={"status": "cancelled"})
    await db.commit()
    return build_transaction_response(await load_transaction(db, transaction.id))


@router.post("/{transaction_id}/duplicate", response_model=TransactionResponse, status_code=201)
async def duplicate_transaction(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    transaction_id: int) -> Any:
    """New draft with the same customer and items"""
    source = await load_transaction(db, transaction_id)

    duplicate = Transaction(
        transaction_number=await generate_transaction_number(db),
        type="DRAFT",
        status="draft",
        customer_id=source.customer_id,
        customer_name=source.customer_name,
        customer_email=source.customer_email,
        customer_phone=source.customer_phone,
        customer_address=source.customer_address,
        discount_amount=source.discount_amount,
        currency=source.currency,
        payment_method=source.payment_method,
        payment_status="pending",
        transaction_date=datetime.utcnow(),
        notes=f"Duplicate of {source.transaction_number}",
        terms=source.terms,
        created_by=current_user.id)
    duplicate.items = copy_items(source.items)
    apply_totals(duplicate)
    db.add(duplicate)
    await db.flush()

    await create_audit_log(
        db, current_user.id, "create", "transaction",
        resource_id=duplicate.id,
        resource_name=duplicate.transaction_number,
        description=f"Duplicated from {source.transaction_number}")
    await db.commit()
    return build_transaction_response(await load_transaction(db, duplicate.id))
