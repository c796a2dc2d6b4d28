"""
Autosaved drafts

One draft per (draft_id, user). Autosaving never touches stock and never
generates an invoice. Once a draft is completed its draft_id can no longer
be autosaved.
"""

from datetime import datetime
from typing import Any, List

from fastapi import APIRouter, Depends
from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.core.deps import get_db, get_current_user
from clinicpos.core.errors import ConflictError, NotFoundError
from clinicpos.models.transaction import Transaction
from clinicpos.models.user import User
from clinicpos.schemas.transaction import DraftAutosave, DraftSaveResponse, TransactionResponse
from clinicpos.services.transaction_utils import to_decimal

from .core import (
    generate_transaction_number, base_transaction_query, build_items, apply_totals, build_transaction_response
)

router = APIRouter()


async def _find_draft(db: AsyncSession, draft_id: str, user_id: int):
    result = await db.execute(
        base_transaction_query().where(and_(
            Transaction.draft_id == draft_id,
            Transaction.created_by == user_id
        ))
    )
    return result.scalar_one_or_none()


@router.post("/drafts/autosave", response_model=DraftSaveResponse)
async def autosave_draft(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    draft_in: DraftAutosave) -> Any:
    """Create or overwrite the caller's draft with this draft_id"""
    form = draft_in.form_data
    transaction = await _find_draft(db, draft_in.draft_id, current_user.id)
    if transaction is not None and not transaction.is_draft:
        raise ConflictError(
            f"Draft {draft_in.draft_id} was already completed as {transaction.transaction_number}",
            details={"transaction_id": transaction.id})
    if transaction is None:
        transaction = Transaction(
            transaction_number=await generate_transaction_number(db),
            draft_id=draft_in.draft_id,
            created_by=current_user.id,
            transaction_date=datetime.utcnow())
        db.add(transaction)
    else:
        transaction.last_modified_by = current_user.id
        transaction.updated_at = datetime.utcnow()

    transaction.type = "DRAFT"
    transaction.status = "draft"
    transaction.customer_id = form.customer_id
    transaction.customer_name = (form.customer_name or "").strip() or "Draft Customer"
    transaction.customer_email = form.customer_email
    transaction.customer_phone = form.customer_phone
    transaction.payment_method = form.payment_method
    transaction.payment_status = form.payment_status
    transaction.discount_amount = to_decimal(form.discount)
    transaction.notes = f"Draft: {draft_in.draft_name or 'Auto-saved draft'}"
    transaction.items = build_items(form.items)
    apply_totals(transaction)

    await db.commit()
    return DraftSaveResponse(draft_id=draft_in.draft_id, transaction_id=transaction.id)


@router.get("/drafts", response_model=List[TransactionResponse])
async def list_drafts(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)) -> Any:
    """The caller's drafts, most recently saved first"""
    result = await db.execute(
        base_transaction_query()
        .where(and_(
            Transaction.created_by == current_user.id,
            Transaction.type == "DRAFT",
            Transaction.draft_id.isnot(None)
        ))
        .order_by(Transaction.updated_at.desc(), Transaction.id.desc())
    )
    return [build_transaction_response(t) for t in result.scalars().all()]


@router.delete("/drafts/{draft_id}")
async def delete_draft(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    draft_id: str) -> Any:
    """Discard one of the caller's drafts"""
    transaction = await _find_draft(db, draft_id, current_user.id)
    if transaction is None or transaction.type != "DRAFT":
        raise NotFoundError("Draft")
    await db.delete(transaction)
    await db.commit()
    return {"success": True, "message": "Draft deleted successfully"}
