"""
Invoice generation and emailing for a single transaction
"""

import logging
from datetime import datetime
from typing import Any

import aiosmtplib
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.config import settings
from clinicpos.core.deps import get_db, get_current_user
from clinicpos.core.errors import AppError, ServiceUnavailableError, ValidationError
from clinicpos.models.transaction import Transaction
from clinicpos.models.user import User
from clinicpos.schemas.transaction import InvoiceEmailResponse, InvoiceGenerateResponse
from clinicpos.services.email_service import email_service
from clinicpos.services.invoice_pipeline import generate_invoice, send_invoice_for_transaction

from .core import load_transaction

logger = logging.getLogger(__name__)

router = APIRouter()


async def _regenerate(db: AsyncSession, transaction: Transaction) -> str:
    try:
        path = await generate_invoice(db, transaction)
    except Exception as e:
        logger.error(f"Invoice generation failed for {transaction.transaction_number}: {e}", exc_info=True)
        await db.rollback()
        transaction = await load_transaction(db, transaction.id)
        transaction.invoice_status = "failed"
        transaction.invoice_error = str(e)
        await db.commit()
        raise AppError(f"Failed to generate invoice: {e}", code="INVOICE_GENERATION_FAILED")
    await db.commit()
    return path


@router.post("/{transaction_id}/invoice", response_model=InvoiceGenerateResponse)
async def generate_transaction_invoice(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    transaction_id: int) -> Any:
    """(Re)generate the invoice PDF and email it when the customer has an address"""
    transaction = await load_transaction(db, transaction_id)
    path = await _regenerate(db, transaction)

    email_sent, email_error = False, None
    if transaction.customer_email and email_service.is_enabled():
        try:
            email_sent = await send_invoice_for_transaction(db, transaction)
            await db.commit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Invoice email failed for {transaction.transaction_number}: {e}")
            await db.rollback()
            email_error = str(e)

    return InvoiceGenerateResponse(
        message="Invoice generated successfully",
        invoice_number=transaction.invoice_number,
        invoice_path=path,
        download_url=f"{settings.API_V1_STR}/invoices/{transaction.invoice_filename}",
        email_sent=email_sent,
        email_error=email_error
    )


@router.post("/{transaction_id}/send-invoice-email", response_model=InvoiceEmailResponse)
async def send_transaction_invoice_email(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    transaction_id: int) -> Any:
    """Regenerate the invoice and email it to the customer"""
    transaction = await load_transaction(db, transaction_id)
    if not transaction.customer_email:
        raise ValidationError("Customer email address is required to send invoice")
    if not email_service.is_enabled():
        raise ServiceUnavailableError("Email service is not configured")

    await _regenerate(db, transaction)

    try:
        sent = await send_invoice_for_transaction(db, transaction)
    except (aiosmtplib.SMTPException, OSError) as e:
        await db.rollback()
        raise ServiceUnavailableError(f"Failed to send invoice email: {e}")
    if not sent:
        raise ServiceUnavailableError("Failed to send invoice email")

    await create_audit_log(
        db, current_user.id, "email", "transaction",
        resource_id=transaction.id,
        resource_name=transaction.transaction_number,
        description=f"Invoice emailed to {transaction.customer_email}")
    await db.commit()

    return InvoiceEmailResponse(
        email_sent=True,
        recipient=transaction.customer_email,
        sent_at=transaction.invoice_email_sent_at
    )
