"""
Transaction -> invoice PDF -> email.

`run_invoice_pipeline` is scheduled as a FastAPI background task after a
transaction is committed. It opens its own session and never raises: every
failure is logged and written back to the transaction's invoice_* columns.
"""

import logging
import os
import tempfile
from datetime import datetime
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.db import session as db_session
from clinicpos.models.transaction import Transaction
from clinicpos.services.email_service import email_service
from clinicpos.services.file_storage import InvalidFilenameError, LocalFileStorage, get_storage
from clinicpos.services.invoice_generator import InvoiceGenerator, build_invoice_data
from clinicpos.services.transaction_utils import format_invoice_filename

logger = logging.getLogger(__name__)


def _remove_previous_invoice(transaction: Transaction, storage: LocalFileStorage) -> None:
    filename = transaction.invoice_filename
    if not filename:
        return
    try:
        storage.delete_file(filename)
    except InvalidFilenameError:
        logger.warning(f"Ignoring unexpected stored invoice path {transaction.invoice_path!r}")


def _render_and_store(data, filename: str, storage: LocalFileStorage) -> str:
    fd, temp_path = tempfile.mkstemp(suffix=".pdf", prefix="invoice_")
    os.close(fd)
    try:
        InvoiceGenerator().generate(data, temp_path)
        return storage.save_file(temp_path, filename)
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


async def generate_invoice(
    db: AsyncSession,
    transaction: Transaction,
    storage: Optional[LocalFileStorage] = None) -> str:
    """
    Render the invoice for `transaction` and store it.

    Any earlier invoice file is removed first. The invoice fields are set on
    the transaction but not committed.

    Returns:
        Stored file path
    """
    storage = storage or get_storage()
    _remove_previous_invoice(transaction, storage)

    filename = format_invoice_filename(
        transaction.transaction_number,
        transaction.customer_name,
        transaction.transaction_date or datetime.utcnow())

    # reportlab rendering and file copies are blocking
    stored_path = await run_in_threadpool(_render_and_store, build_invoice_data(transaction), filename, storage)

    transaction.invoice_generated = True
    transaction.invoice_status = "completed"
    transaction.invoice_path = stored_path
    transaction.invoice_number = transaction.transaction_number
    transaction.invoice_error = None
    transaction.updated_at = datetime.utcnow()
    db.add(transaction)

    logger.info(f"Invoice generated for {transaction.transaction_number}: {stored_path}")
    return stored_path


async def send_invoice_for_transaction(db: AsyncSession, transaction: Transaction) -> bool:
    """Email the stored invoice; records the recipient when it was sent"""
    sent = await email_service.send_invoice_email(
        customer_email=transaction.customer_email,
        customer_name=transaction.customer_name,
        invoice_number=transaction.invoice_number or transaction.transaction_number,
        invoice_path=transaction.invoice_path,
        amount=transaction.total_amount,
        transaction_date=transaction.transaction_date or datetime.utcnow(),
        payment_status=transaction.payment_status)

    if sent:
        transaction.invoice_email_sent = True
        transaction.invoice_email_sent_at = datetime.utcnow()
        transaction.invoice_email_recipient = transaction.customer_email
        db.add(transaction)
        logger.info(f"Invoice email for {transaction.transaction_number} sent to {transaction.customer_email}")
    return sent


async def run_invoice_pipeline(transaction_id: int) -> None:
    """Background entry point"""
    async with db_session.SessionLocal() as db:
        transaction = await db.get(Transaction, transaction_id)
        if not transaction:
            logger.warning(f"Invoice pipeline: transaction {transaction_id} no longer exists")
            return

        transaction.invoice_status = "generating"
        await db.commit()

        try:
            await generate_invoice(db, transaction)
            await db.commit()
        except Exception as e:
            logger.error(f"Invoice generation failed for {transaction.transaction_number}: {e}", exc_info=True)
            await db.rollback()
            await db.refresh(transaction)
            transaction.invoice_status = "failed"
            transaction.invoice_error = str(e)
            await db.commit()
            return

        if not transaction.customer_email or not email_service.is_enabled():
            return

        try:
            await send_invoice_for_transaction(db, transaction)
            await db.commit()
        except Exception as e:
            # The invoice itself is fine; only the email is lost
            logger.error(f"Invoice email failed for {transaction.transaction_number}: {e}")
            await db.rollback()
