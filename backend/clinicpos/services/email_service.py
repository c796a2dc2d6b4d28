"""
Outbound email over SMTP (aiosmtplib) with jinja2 HTML templates.
"""

import logging
import os
from datetime import datetime
from email.message import EmailMessage
from typing import List, Optional

import aiosmtplib
from fastapi.concurrency import run_in_threadpool
from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

from clinicpos.core.config import settings
from clinicpos.services.transaction_utils import quantize_money

logger = logging.getLogger(__name__)

template_env = Environment(
    loader=PackageLoader("clinicpos", "templates"),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
)


def format_email_date(value: datetime) -> str:
    """January 22, 2026"""
    return f"{value:%B} {value.day}, {value.year}"


class EmailService:
    """SMTP settings are read on every call so configuration changes apply without a restart"""

    @property
    def is_configured(self) -> bool:
        return bool(settings.SMTP_HOST and settings.SMTP_PORT and settings.EMAIL_USER and settings.EMAIL_PASS)

    def is_enabled(self) -> bool:
        return bool(settings.EMAIL_ENABLED) and self.is_configured

    @property
    def sender(self) -> str:
        return settings.EMAIL_FROM or settings.EMAIL_USER

    def build_message(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Optional[List[str]] = None) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable email client.")
        message.add_alternative(html, subtype="html")
        for path in attachments or []:
            with open(path, "rb") as fh:
                message.add_attachment(
                    fh.read(),
                    maintype="application",
                    subtype="pdf",
                    filename=os.path.basename(path))
        return message

    async def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Optional[List[str]] = None) -> bool:
        """
        Send one message.

        Returns False when email is disabled or not configured.
        Raises aiosmtplib.SMTPException when the server rejects the message.
        """
        if not self.is_enabled():
            logger.warning("Email service not configured. Skipping email send.")
            return False

        message = await run_in_threadpool(self.build_message, to, subject, html, attachments)
        smtp = aiosmtplib.SMTP(
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            use_tls=settings.SMTP_SECURE,  # implicit TLS, otherwise STARTTLS when offered
            timeout=60)
        try:
            async with smtp:
                await smtp.login(settings.EMAIL_USER, settings.EMAIL_PASS)
                await smtp.send_message(message)
        except aiosmtplib.SMTPException as e:
            logger.error(f"Failed to send email to {to}: {e}")
            raise

        logger.info(f"Email sent to {to}: {subject}")
        return True

    def render_invoice_email(
        self,
        customer_name: str,
        invoice_number: str,
        amount,
        transaction_date: datetime,
        payment_status: str) -> str:
        is_paid = payment_status == "paid"
        return template_env.get_template("invoice_email.html").render(
            company_name=settings.COMPANY_NAME,
            company_address_lines=settings.COMPANY_ADDRESS_LINES,
            company_email=settings.COMPANY_EMAIL,
            company_phone=settings.COMPANY_PHONE,
            paynow_uen=settings.PAYNOW_UEN,
            bank_name=settings.BANK_NAME,
            bank_account_name=settings.BANK_ACCOUNT_NAME,
            bank_account_number=settings.BANK_ACCOUNT_NUMBER,
            customer_name=customer_name,
            invoice_number=invoice_number,
            invoice_date=format_email_date(transaction_date),
            total_amount=f"${quantize_money(amount):.2f}",
            is_paid=is_paid,
            payment_status_text="Paid" if is_paid else "Payment Required")

    async def send_invoice_email(
        self,
        customer_email: str,
        customer_name: str,
        invoice_number: str,
        invoice_path: str,
        amount,
        transaction_date: datetime,
        payment_status: str) -> bool:
        if not self.is_enabled():
            logger.warning("Email service not configured. Cannot send invoice email.")
            return False

        if not os.path.exists(invoice_path):
            raise FileNotFoundError(f"Invoice file not found at path: {invoice_path}")

        html = self.render_invoice_email(customer_name, invoice_number, amount, transaction_date, payment_status)
        return await self.send_email(
            to=customer_email,
            subject=f"Invoice {invoice_number} - {settings.COMPANY_NAME}",
            html=html,
            attachments=[invoice_path])


email_service = EmailService()
