"""
Invoice PDF rendering (reportlab canvas).

Layout, top to bottom:
    company block | INVOICE, number, dates, status
    Bill To | Payment Information
    items table
    totals
    Payment Received box, or Payment Required box (PayNow QR, bank transfer, no refund notice)
    notes and footer
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from clinicpos.core.config import settings
from clinicpos.models.transaction import PAYMENT_METHOD_LABELS, Transaction
from clinicpos.services.transaction_utils import quantize_money, to_decimal

logger = logging.getLogger(__name__)

W, H = A4
MARGIN = 50
CONTENT_W = W - 2 * MARGIN

DARK = HexColor('#2c3e50')
MUTED = HexColor('#6c757d')
RULE = HexColor('#dee2e6')
PANEL = HexColor('#f8f9fa')
WARNING_BG = HexColor('#fff3cd')
WARNING_FG = HexColor('#856404')
SUCCESS_BG = HexColor('#d4edda')
SUCCESS_FG = HexColor('#155724')
DANGER = HexColor('#dc3545')

STATUS_COLORS = {
    "paid": "#28a745",
    "pending": "#ffc107",
    "partial": "#fd7e14",
    "overdue": "#dc3545",
    "failed": "#dc3545",
    "refunded": "#6c757d",
}

STATUS_LABELS = {
    "paid": "Paid",
    "pending": "Pending",
    "partial": "Partially Paid",
    "overdue": "Overdue",
    "failed": "Failed",
    "refunded": "Refunded",
}


@dataclass
class InvoiceLine:
    name: str
    quantity: Decimal
    unit_price: Decimal
    discount_amount: Decimal
    total_price: Decimal
    item_type: str = "product"
    unit_name: Optional[str] = None
    description: Optional[str] = None


@dataclass
class InvoiceData:
    invoice_number: str
    transaction_date: datetime
    customer_name: str
    items: List[InvoiceLine]
    subtotal: Decimal
    member_discounts: Decimal
    additional_discount: Decimal
    total_amount: Decimal
    currency: str = "SGD"
    payment_method: str = "cash"
    payment_status: str = "pending"
    paid_amount: Decimal = Decimal("0")
    due_date: Optional[datetime] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    notes: Optional[str] = None
    terms: Optional[str] = None

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_amount - (self.paid_amount or Decimal("0"))


def format_currency(amount: Any, currency: str = "SGD") -> str:
    return f"{currency} {quantize_money(amount):.2f}"


def payment_method_label(method: Optional[str]) -> str:
    return PAYMENT_METHOD_LABELS.get(method, method or "")


def item_type_label(line: InvoiceLine) -> str:
    """Suffix shown after the item name"""
    qty = f"{line.quantity.normalize():f}" if isinstance(line.quantity, Decimal) else str(line.quantity)
    if line.item_type == "bundle":
        return f"({qty}x Bundle)"
    if line.item_type in ("fixed_blend", "custom_blend"):
        return f"({qty}x {line.unit_name or 'unit'})"
    if line.item_type == "consultation":
        return "(Consultation)"
    if line.item_type == "service":
        return "(Service)"
    return ""


def build_invoice_data(transaction: Transaction) -> InvoiceData:
    """
    Invoice view of a transaction.

    subtotal is the gross (unit price x quantity); line discounts are the
    member discounts and the bill discount is shown as an additional discount.
    """
    lines = []
    subtotal = Decimal("0")
    member_discounts = Decimal("0")
    for item in transaction.items:
        quantity = to_decimal(item.quantity)
        unit_price = to_decimal(item.unit_price)
        discount = to_decimal(item.discount_amount)
        gross = unit_price * quantity
        subtotal += gross
        member_discounts += discount
        lines.append(InvoiceLine(
            name=item.name,
            description=item.description,
            item_type=item.item_type or "product",
            unit_name=item.unit_name,
            quantity=quantity,
            unit_price=unit_price,
            discount_amount=discount,
            total_price=quantize_money(gross - discount)))

    additional = to_decimal(transaction.discount_amount)
    total = max(subtotal - member_discounts - additional, Decimal("0"))

    return InvoiceData(
        invoice_number=transaction.transaction_number,
        transaction_date=transaction.transaction_date or datetime.utcnow(),
        due_date=transaction.due_date,
        customer_name=transaction.customer_name,
        customer_email=transaction.customer_email,
        customer_phone=transaction.customer_phone,
        customer_address=transaction.customer_address,
        items=lines,
        subtotal=quantize_money(subtotal),
        member_discounts=quantize_money(member_discounts),
        additional_discount=quantize_money(additional),
        total_amount=quantize_money(total),
        currency=transaction.currency or settings.DEFAULT_CURRENCY,
        payment_method=transaction.payment_method,
        payment_status=transaction.payment_status,
        paid_amount=to_decimal(transaction.paid_amount),
        notes=transaction.notes,
        terms=transaction.terms)


def _local_date(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=ZoneInfo("UTC"))
    return value.astimezone(ZoneInfo(settings.BUSINESS_TIMEZONE)).strftime("%d/%m/%Y")


class InvoiceGenerator:
    """Draws one invoice per call to `generate`"""

    def __init__(self):
        self.c = None
        self.y = H - MARGIN
        self.page_num = 0

    # ─── page helpers ───

    def _new_page(self):
        if self.page_num:
            self.c.showPage()
        self.page_num += 1
        self.y = H - MARGIN

    def _ensure_space(self, height: float):
        if self.y - height < MARGIN + 30:
            self._new_page()

    def _text(self, x, y, text, font="Helvetica", size=10, color=DARK, align="left"):
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        if align == "right":
            self.c.drawRightString(x, y, text)
        elif align == "center":
            self.c.drawCentredString(x, y, text)
        else:
            self.c.drawString(x, y, text)

    def _rule(self, y, color=RULE, width=0.75):
        self.c.setStrokeColor(color)
        self.c.setLineWidth(width)
        self.c.line(MARGIN, y, W - MARGIN, y)

    # ─── sections ───

    def _header(self, data: InvoiceData):
        top = self.y
        self._text(MARGIN, top, settings.COMPANY_NAME, "Helvetica-Bold", 16)
        y = top - 18
        contact = list(settings.COMPANY_ADDRESS_LINES)
        if settings.COMPANY_PHONE:
            contact.append(f"Phone: {settings.COMPANY_PHONE}")
        if settings.COMPANY_EMAIL:
            contact.append(f"Email: {settings.COMPANY_EMAIL}")
        if settings.COMPANY_WEBSITE:
            contact.append(settings.COMPANY_WEBSITE)
        for line in contact:
            self._text(MARGIN, y, line, size=9, color=MUTED)
            y -= 12

        right = W - MARGIN
        self._text(right, top, "INVOICE", "Helvetica-Bold", 22, align="right")
        self._text(right, top - 22, f"Invoice #: {data.invoice_number}", size=10, align="right")
        self._text(right, top - 36, f"Date: {_local_date(data.transaction_date)}", size=10, align="right")
        due = _local_date(data.due_date) if data.due_date else "Upon Receipt"
        self._text(right, top - 50, f"Due Date: {due}", size=10, align="right")
        status_color = HexColor(STATUS_COLORS.get(data.payment_status, "#6c757d"))
        status_label = STATUS_LABELS.get(data.payment_status, data.payment_status or "").upper()
        self._text(right, top - 66, f"Status: {status_label}", "Helvetica-Bold", 10, status_color, align="right")

        self.y = min(y, top - 76) - 10
        self._rule(self.y)
        self.y -= 20

    def _parties(self, data: InvoiceData):
        top = self.y
        self._text(MARGIN, top, "Bill To:", "Helvetica-Bold", 11)
        y = top - 15
        for line in (data.customer_name, data.customer_email, data.customer_phone, data.customer_address):
            if line:
                self._text(MARGIN, y, line, size=10)
                y -= 13

        col = MARGIN + CONTENT_W / 2 + 20
        self._text(col, top, "Payment Information:", "Helvetica-Bold", 11)
        self._text(col, top - 15, f"Method: {payment_method_label(data.payment_method)}", size=10)
        self._text(col, top - 28, f"Currency: {data.currency}", size=10)

        self.y = min(y, top - 41) - 15

    def _items_table(self, data: InvoiceData):
        cols = {
            "desc": MARGIN + 6,
            "qty": MARGIN + 290,
            "price": MARGIN + 360,
            "discount": MARGIN + 425,
            "total": W - MARGIN - 6,
        }

        def header_row():
            self.c.setFillColor(DARK)
            self.c.rect(MARGIN, self.y - 6, CONTENT_W, 20, stroke=0, fill=1)
            white = HexColor('#ffffff')
            self._text(cols["desc"], self.y, "Description", "Helvetica-Bold", 9, white)
            self._text(cols["qty"], self.y, "Qty", "Helvetica-Bold", 9, white, align="right")
            self._text(cols["price"], self.y, "Unit Price", "Helvetica-Bold", 9, white, align="right")
            self._text(cols["discount"], self.y, "Discount", "Helvetica-Bold", 9, white, align="right")
            self._text(cols["total"], self.y, "Total", "Helvetica-Bold", 9, white, align="right")
            self.y -= 22

        self._ensure_space(60)
        header_row()

        for index, line in enumerate(data.items):
            row_height = 26 if line.description else 18
            if self.y - row_height < MARGIN + 30:
                self._new_page()
                header_row()
            if index % 2:
                self.c.setFillColor(PANEL)
                self.c.rect(MARGIN, self.y - row_height + 12, CONTENT_W, row_height, stroke=0, fill=1)

            label = item_type_label(line)
            name = f"{line.name} {label}".strip()
            self._text(cols["desc"], self.y, name[:60], size=9)
            if line.description:
                self._text(cols["desc"], self.y - 10, line.description[:70], size=7, color=MUTED)
            self._text(cols["qty"], self.y, f"{line.quantity.normalize():f}", size=9, align="right")
            self._text(cols["price"], self.y, format_currency(line.unit_price, data.currency), size=9, align="right")
            discount = format_currency(line.discount_amount, data.currency) if line.discount_amount else "-"
            self._text(cols["discount"], self.y, discount, size=9, align="right")
            self._text(cols["total"], self.y, format_currency(line.total_price, data.currency), size=9, align="right")
            self.y -= row_height

        self._rule(self.y + 8)
        self.y -= 10

    def _totals(self, data: InvoiceData):
        self._ensure_space(90)
        label_x = W - MARGIN - 150
        value_x = W - MARGIN - 6

        rows = [("Subtotal:", data.subtotal)]
        if data.member_discounts > 0:
            rows.append(("Member Discounts:", -data.member_discounts))
        if data.additional_discount > 0:
            rows.append(("Additional Discount:", -data.additional_discount))
        for label, amount in rows:
            self._text(label_x, self.y, label, size=10, color=MUTED)
            self._text(value_x, self.y, format_currency(amount, data.currency), size=10, align="right")
            self.y -= 15

        self.c.setStrokeColor(DARK)
        self.c.line(label_x, self.y + 8, value_x, self.y + 8)
        self.y -= 6
        self._text(label_x, self.y, "Total:", "Helvetica-Bold", 12)
        self._text(value_x, self.y, format_currency(data.total_amount, data.currency), "Helvetica-Bold", 12, align="right")
        self.y -= 30

    def _payment_received(self, data: InvoiceData):
        self._ensure_space(50)
        box_h = 40
        self.c.setFillColor(SUCCESS_BG)
        self.c.setStrokeColor(HexColor(STATUS_COLORS["paid"]))
        self.c.roundRect(MARGIN, self.y - box_h + 12, CONTENT_W, box_h, 4, stroke=1, fill=1)
        self._text(MARGIN + 12, self.y - 2, "Payment Received", "Helvetica-Bold", 12, SUCCESS_FG)
        self._text(
            MARGIN + 12, self.y - 18,
            f"Amount Paid: {format_currency(data.paid_amount, data.currency)} via {payment_method_label(data.payment_method)}",
            size=9, color=SUCCESS_FG)
        self.y -= box_h + 10

    def _paynow_qr(self, x: float, y: float, size: float = 70):
        widget = QrCodeWidget(settings.PAYNOW_UEN)
        x1, y1, x2, y2 = widget.getBounds()
        drawing = Drawing(size, size, transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0])
        drawing.add(widget)
        renderPDF.draw(drawing, self.c, x, y)

    def _payment_required(self, data: InvoiceData):
        self._ensure_space(70)
        box_h = 44
        self.c.setFillColor(WARNING_BG)
        self.c.setStrokeColor(HexColor(STATUS_COLORS["pending"]))
        self.c.roundRect(MARGIN, self.y - box_h + 12, CONTENT_W, box_h, 4, stroke=1, fill=1)
        self._text(MARGIN + 12, self.y - 2, "Payment Required", "Helvetica-Bold", 12, WARNING_FG)
        self._text(
            MARGIN + 12, self.y - 20,
            f"Outstanding Amount: {format_currency(data.outstanding_amount, data.currency)}",
            "Helvetica-Bold", 10, WARNING_FG)
        self.y -= box_h + 12

        if settings.PAYNOW_UEN:
            self._ensure_space(110)
            self._text(MARGIN, self.y, "Option 1: PayNow", "Helvetica-Bold", 11)
            qr_top = self.y - 12
            self._paynow_qr(MARGIN, qr_top - 70)
            self._text(MARGIN + 35, qr_top - 80, "Scan to Pay", size=7, color=MUTED, align="center")
            details_x = MARGIN + 90
            self._text(details_x, qr_top - 10, "PayNow to our UEN:", size=9, color=MUTED)
            self._text(details_x, qr_top - 24, settings.PAYNOW_UEN, "Helvetica-Bold", 11)
            self._text(details_x, qr_top - 40, f"Reference: {data.invoice_number}", size=9)
            self.y = qr_top - 95

        if settings.BANK_ACCOUNT_NUMBER:
            self._ensure_space(90)
            self._text(MARGIN, self.y, "Option 2: Bank Transfer", "Helvetica-Bold", 11)
            self.y -= 16
            rows = [
                ("Bank:", settings.BANK_NAME),
                ("Account Name:", settings.BANK_ACCOUNT_NAME),
                ("Account Number:", settings.BANK_ACCOUNT_NUMBER),
                ("Bank Code:", settings.BANK_CODE),
                ("SWIFT:", settings.BANK_SWIFT),
                ("Reference:", data.invoice_number),
            ]
            for label, value in rows:
                if not value:
                    continue
                self._text(MARGIN, self.y, label, size=9, color=MUTED)
                self._text(MARGIN + 100, self.y, value, size=9)
                self.y -= 12
            self.y -= 8

        self._ensure_space(45)
        self.c.setStrokeColor(DANGER)
        self.c.setFillColor(HexColor('#f8d7da'))
        self.c.roundRect(MARGIN, self.y - 22, CONTENT_W, 34, 4, stroke=1, fill=1)
        self._text(MARGIN + 12, self.y - 2, "NO REFUND POLICY", "Helvetica-Bold", 10, DANGER)
        self._text(
            MARGIN + 12, self.y - 15,
            "All sales are final. No refunds will be provided once payment is processed.",
            size=8, color=DANGER)
        self.y -= 45

    def _footer(self, data: InvoiceData):
        if data.notes:
            self._ensure_space(40)
            self._text(MARGIN, self.y, "Notes:", "Helvetica-Bold", 10)
            self.y -= 13
            for line in data.notes.splitlines()[:6]:
                self._text(MARGIN, self.y, line[:100], size=9, color=MUTED)
                self.y -= 12
            self.y -= 6
        if data.terms:
            self._ensure_space(30)
            self._text(MARGIN, self.y, "Terms:", "Helvetica-Bold", 10)
            self.y -= 13
            self._text(MARGIN, self.y, data.terms[:110], size=9, color=MUTED)
            self.y -= 18

        self._text(W / 2, MARGIN, "Thank you for your business!", "Helvetica-Oblique", 10, MUTED, align="center")

    def generate(self, data: InvoiceData, output_path: str) -> str:
        """Render `data` to `output_path` and return the path"""
        self.c = canvas.Canvas(output_path, pagesize=A4)
        self.c.setTitle(f"Invoice {data.invoice_number}")
        self.c.setAuthor(settings.COMPANY_NAME)
        self.page_num = 0
        self._new_page()

        self._header(data)
        self._parties(data)
        self._items_table(data)
        self._totals(data)
        if data.payment_status == "paid" and data.paid_amount:
            self._payment_received(data)
        else:
            self._payment_required(data)
        self._footer(data)

        self.c.save()
        logger.info(f"Invoice {data.invoice_number} rendered to {output_path} ({self.page_num} page(s))")
        return output_path
