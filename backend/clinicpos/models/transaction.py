"""
Sales transactions and their line items.

A transaction is either a DRAFT (work in progress, no stock movement) or
COMPLETED. Invoice generation runs after the record is saved and reports
its progress through the invoice_* columns.
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text, DECIMAL, UniqueConstraint
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import relationship

from clinicpos.db.base import Base

PAYMENT_METHOD_LABELS = {
    "cash": "CASH",
    "card": "Card",
    "bank_transfer": "Bank Transfer",
    "offset_from_credit": "Offset from Credit",
    "paynow": "PayNow",
    "nets": "NETS",
    "web_store": "Web Store",
    "misc": "Miscellaneous",
}


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        # One autosaved draft per client draft id and user
        UniqueConstraint("draft_id", "created_by", name="uq_transaction_draft_owner"),
    )

    id = Column(Integer, primary_key=True, index=True)
    transaction_number = Column(String(30), nullable=False, unique=True, index=True, comment="TXN-YYYYMMDD-NNNN")
    # DRAFT / COMPLETED
    type = Column(String(10), nullable=False, default="COMPLETED", index=True)
    # pending / completed / cancelled / refunded / partially_refunded / draft
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Customer snapshot
    customer_id = Column(Integer, ForeignKey("patients.id"), index=True)
    customer_name = Column(String(200), nullable=False, index=True)
    customer_email = Column(String(120))
    customer_phone = Column(String(30))
    customer_address = Column(String(255))

    # Totals
    subtotal = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="Bill level discount")
    total_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="SGD")

    # Payment
    payment_method = Column(String(30), nullable=False, default="cash")
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    payment_reference = Column(String(100))
    paid_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    change_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))

    transaction_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    due_date = Column(DateTime)
    paid_date = Column(DateTime)

    notes = Column(Text)
    internal_notes = Column(Text)
    terms = Column(Text)

    # Invoice
    invoice_generated = Column(Boolean, nullable=False, default=False)
    # none / pending / generating / completed / failed
    invoice_status = Column(String(20), nullable=False, default="none")
    invoice_error = Column(Text)
    invoice_path = Column(String(500))
    invoice_number = Column(String(30))
    invoice_email_sent = Column(Boolean, nullable=False, default=False)
    invoice_email_sent_at = Column(DateTime)
    invoice_email_recipient = Column(String(120))

    # Drafts
    draft_id = Column(String(64), index=True)

    # Refund tracking (none / partial / full)
    refund_status = Column(String(10), nullable=False, default="none")
    total_refunded = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    refund_count = Column(Integer, nullable=False, default=0)
    last_refund_date = Column(DateTime)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    last_modified_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    items = relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
        lazy="selectin")

    def __repr__(self):
        return f"<Transaction {self.transaction_number} {self.status} {self.total_amount}>"

    @property
    def is_draft(self) -> bool:
        return self.type == "DRAFT" or self.status == "draft"

    @property
    def invoice_filename(self):
        """Last path segment of invoice_path"""
        if not self.invoice_path:
            return None
        return self.invoice_path.replace("\\", "/").rsplit("/", 1)[-1]

    @property
    def refundable_amount(self) -> Decimal:
        return max(Decimal("0"), (self.total_amount or Decimal("0")) - (self.total_refunded or Decimal("0")))

    @property
    def payment_method_display(self) -> str:
        return PAYMENT_METHOD_LABELS.get(self.payment_method, self.payment_method)

    @property
    def status_display(self) -> str:
        status_map = {
            "pending": "Pending",
            "completed": "Completed",
            "cancelled": "Cancelled",
            "refunded": "Refunded",
            "partially_refunded": "Partially Refunded",
            "draft": "Draft",
        }
        return status_map.get(self.status, self.status)


class TransactionItem(Base):
    __tablename__ = "transaction_items"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)

    product_id = Column(Integer, ForeignKey("products.id"), index=True, comment="Empty for services and misc items")
    # product / fixed_blend / custom_blend / bundle / miscellaneous / consultation / service
    item_type = Column(String(20), nullable=False, default="product")
    bundle_id = Column(Integer, ForeignKey("bundles.id"))
    blend_template_id = Column(Integer, ForeignKey("blend_templates.id"))

    name = Column(String(200), nullable=False)
    description = Column(String(500))
    brand = Column(String(100))
    sku = Column(String(50))

    quantity = Column(DECIMAL(12, 3), nullable=False, default=Decimal("1"))
    unit_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    cost_price = Column(DECIMAL(12, 2))
    discount_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    total_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))

    is_service = Column(Boolean, nullable=False, default=False)
    # quantity / volume
    sale_type = Column(String(10), nullable=False, default="quantity")
    unit_name = Column(String(20))
    base_unit = Column(String(20))
    converted_quantity = Column(DECIMAL(12, 3))
    custom_blend_data = Column(JSON)

    transaction = relationship("Transaction", back_populates="items")

    def __repr__(self):
        return f"<TransactionItem {self.name} x {self.quantity}>"

    @property
    def gross_amount(self) -> Decimal:
        return (self.unit_price or Decimal("0")) * (self.quantity or Decimal("0"))
