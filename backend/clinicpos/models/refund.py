"""
Refunds against a transaction.

Status flow:
    pending -> approved -> processing -> completed
    pending -> rejected
    any but completed -> cancelled
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, DECIMAL
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import relationship

from clinicpos.db.base import Base

REFUND_METHODS = ["cash", "card", "bank_transfer", "store_credit", "offset_to_credit"]
REFUND_REASONS = [
    "defective_product", "wrong_item", "customer_request",
    "billing_error", "duplicate_charge", "other",
]
# Refunds that still count against the transaction
LIVE_REFUND_STATUSES = ["pending", "approved", "processing", "completed"]


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    transaction_number = Column(String(30), nullable=False, index=True)

    customer_id = Column(Integer, ForeignKey("patients.id"), index=True)
    customer_name = Column(String(200))
    customer_email = Column(String(120))
    customer_phone = Column(String(30))

    # [{product_id, product_name, original_quantity, refund_quantity, unit_price, refund_amount, reason}]
    items = Column(JSON, nullable=False, default=list)

    original_amount = Column(DECIMAL(12, 2), nullable=False)
    refund_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    refund_type = Column(String(10), nullable=False, comment="full/partial")
    refund_method = Column(String(30), nullable=False)
    refund_reason = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    notes = Column(Text)

    request_date = Column(DateTime, default=datetime.utcnow, index=True)
    approved_by = Column(Integer, ForeignKey("users.id"))
    approved_at = Column(DateTime)
    approval_notes = Column(Text)
    rejected_by = Column(Integer, ForeignKey("users.id"))
    rejected_at = Column(DateTime)
    rejection_reason = Column(Text)
    processed_by = Column(Integer, ForeignKey("users.id"))
    processed_at = Column(DateTime)
    completed_by = Column(Integer, ForeignKey("users.id"))
    completed_at = Column(DateTime)
    # {method, reference, amount, processed_at}
    payment_details = Column(JSON)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    last_modified_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transaction = relationship("Transaction", lazy="joined")

    def __repr__(self):
        return f"<Refund {self.id} {self.transaction_number} {self.status} {self.refund_amount}>"

    @property
    def product_ids(self):
        return [item.get("product_id") for item in (self.items or [])]

    @property
    def status_display(self) -> str:
        status_map = {
            "pending": "Pending",
            "approved": "Approved",
            "rejected": "Rejected",
            "processing": "Processing",
            "completed": "Completed",
            "cancelled": "Cancelled",
        }
        return status_map.get(self.status, self.status)
