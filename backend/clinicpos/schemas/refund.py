"""Refund schemas"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

REFUND_METHOD_PATTERN = "^(cash|card|bank_transfer|store_credit|offset_to_credit)$"
REFUND_REASON_PATTERN = "^(defective_product|wrong_item|customer_request|billing_error|duplicate_charge|other)$"


class RefundItemIn(BaseModel):
    product_id: int
    refund_quantity: float = Field(..., gt=0)
    reason: Optional[str] = None


class RefundCreate(BaseModel):
    transaction_id: int
    items: List[RefundItemIn] = Field(..., min_length=1)
    refund_method: str = Field(..., pattern=REFUND_METHOD_PATTERN)
    refund_reason: str = Field(..., pattern=REFUND_REASON_PATTERN)
    notes: Optional[str] = None


class RefundApprove(BaseModel):
    approval_notes: Optional[str] = None


class RefundReject(BaseModel):
    rejection_reason: str = Field(..., min_length=1)


class RefundCancel(BaseModel):
    reason: Optional[str] = None


class PaymentDetailsIn(BaseModel):
    method: Optional[str] = None
    reference: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)


class RefundComplete(BaseModel):
    payment_details: Optional[PaymentDetailsIn] = None


class RefundResponse(BaseModel):
    id: int
    transaction_id: int
    transaction_number: str
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[Dict[str, Any]]
    original_amount: float
    refund_amount: float
    refund_type: str
    refund_method: str
    refund_reason: str
    status: str
    status_display: str
    notes: Optional[str] = None
    request_date: Optional[datetime] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    payment_details: Optional[Dict[str, Any]] = None
    created_by: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RefundListResponse(BaseModel):
    data: List[RefundResponse]
    total: int
    page: int
    limit: int


class RefundableItem(BaseModel):
    product_id: int
    product_name: str
    max_refundable_quantity: float
    unit_price: float


class RefundEligibility(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    max_refundable_amount: float
    refundable_items: List[RefundableItem]
