"""Transaction, draft and invoice schemas"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

ITEM_TYPE_PATTERN = "^(product|fixed_blend|custom_blend|bundle|miscellaneous|consultation|service)$"
PAYMENT_METHOD_PATTERN = "^(cash|card|bank_transfer|offset_from_credit|paynow|nets|web_store|misc)$"
PAYMENT_STATUS_PATTERN = "^(pending|paid|partial|overdue|failed)$"
STATUS_PATTERN = "^(pending|completed|cancelled|refunded|partially_refunded|draft)$"


class TransactionItemIn(BaseModel):
    product_id: Optional[int] = None
    item_type: str = Field(default="product", pattern=ITEM_TYPE_PATTERN)
    bundle_id: Optional[int] = None
    blend_template_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    quantity: float = Field(default=1, gt=0)
    unit_price: float = Field(default=0, ge=0)
    cost_price: Optional[float] = Field(None, ge=0)
    discount_amount: float = Field(default=0, ge=0)
    is_service: bool = False
    sale_type: str = Field(default="quantity", pattern="^(quantity|volume)$")
    unit_name: Optional[str] = None
    base_unit: Optional[str] = None
    converted_quantity: Optional[float] = None
    custom_blend_data: Optional[Dict[str, Any]] = None


class TransactionItemResponse(TransactionItemIn):
    id: int
    total_price: float

    class Config:
        from_attributes = True


class TransactionCreate(BaseModel):
    """customer_name and items are checked by the handler so both give a 400"""
    transaction_number: Optional[str] = None
    type: str = Field(default="COMPLETED", pattern="^(DRAFT|COMPLETED)$")
    status: str = Field(default="pending", pattern=STATUS_PATTERN)
    customer_id: Optional[int] = None
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    items: Optional[List[TransactionItemIn]] = None
    discount_amount: float = Field(default=0, ge=0, description="Bill level discount")
    currency: str = Field(default="SGD", min_length=3, max_length=3)
    payment_method: str = Field(default="cash", pattern=PAYMENT_METHOD_PATTERN)
    payment_status: str = Field(default="pending", pattern=PAYMENT_STATUS_PATTERN)
    payment_reference: Optional[str] = None
    paid_amount: float = Field(default=0, ge=0)
    change_amount: float = Field(default=0, ge=0)
    transaction_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    terms: Optional[str] = None
    draft_id: Optional[str] = Field(None, max_length=64)


class TransactionUpdate(BaseModel):
    type: Optional[str] = Field(None, pattern="^(DRAFT|COMPLETED)$")
    status: Optional[str] = Field(None, pattern=STATUS_PATTERN)
    customer_id: Optional[int] = None
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    items: Optional[List[TransactionItemIn]] = Field(None, min_length=1)
    discount_amount: Optional[float] = Field(None, ge=0)
    payment_method: Optional[str] = Field(None, pattern=PAYMENT_METHOD_PATTERN)
    payment_status: Optional[str] = Field(None, pattern=PAYMENT_STATUS_PATTERN)
    payment_reference: Optional[str] = None
    paid_amount: Optional[float] = Field(None, ge=0)
    change_amount: Optional[float] = Field(None, ge=0)
    transaction_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    terms: Optional[str] = None


class TransactionResponse(BaseModel):
    id: int
    transaction_number: str
    type: str
    status: str
    status_display: str
    customer_id: Optional[int] = None
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    items: List[TransactionItemResponse] = []
    subtotal: float
    discount_amount: float
    total_amount: float
    currency: str
    payment_method: str
    payment_method_display: str
    payment_status: str
    payment_reference: Optional[str] = None
    paid_amount: float
    change_amount: float
    transaction_date: datetime
    due_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    terms: Optional[str] = None
    invoice_generated: bool
    invoice_status: str
    invoice_error: Optional[str] = None
    invoice_path: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_filename: Optional[str] = None
    invoice_email_sent: bool
    invoice_email_sent_at: Optional[datetime] = None
    invoice_email_recipient: Optional[str] = None
    draft_id: Optional[str] = None
    refund_status: str
    total_refunded: float
    refund_count: int
    last_refund_date: Optional[datetime] = None
    refundable_amount: float
    created_by: int
    last_modified_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransactionCreateResponse(TransactionResponse):
    invoice_generating: bool = False
    inventory_errors: List[str] = []
    inventory_warnings: List[str] = []


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int
    has_next_page: bool
    has_previous_page: bool


class TransactionListResponse(BaseModel):
    data: List[TransactionResponse]
    total: int
    page: int
    limit: int
    pagination: Pagination


class TransactionCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DraftFormData(BaseModel):
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[TransactionItemIn] = []
    discount: float = Field(default=0, ge=0)
    payment_method: str = Field(default="cash", pattern=PAYMENT_METHOD_PATTERN)
    payment_status: str = Field(default="pending", pattern=PAYMENT_STATUS_PATTERN)
    status: str = Field(default="draft", pattern=STATUS_PATTERN)


class DraftAutosave(BaseModel):
    draft_id: str = Field(..., min_length=1, max_length=64)
    draft_name: Optional[str] = None
    form_data: DraftFormData


class DraftSaveResponse(BaseModel):
    success: bool = True
    draft_id: str
    transaction_id: int
    message: str = "Draft saved successfully"


class InvoiceGenerateResponse(BaseModel):
    success: bool = True
    message: str
    invoice_number: str
    invoice_path: str
    download_url: str
    email_sent: bool = False
    email_error: Optional[str] = None


class InvoiceEmailResponse(BaseModel):
    success: bool = True
    email_sent: bool
    recipient: str
    sent_at: Optional[datetime] = None
