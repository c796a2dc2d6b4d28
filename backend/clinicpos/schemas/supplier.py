"""Supplier schemas"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

BUSINESS_TYPE_PATTERN = "^(manufacturer|distributor|wholesaler|retailer|service_provider)$"


class SupplierBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    code: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = Field(default="SG", min_length=2, max_length=2)
    business_type: Optional[str] = Field(None, pattern=BUSINESS_TYPE_PATTERN)
    tax_id: Optional[str] = None
    is_active: bool = True
    notes: Optional[str] = None


class SupplierCreate(SupplierBase):
    pass


class SupplierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    code: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    business_type: Optional[str] = Field(None, pattern=BUSINESS_TYPE_PATTERN)
    tax_id: Optional[str] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


class SupplierResponse(SupplierBase):
    id: int
    business_type_display: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SupplierListResponse(BaseModel):
    data: List[SupplierResponse]
    total: int
    page: int
    limit: int
