"""Bundle schemas"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field


class BundleItemIn(BaseModel):
    product_id: int
    name: Optional[str] = Field(None, max_length=200, description="Defaults to the product name")
    quantity: int = Field(default=1, ge=1)
    product_type: str = Field(default="product", pattern="^(product|fixed_blend)$")
    blend_template_id: Optional[int] = None
    unit_name: Optional[str] = None
    individual_price: Optional[float] = Field(None, ge=0, description="Defaults to the product selling price")


class BundleItemResponse(BaseModel):
    id: int
    product_id: int
    name: str
    quantity: int
    product_type: str
    blend_template_id: Optional[int] = None
    unit_name: Optional[str] = None
    individual_price: float
    total_price: float

    class Config:
        from_attributes = True


class BundleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    bundle_price: float = Field(..., ge=0)
    currency: str = Field(default="SGD", min_length=3, max_length=3)
    status: str = Field(default="active", pattern="^(active|inactive|discontinued)$")
    is_active: bool = True
    is_promoted: bool = False
    promotion_text: Optional[str] = Field(None, max_length=200)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_quantity: int = Field(default=1000, ge=0)
    reorder_point: int = Field(default=5, ge=0)
    tags: List[str] = []


class BundleCreate(BundleBase):
    sku: Optional[str] = Field(None, max_length=30, description="Generated when empty")
    items: List[BundleItemIn] = Field(..., min_length=1)


class BundleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    bundle_price: Optional[float] = Field(None, ge=0)
    status: Optional[str] = Field(None, pattern="^(active|inactive|discontinued)$")
    is_active: Optional[bool] = None
    is_promoted: Optional[bool] = None
    promotion_text: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_quantity: Optional[int] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    items: Optional[List[BundleItemIn]] = Field(None, min_length=1, description="Replaces all items")


class BundleResponse(BundleBase):
    id: int
    sku: str
    items: List[BundleItemResponse]
    tags: Optional[List[str]] = None
    available_quantity: int
    individual_total_price: float
    savings: float
    savings_percentage: int
    is_low_availability: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BundleListResponse(BaseModel):
    data: List[BundleResponse]
    total: int
    page: int
    limit: int


class BundleAvailability(BaseModel):
    available: bool
    issues: List[str] = []
    available_quantity: Optional[int] = None
