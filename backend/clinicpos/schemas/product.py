"""Product and stock adjustment schemas"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

STATUS_PATTERN = "^(active|inactive|discontinued|pending_approval)$"


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    unit_name: str = Field(default="unit", max_length=20, description="Stock unit")
    reorder_point: float = Field(default=10, ge=0)
    cost_price: float = Field(default=0, ge=0)
    selling_price: float = Field(default=0, ge=0)
    status: str = Field(default="active", pattern=STATUS_PATTERN)
    is_active: bool = True
    expiry_date: Optional[datetime] = None
    supplier_id: Optional[int] = None
    discountable_for_all: bool = True
    discountable_for_members: bool = True
    discountable_in_blends: bool = False


class ProductCreate(ProductBase):
    sku: Optional[str] = Field(None, max_length=50, description="Generated when empty")
    current_stock: float = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    """current_stock is changed only through add-stock / adjust-stock"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    sku: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    unit_name: Optional[str] = None
    reorder_point: Optional[float] = Field(None, ge=0)
    cost_price: Optional[float] = Field(None, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    status: Optional[str] = Field(None, pattern=STATUS_PATTERN)
    is_active: Optional[bool] = None
    expiry_date: Optional[datetime] = None
    supplier_id: Optional[int] = None
    discountable_for_all: Optional[bool] = None
    discountable_for_members: Optional[bool] = None
    discountable_in_blends: Optional[bool] = None


class ProductResponse(ProductBase):
    id: int
    sku: str
    current_stock: float
    supplier_name: str = ""
    status_display: str
    is_low_stock: bool
    restock_count: int = 0
    average_restock_quantity: float = 0
    last_restock_date: Optional[datetime] = None
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    delete_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProductListResponse(BaseModel):
    data: List[ProductResponse]
    total: int
    page: int
    limit: int


class BulkDeleteRequest(BaseModel):
    product_ids: List[int] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=200)


class BulkDeleteResult(BaseModel):
    deleted: int
    not_found: List[int] = []


class StockAdd(BaseModel):
    quantity: float = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=200)


class StockAdjust(BaseModel):
    """quantity is signed; negative removes stock"""
    quantity: float
    reason: Optional[str] = Field(None, max_length=200)
