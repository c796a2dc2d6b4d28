"""Blend template schemas"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field


class BlendIngredientIn(BaseModel):
    product_id: int
    name: Optional[str] = Field(None, max_length=200, description="Defaults to the product name")
    quantity: float = Field(..., gt=0)
    unit_name: Optional[str] = Field(None, description="Defaults to the product unit")
    cost_per_unit: Optional[float] = Field(None, ge=0, description="Defaults to the product cost price")


class BlendIngredientResponse(BaseModel):
    id: int
    product_id: int
    name: str
    quantity: float
    unit_name: str
    cost_per_unit: float

    class Config:
        from_attributes = True


class BlendTemplateBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    batch_size: float = Field(default=1, gt=0)
    unit_name: str = Field(default="ml", max_length=20)
    selling_price: float = Field(default=0, ge=0)
    is_active: bool = True


class BlendTemplateCreate(BlendTemplateBase):
    ingredients: List[BlendIngredientIn] = Field(..., min_length=1)


class BlendTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    batch_size: Optional[float] = Field(None, gt=0)
    unit_name: Optional[str] = None
    selling_price: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None
    ingredients: Optional[List[BlendIngredientIn]] = Field(None, min_length=1, description="Replaces all ingredients")


class BlendTemplateResponse(BlendTemplateBase):
    id: int
    ingredients: List[BlendIngredientResponse]
    total_cost: float
    cost_per_unit: float
    profit: float
    profit_margin: float
    usage_count: int
    last_used: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BlendTemplateListResponse(BaseModel):
    data: List[BlendTemplateResponse]
    total: int
    page: int
    limit: int
