"""Inventory movement schemas"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel


class InventoryMovementResponse(BaseModel):
    id: int
    product_id: int
    product_name: Optional[str] = None
    movement_type: str
    type_display: str
    quantity: float
    unit_name: Optional[str] = None
    base_unit: Optional[str] = None
    converted_quantity: float
    stock_before: Optional[float] = None
    stock_after: Optional[float] = None
    reference: str
    reference_id: Optional[int] = None
    reference_type: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True


class InventoryMovementListResponse(BaseModel):
    data: List[InventoryMovementResponse]
    total: int
    page: int
    limit: int
