"""Restock schemas"""

from typing import List, Optional

from pydantic import BaseModel, Field


class RestockCreate(BaseModel):
    product_id: int
    quantity: float = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=60)
    notes: Optional[str] = Field(None, max_length=500)


class BulkRestockOperation(BaseModel):
    product_id: int
    quantity: float
    reference: Optional[str] = Field(None, max_length=60)
    notes: Optional[str] = Field(None, max_length=500)


class BulkRestockCreate(BaseModel):
    operations: List[BulkRestockOperation] = Field(..., min_length=1, max_length=100)
    batch_reference: Optional[str] = Field(None, max_length=60)


class RestockResultResponse(BaseModel):
    product_id: int
    success: bool
    previous_stock: float = 0
    new_stock: float = 0
    quantity_added: float = 0
    movement_id: Optional[int] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class BulkRestockResponse(BaseModel):
    batch_id: str
    total_operations: int
    success_count: int
    failure_count: int
    results: List[RestockResultResponse]

    class Config:
        from_attributes = True


class RestockSuggestion(BaseModel):
    product_id: int
    name: str
    sku: str
    unit_name: str
    current_stock: float
    reorder_point: float
    suggested_quantity: float
    days_until_stockout: Optional[int] = None
    priority: str


class RestockSuggestionSummary(BaseModel):
    total: int
    high: int
    medium: int
    low: int


class RestockSuggestionResponse(BaseModel):
    items: List[RestockSuggestion]
    summary: RestockSuggestionSummary
