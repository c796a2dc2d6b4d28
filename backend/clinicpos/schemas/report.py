"""Report schemas"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class DailySales(BaseModel):
    date: str
    revenue: float = 0
    cost: float = 0
    profit: float = 0
    transactions: int = 0


class CategorySales(BaseModel):
    category: str
    revenue: float
    percentage: float


class ProductSales(BaseModel):
    name: str
    revenue: float
    quantity: float


class SalesTrendsSummary(BaseModel):
    total_revenue: float
    total_cost: float
    total_profit: float
    total_transactions: int
    average_order_value: float


class SalesTrendsResponse(BaseModel):
    start_date: str
    end_date: str
    daily: List[DailySales]
    categories: List[CategorySales]
    top_products: List[ProductSales]
    summary: SalesTrendsSummary


class ItemSalesItem(BaseModel):
    name: str
    item_type: str
    product_id: Optional[int] = None
    quantity_sold: float
    total_sales: float
    total_discount: float
    total_cost: Optional[float] = None
    average_list_price: float
    margin: float
    last_sale_date: Optional[datetime] = None


class ItemSalesResponse(BaseModel):
    items: List[ItemSalesItem]
    total: int


class CustomerProduct(BaseModel):
    name: str
    quantity: float
    revenue: float


class CustomerValueItem(BaseModel):
    customer_key: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_id: Optional[int] = None
    membership_tier: Optional[str] = None
    total_revenue: float
    total_orders: int
    average_order_value: float
    total_discount: float
    total_cost: float
    margin: float
    first_purchase: datetime
    last_purchase: datetime
    days_since_last_order: int
    purchase_frequency: float
    preferred_payment_method: Optional[str] = None
    top_products: List[CustomerProduct]


class CustomerValueResponse(BaseModel):
    items: List[CustomerValueItem]
    total: int


class InventoryCostItem(BaseModel):
    product_id: int
    name: str
    sku: str
    category: Optional[str] = None
    unit_name: str
    supplier_name: str = ""
    cost_price: float
    total_stock: float
    total_cost: float
    reorder_point: float
    stock_status: str


class CategoryCost(BaseModel):
    category: str
    total_cost: float
    product_count: int
    percentage: float


class InventoryCostSummary(BaseModel):
    total_products: int
    total_inventory_value: float
    average_cost_per_item: float
    low_stock_count: int
    out_of_stock_count: int
    category_breakdown: List[CategoryCost]


class InventoryCostResponse(BaseModel):
    items: List[InventoryCostItem]
    summary: InventoryCostSummary
