"""
Product model - sellable inventory items.

current_stock is kept in the product's own unit (unit_name). Sales may
drive it below zero; that is recorded rather than refused.
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, DECIMAL
from sqlalchemy.orm import relationship

from clinicpos.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    sku = Column(String(50), nullable=False, unique=True, index=True, comment="PRD-000001")
    description = Column(Text)
    category = Column(String(100), index=True)
    brand = Column(String(100))
    unit_name = Column(String(20), nullable=False, default="unit", comment="Stock unit, e.g. ml, g, unit")

    current_stock = Column(DECIMAL(12, 3), nullable=False, default=Decimal("0"))
    reorder_point = Column(DECIMAL(12, 3), nullable=False, default=Decimal("10"))

    # Restock history, updated on every restock
    restock_count = Column(Integer, nullable=False, default=0)
    average_restock_quantity = Column(DECIMAL(12, 3), nullable=False, default=Decimal("0"))
    last_restock_date = Column(DateTime)
    restock_frequency = Column(Integer, nullable=False, default=30, comment="Expected days between restocks")

    cost_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    selling_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))

    # active / inactive / discontinued / pending_approval
    status = Column(String(20), nullable=False, default="active", index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    expiry_date = Column(DateTime)

    supplier_id = Column(Integer, ForeignKey("suppliers.id"), index=True)

    # Discount flags
    discountable_for_all = Column(Boolean, nullable=False, default=True)
    discountable_for_members = Column(Boolean, nullable=False, default=True)
    discountable_in_blends = Column(Boolean, nullable=False, default=False)

    # Soft delete
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime)
    deleted_by = Column(Integer, ForeignKey("users.id"))
    delete_reason = Column(String(200))

    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier = relationship("Supplier", lazy="joined")

    def __repr__(self):
        return f"<Product {self.sku} {self.name} stock={self.current_stock}>"

    @property
    def supplier_name(self) -> str:
        return self.supplier.name if self.supplier else ""

    @property
    def is_low_stock(self) -> bool:
        return (self.current_stock or Decimal("0")) <= (self.reorder_point or Decimal("0"))

    @property
    def is_sellable(self) -> bool:
        return bool(self.is_active) and not self.is_deleted and self.status == "active"

    @property
    def status_display(self) -> str:
        status_map = {
            "active": "Active",
            "inactive": "Inactive",
            "discontinued": "Discontinued",
            "pending_approval": "Pending Approval",
        }
        return status_map.get(self.status, self.status)
