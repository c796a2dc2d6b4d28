"""
Bundles - a fixed set of products (or fixed blends) sold together at a
bundle price.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, DECIMAL
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import relationship

from clinicpos.db.base import Base


class Bundle(Base):
    __tablename__ = "bundles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text)
    sku = Column(String(30), nullable=False, unique=True, index=True, comment="BDL-000001")
    category = Column(String(100))

    bundle_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="SGD")

    status = Column(String(20), nullable=False, default="active", comment="active/inactive/discontinued")
    is_active = Column(Boolean, nullable=False, default=True)
    is_promoted = Column(Boolean, nullable=False, default=False)
    promotion_text = Column(String(200))
    valid_from = Column(DateTime)
    valid_until = Column(DateTime)

    available_quantity = Column(Integer, nullable=False, default=0)
    max_quantity = Column(Integer, nullable=False, default=1000)
    reorder_point = Column(Integer, nullable=False, default=5)
    tags = Column(JSON, default=list)

    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "BundleItem",
        back_populates="bundle",
        cascade="all, delete-orphan",
        order_by="BundleItem.id",
        lazy="selectin")

    def __repr__(self):
        return f"<Bundle {self.sku} {self.name}>"

    @property
    def individual_total_price(self) -> Decimal:
        return sum(
            ((i.individual_price or Decimal("0")) * i.quantity for i in self.items),
            Decimal("0"))

    @property
    def savings(self) -> Decimal:
        return max(Decimal("0"), self.individual_total_price - (self.bundle_price or Decimal("0")))

    @property
    def savings_percentage(self) -> int:
        individual = self.individual_total_price
        if not individual:
            return 0
        return int((self.savings / individual * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @property
    def is_low_availability(self) -> bool:
        return (self.available_quantity or 0) <= (self.reorder_point or 0)


class BundleItem(Base):
    __tablename__ = "bundle_items"

    id = Column(Integer, primary_key=True, index=True)
    bundle_id = Column(Integer, ForeignKey("bundles.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    # product / fixed_blend
    product_type = Column(String(20), nullable=False, default="product")
    blend_template_id = Column(Integer, ForeignKey("blend_templates.id"))
    unit_name = Column(String(20))
    individual_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))

    bundle = relationship("Bundle", back_populates="items")

    def __repr__(self):
        return f"<BundleItem {self.product_id} x {self.quantity}>"

    @property
    def total_price(self) -> Decimal:
        return (self.individual_price or Decimal("0")) * (self.quantity or 0)
