"""
Fixed blend templates.

A template is a recipe: a list of ingredient products with quantities for
one batch. Selling a fixed blend deducts the ingredients, not the template.
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, DECIMAL
from sqlalchemy.orm import relationship

from clinicpos.db.base import Base


class BlendTemplate(Base):
    __tablename__ = "blend_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text)
    category = Column(String(100), index=True)
    batch_size = Column(DECIMAL(12, 3), nullable=False, default=Decimal("1"))
    unit_name = Column(String(20), nullable=False, default="ml")
    selling_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    is_active = Column(Boolean, nullable=False, default=True)

    usage_count = Column(Integer, nullable=False, default=0)
    last_used = Column(DateTime)

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime)

    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ingredients = relationship(
        "BlendIngredient",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="BlendIngredient.id",
        lazy="selectin")

    def __repr__(self):
        return f"<BlendTemplate {self.id} {self.name}>"

    @property
    def total_cost(self) -> Decimal:
        return sum(
            ((i.quantity or Decimal("0")) * (i.cost_per_unit or Decimal("0")) for i in self.ingredients),
            Decimal("0"))

    @property
    def cost_per_unit(self) -> Decimal:
        batch = self.batch_size or Decimal("1")
        return self.total_cost / batch if batch else self.total_cost

    @property
    def profit(self) -> Decimal:
        return (self.selling_price or Decimal("0")) - self.total_cost

    @property
    def profit_margin(self) -> Decimal:
        """Percent of selling price; 0 when there is no price"""
        if not self.selling_price:
            return Decimal("0")
        return self.profit / self.selling_price * 100


class BlendIngredient(Base):
    __tablename__ = "blend_ingredients"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("blend_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False, comment="Product name snapshot")
    quantity = Column(DECIMAL(12, 3), nullable=False, comment="Quantity per batch")
    unit_name = Column(String(20), nullable=False)
    cost_per_unit = Column(DECIMAL(12, 4), nullable=False, default=Decimal("0"))

    template = relationship("BlendTemplate", back_populates="ingredients")

    def __repr__(self):
        return f"<BlendIngredient {self.product_id} x {self.quantity}{self.unit_name}>"
