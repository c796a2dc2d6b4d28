"""
Inventory movements - one row per stock change.

quantity is always positive; the direction comes from movement_type
(see STOCK_DIRECTION). stock_before/stock_after trace the product's
current_stock around the change.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, DECIMAL
from sqlalchemy.orm import relationship

from clinicpos.db.base import Base

MOVEMENT_TYPES = [
    "sale", "return", "adjustment", "transfer", "fixed_blend",
    "bundle_sale", "bundle_blend_ingredient", "blend_ingredient", "custom_blend",
]

# Movements written when a transaction is sold and undone on cancel
REVERSIBLE_MOVEMENT_TYPES = [
    "sale", "fixed_blend", "bundle_sale", "bundle_blend_ingredient", "blend_ingredient", "custom_blend",
]

# -1 takes stock out, +1 puts it back; adjustment/transfer carry their own sign
STOCK_DIRECTION = {t: -1 for t in REVERSIBLE_MOVEMENT_TYPES}
STOCK_DIRECTION["return"] = 1


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String(200))
    movement_type = Column(String(30), nullable=False, index=True)

    quantity = Column(DECIMAL(12, 3), nullable=False, comment="Quantity in unit_name")
    unit_name = Column(String(20))
    base_unit = Column(String(20))
    converted_quantity = Column(DECIMAL(12, 3), nullable=False, comment="Quantity in the product's stock unit")
    stock_before = Column(DECIMAL(12, 3))
    stock_after = Column(DECIMAL(12, 3))

    # Transaction number (or CANCEL-<number>, REFUND-<id>, ...)
    reference = Column(String(60), nullable=False, index=True)
    reference_id = Column(Integer, index=True)
    reference_type = Column(String(30))
    reason = Column(String(200))
    notes = Column(Text)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    product = relationship("Product", lazy="joined")

    def __repr__(self):
        return f"<InventoryMovement {self.movement_type} {self.product_id} {self.converted_quantity}>"

    @property
    def type_display(self) -> str:
        type_map = {
            "sale": "Sale",
            "return": "Return",
            "adjustment": "Adjustment",
            "transfer": "Transfer",
            "fixed_blend": "Fixed Blend",
            "bundle_sale": "Bundle Sale",
            "bundle_blend_ingredient": "Bundle Blend Ingredient",
            "blend_ingredient": "Blend Ingredient",
            "custom_blend": "Custom Blend",
        }
        return type_map.get(self.movement_type, self.movement_type)
