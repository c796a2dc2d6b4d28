from clinicpos.models.user import User
from clinicpos.models.patient import Patient
from clinicpos.models.supplier import Supplier
from clinicpos.models.product import Product
from clinicpos.models.blend_template import BlendTemplate, BlendIngredient
from clinicpos.models.bundle import Bundle, BundleItem
from clinicpos.models.transaction import Transaction, TransactionItem
from clinicpos.models.inventory_movement import InventoryMovement
from clinicpos.models.refund import Refund
from clinicpos.models.audit_log import AuditLog
from clinicpos.models.counter import Counter

__all__ = [
    "User",
    "Patient",
    "Supplier",
    "Product",
    "BlendTemplate",
    "BlendIngredient",
    "Bundle",
    "BundleItem",
    "Transaction",
    "TransactionItem",
    "InventoryMovement",
    "Refund",
    "AuditLog",
    "Counter",
]
