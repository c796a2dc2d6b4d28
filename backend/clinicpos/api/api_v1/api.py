"""API route aggregation"""
from fastapi import APIRouter

from clinicpos.api.api_v1.endpoints import (
    auth, users, patients, suppliers, products, units,
    blend_templates, bundles, invoices, refunds, inventory, restock, reports, audit_logs, system
)
from clinicpos.api.api_v1.endpoints.transactions import router as transactions_router

api_router = APIRouter()

# Accounts
api_router.include_router(auth.router, prefix="/auth", tags=["Auth"])
api_router.include_router(users.router, prefix="/users", tags=["Users"])

# Catalog
api_router.include_router(patients.router, prefix="/patients", tags=["Patients"])
api_router.include_router(suppliers.router, prefix="/suppliers", tags=["Suppliers"])
api_router.include_router(products.router, prefix="/products", tags=["Products"])
api_router.include_router(units.router, prefix="/units", tags=["Units"])
api_router.include_router(blend_templates.router, prefix="/blend-templates", tags=["Blend templates"])
api_router.include_router(bundles.router, prefix="/bundles", tags=["Bundles"])

# Sales
api_router.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["Invoices"])
api_router.include_router(refunds.router, prefix="/refunds", tags=["Refunds"])
api_router.include_router(restock.router, prefix="/inventory/restock", tags=["Restock"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["Inventory"])

# Reports
api_router.include_router(reports.router, prefix="/reports", tags=["Reports"])

# System
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["Audit logs"])
api_router.include_router(system.router, prefix="/system", tags=["System"])
