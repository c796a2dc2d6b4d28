"""
Transaction API package

- core: numbering, items and totals, discount checks, response building
- drafts: autosaved drafts
- crud: create, read, update, delete, cancel, duplicate
- invoices: invoice generation and email
"""

from fastapi import APIRouter
from .drafts import router as drafts_router
from .crud import router as crud_router
from .invoices import router as invoices_router

router = APIRouter()

# Drafts first so /drafts is not matched as /{transaction_id}
router.include_router(drafts_router)
router.include_router(crud_router)
router.include_router(invoices_router)
