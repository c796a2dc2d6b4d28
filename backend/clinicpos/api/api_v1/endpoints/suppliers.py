"""Supplier API"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.deps import get_db, get_current_user, require_roles
from clinicpos.core.errors import ConflictError, NotFoundError
from clinicpos.models.product import Product
from clinicpos.models.supplier import Supplier
from clinicpos.models.user import User
from clinicpos.schemas.supplier import (
    SupplierCreate, SupplierUpdate, SupplierResponse, SupplierListResponse
)

router = APIRouter()


async def _ensure_unique_name(db: AsyncSession, name: str, exclude_id: int = None) -> None:
    query = select(Supplier.id).where(func.lower(Supplier.name) == name.strip().lower())
    if exclude_id:
        query = query.where(Supplier.id != exclude_id)
    if (await db.execute(query)).scalar() is not None:
        raise ConflictError("A supplier with this name already exists")


@router.get("/", response_model=SupplierListResponse)
async def list_suppliers(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    business_type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None)) -> Any:
    """List suppliers"""
    query = select(Supplier)

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            Supplier.name.ilike(pattern),
            Supplier.code.ilike(pattern),
            Supplier.contact_person.ilike(pattern),
            Supplier.email.ilike(pattern)
        ))
    if business_type:
        conditions.append(Supplier.business_type == business_type)
    if is_active is not None:
        conditions.append(Supplier.is_active == is_active)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Supplier.name).offset((page - 1) * limit).limit(limit)
    suppliers = (await db.execute(query)).scalars().all()

    return SupplierListResponse(
        data=[SupplierResponse.model_validate(s) for s in suppliers],
        total=total,
        page=page,
        limit=limit
    )


@router.post("/", response_model=SupplierResponse, status_code=201)
async def create_supplier(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    supplier_in: SupplierCreate) -> Any:
    """Create a supplier"""
    await _ensure_unique_name(db, supplier_in.name)

    supplier = Supplier(**supplier_in.model_dump())
    supplier.name = supplier.name.strip()
    db.add(supplier)
    await db.flush()

    await create_audit_log(
        db, current_user.id, "create", "supplier",
        resource_id=supplier.id,
        resource_name=supplier.name)
    await db.commit()
    await db.refresh(supplier)
    return SupplierResponse.model_validate(supplier)


@router.get("/{supplier_id}", response_model=SupplierResponse)
async def get_supplier(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    supplier_id: int) -> Any:
    """Supplier detail"""
    supplier = await db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier")
    return SupplierResponse.model_validate(supplier)


@router.put("/{supplier_id}", response_model=SupplierResponse)
async def update_supplier(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    supplier_id: int,
    supplier_in: SupplierUpdate) -> Any:
    """Update a supplier"""
    supplier = await db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier")

    update_data = supplier_in.model_dump(exclude_unset=True)
    if update_data.get("name"):
        await _ensure_unique_name(db, update_data["name"], exclude_id=supplier.id)

    for field, value in update_data.items():
        setattr(supplier, field, value)
    supplier.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "supplier",
        resource_id=supplier.id,
        resource_name=supplier.name,
        new_value=update_data)
    await db.commit()
    await db.refresh(supplier)
    return SupplierResponse.model_validate(supplier)


@router.delete("/{supplier_id}")
async def delete_supplier(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin")),
    supplier_id: int) -> Any:
    """Delete a supplier that no active product references"""
    supplier = await db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier")

    in_use = (await db.execute(
        select(func.count(Product.id)).where(and_(
            Product.supplier_id == supplier.id,
            Product.is_deleted == False,  # noqa: E712
            Product.is_active == True  # noqa: E712
        ))
    )).scalar() or 0
    if in_use:
        raise ConflictError(f"Supplier is used by {in_use} active product(s)")

    await create_audit_log(
        db, current_user.id, "delete", "supplier",
        resource_id=supplier.id,
        resource_name=supplier.name)
    # Inactive or deleted products keep no dangling reference
    await db.execute(update(Product).where(Product.supplier_id == supplier.id).values(supplier_id=None))
    await db.delete(supplier)
    await db.commit()
    return {"message": "Supplier deleted successfully"}
