"""Product API"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.deps import get_db, get_current_user, require_roles
from clinicpos.core.errors import ConflictError, NotFoundError, ValidationError
from clinicpos.models.product import Product
from clinicpos.models.supplier import Supplier
from clinicpos.models.user import User
from clinicpos.schemas.product import (
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse,
    BulkDeleteRequest, BulkDeleteResult, StockAdd, StockAdjust
)
from clinicpos.services.inventory import adjust_stock
from clinicpos.services.transaction_utils import to_utc_naive
from clinicpos.services.unit_conversion import is_valid_unit, normalize_unit

router = APIRouter()


async def generate_product_sku(db: AsyncSession) -> str:
    """PRD-000001, PRD-000002, ..."""
    result = await db.execute(
        select(func.max(Product.sku)).where(Product.sku.like("PRD-%"))
    )
    max_sku = result.scalar()

    if max_sku:
        try:
            num = int(max_sku[4:]) + 1
        except ValueError:
            num = 1
    else:
        num = 1

    return f"PRD-{num:06d}"


async def _ensure_unique_sku(db: AsyncSession, sku: str, exclude_id: int = None) -> None:
    query = select(Product.id).where(Product.sku == sku)
    if exclude_id:
        query = query.where(Product.id != exclude_id)
    if (await db.execute(query)).scalar() is not None:
        raise ConflictError(f"SKU {sku} already exists")


async def _check_supplier(db: AsyncSession, supplier_id: Optional[int]) -> None:
    if supplier_id and not await db.get(Supplier, supplier_id):
        raise ValidationError(f"Supplier {supplier_id} does not exist")


def _check_unit(unit_name: Optional[str]) -> Optional[str]:
    """Known units are normalized; free-text units (bottle, capsule) are kept as entered"""
    if unit_name is None or not unit_name.strip():
        return None
    if is_valid_unit(unit_name):
        return normalize_unit(unit_name)
    return unit_name.strip()


async def get_product_or_404(db: AsyncSession, product_id: int, include_deleted: bool = False) -> Product:
    product = await db.get(Product, product_id)
    if not product or (product.is_deleted and not include_deleted):
        raise NotFoundError("Product")
    return product


@router.get("/", response_model=ProductListResponse)
async def list_products(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Name, SKU or brand"),
    category: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    low_stock: bool = Query(False),
    include_deleted: bool = Query(False)) -> Any:
    """List products"""
    query = select(Product)

    conditions = []
    if not include_deleted:
        conditions.append(Product.is_deleted == False)  # noqa: E712
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            Product.name.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.brand.ilike(pattern)
        ))
    if category:
        conditions.append(Product.category == category)
    if status:
        conditions.append(Product.status == status)
    if supplier_id:
        conditions.append(Product.supplier_id == supplier_id)
    if low_stock:
        conditions.append(Product.current_stock <= Product.reorder_point)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Product.name, Product.id).offset((page - 1) * limit).limit(limit)
    products = (await db.execute(query)).scalars().unique().all()

    return ProductListResponse(
        data=[ProductResponse.model_validate(p) for p in products],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/categories")
async def list_categories(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)) -> Any:
    """Distinct product categories"""
    result = await db.execute(
        select(Product.category)
        .where(and_(Product.category.isnot(None), Product.is_deleted == False))  # noqa: E712
        .distinct()
        .order_by(Product.category)
    )
    return [row[0] for row in result.all()]


@router.post("/", response_model=ProductResponse, status_code=201)
async def create_product(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    product_in: ProductCreate) -> Any:
    """Create a product; the SKU is generated when empty"""
    data = {k: to_utc_naive(v) for k, v in product_in.model_dump().items()}
    data["unit_name"] = _check_unit(data["unit_name"]) or "unit"
    await _check_supplier(db, data.get("supplier_id"))

    sku = (data.pop("sku") or "").strip()
    if sku:
        await _ensure_unique_sku(db, sku)
    else:
        sku = await generate_product_sku(db)

    product = Product(**data, sku=sku, created_by=current_user.id)
    db.add(product)
    await db.flush()

    await create_audit_log(
        db, current_user.id, "create", "product",
        resource_id=product.id,
        resource_name=product.sku,
        description=f"Created product {product.name}")
    await db.commit()
    await db.refresh(product)
    return ProductResponse.model_validate(product)


@router.post("/bulk-delete", response_model=BulkDeleteResult)
async def bulk_delete_products(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin")),
    bulk_in: BulkDeleteRequest) -> Any:
    """Soft delete many products"""
    result = await db.execute(
        select(Product).where(and_(Product.id.in_(bulk_in.product_ids), Product.is_deleted == False))  # noqa: E712
    )
    products = result.scalars().unique().all()
    found = {p.id for p in products}

    now = datetime.utcnow()
    for product in products:
        product.is_deleted = True
        product.is_active = False
        product.deleted_at = now
        product.deleted_by = current_user.id
        product.delete_reason = bulk_in.reason

    await create_audit_log(
        db, current_user.id, "bulk", "product",
        description=f"Deleted {len(products)} product(s)",
        new_value={"product_ids": sorted(found), "reason": bulk_in.reason})
    await db.commit()
    return BulkDeleteResult(
        deleted=len(products),
        not_found=[pid for pid in bulk_in.product_ids if pid not in found]
    )


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    product_id: int) -> Any:
    """Product detail"""
    return ProductResponse.model_validate(await get_product_or_404(db, product_id, include_deleted=True))


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    product_id: int,
    product_in: ProductUpdate) -> Any:
    """Update a product"""
    product = await get_product_or_404(db, product_id)

    update_data = {k: to_utc_naive(v) for k, v in product_in.model_dump(exclude_unset=True).items()}
    if "unit_name" in update_data:
        update_data["unit_name"] = _check_unit(update_data["unit_name"]) or product.unit_name
    if update_data.get("sku"):
        update_data["sku"] = update_data["sku"].strip()
        await _ensure_unique_sku(db, update_data["sku"], exclude_id=product.id)
    if "supplier_id" in update_data:
        await _check_supplier(db, update_data["supplier_id"])

    for field, value in update_data.items():
        setattr(product, field, value)
    product.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "product",
        resource_id=product.id,
        resource_name=product.sku,
        new_value=product_in.model_dump(exclude_unset=True, mode="json"))
    await db.commit()
    await db.refresh(product)
    return ProductResponse.model_validate(product)


@router.delete("/{product_id}")
async def delete_product(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    product_id: int,
    reason: Optional[str] = Query(None, max_length=200)) -> Any:
    """Soft delete a product"""
    product = await get_product_or_404(db, product_id)

    product.is_deleted = True
    product.is_active = False
    product.deleted_at = datetime.utcnow()
    product.deleted_by = current_user.id
    product.delete_reason = reason

    await create_audit_log(
        db, current_user.id, "delete", "product",
        resource_id=product.id,
        resource_name=product.sku,
        description=reason)
    await db.commit()
    return {"message": "Product deleted successfully"}


async def _apply_adjustment(db: AsyncSession, product: Product, change: float, reason: Optional[str], user: User):
    try:
        movement = await adjust_stock(db, product, change, user.id, reason)
    except ValueError as e:
        raise ValidationError(str(e))

    await create_audit_log(
        db, user.id, "adjust", "inventory",
        resource_id=product.id,
        resource_name=product.sku,
        description=reason,
        old_value={"current_stock": float(movement.stock_before)},
        new_value={"current_stock": float(movement.stock_after)})
    await db.commit()
    await db.refresh(product)
    return ProductResponse.model_validate(product)


@router.post("/{product_id}/add-stock", response_model=ProductResponse)
async def add_stock(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    product_id: int,
    stock_in: StockAdd) -> Any:
    """Receive stock"""
    product = await get_product_or_404(db, product_id)
    return await _apply_adjustment(db, product, stock_in.quantity, stock_in.reason or "Stock received", current_user)


@router.post("/{product_id}/adjust-stock", response_model=ProductResponse)
async def adjust_product_stock(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    product_id: int,
    stock_in: StockAdjust) -> Any:
    """Correct stock by a signed quantity"""
    product = await get_product_or_404(db, product_id)
    return await _apply_adjustment(db, product, stock_in.quantity, stock_in.reason, current_user)
