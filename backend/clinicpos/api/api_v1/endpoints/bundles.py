"""Bundle API"""

import math
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.deps import get_db, get_current_user, require_roles
from clinicpos.core.errors import ConflictError, NotFoundError, ValidationError
from clinicpos.models.blend_template import BlendTemplate
from clinicpos.models.bundle import Bundle, BundleItem
from clinicpos.models.product import Product
from clinicpos.models.user import User
from clinicpos.schemas.bundle import (
    BundleItemIn, BundleCreate, BundleUpdate, BundleResponse, BundleListResponse, BundleAvailability
)
from clinicpos.services.transaction_utils import to_utc_naive

router = APIRouter()


async def generate_bundle_sku(db: AsyncSession) -> str:
    """BDL-000001, BDL-000002, ..."""
    result = await db.execute(
        select(func.max(Bundle.sku)).where(Bundle.sku.like("BDL-%"))
    )
    max_sku = result.scalar()

    if max_sku:
        try:
            num = int(max_sku[4:]) + 1
        except ValueError:
            num = 1
    else:
        num = 1

    return f"BDL-{num:06d}"


async def build_bundle_items(db: AsyncSession, items_in: List[BundleItemIn]) -> List[BundleItem]:
    items = []
    for index, item in enumerate(items_in):
        product = await db.get(Product, item.product_id)
        if not product or product.is_deleted:
            raise ValidationError(
                f"Item {index + 1}: product {item.product_id} not found",
                details={"item_index": index, "product_id": item.product_id})
        if item.product_type == "fixed_blend":
            if not item.blend_template_id:
                raise ValidationError(f"Item {index + 1}: fixed blend items need a blend_template_id")
            template = await db.get(BlendTemplate, item.blend_template_id)
            if not template or template.is_deleted:
                raise ValidationError(f"Item {index + 1}: blend template {item.blend_template_id} not found")
        items.append(BundleItem(
            product_id=product.id,
            name=item.name or product.name,
            quantity=item.quantity,
            product_type=item.product_type,
            blend_template_id=item.blend_template_id if item.product_type == "fixed_blend" else None,
            unit_name=item.unit_name or product.unit_name,
            individual_price=item.individual_price if item.individual_price is not None else product.selling_price))
    return items


async def check_availability(db: AsyncSession, bundle: Bundle, quantity: int = 1) -> BundleAvailability:
    """Can `quantity` bundles be sold from current stock?"""
    issues = []
    for item in bundle.items:
        product = await db.get(Product, item.product_id)
        if not product or product.is_deleted:
            issues.append(f"Product {item.name} no longer exists")
            continue
        if not product.is_active:
            issues.append(f"Product {item.name} is inactive")
            continue
        required = item.quantity * quantity
        if float(product.current_stock or 0) < required:
            issues.append(f"Insufficient stock for {item.name}: need {required}, have {float(product.current_stock or 0):g}")
    return BundleAvailability(available=not issues, issues=issues, available_quantity=bundle.available_quantity)


async def refresh_availability(db: AsyncSession, bundle: Bundle) -> int:
    """available_quantity = the bundles the scarcest component allows, capped at max_quantity"""
    available = bundle.max_quantity or 0
    for item in bundle.items:
        product = await db.get(Product, item.product_id)
        if not product or product.is_deleted:
            available = 0
            break
        per_bundle = item.quantity or 1
        available = min(available, max(0, math.floor(float(product.current_stock or 0) / per_bundle)))
    bundle.available_quantity = available
    return available


async def get_bundle_or_404(db: AsyncSession, bundle_id: int) -> Bundle:
    bundle = await db.get(Bundle, bundle_id)
    if not bundle:
        raise NotFoundError("Bundle")
    return bundle


def _check_validity_window(bundle: Bundle) -> None:
    if bundle.valid_from and bundle.valid_until and bundle.valid_until < bundle.valid_from:
        raise ValidationError("valid_until must be after valid_from")


@router.get("/", response_model=BundleListResponse)
async def list_bundles(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    is_promoted: Optional[bool] = Query(None)) -> Any:
    """List bundles"""
    query = select(Bundle)

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Bundle.name.ilike(pattern), Bundle.sku.ilike(pattern)))
    if category:
        conditions.append(Bundle.category == category)
    if status:
        conditions.append(Bundle.status == status)
    if is_promoted is not None:
        conditions.append(Bundle.is_promoted == is_promoted)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Bundle.name).offset((page - 1) * limit).limit(limit)
    bundles = (await db.execute(query)).scalars().all()

    return BundleListResponse(
        data=[BundleResponse.model_validate(b) for b in bundles],
        total=total,
        page=page,
        limit=limit
    )


@router.post("/", response_model=BundleResponse, status_code=201)
async def create_bundle(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    bundle_in: BundleCreate) -> Any:
    """Create a bundle; the SKU is generated when empty"""
    data = {k: to_utc_naive(v) for k, v in bundle_in.model_dump(exclude={"items", "sku"}).items()}

    sku = (bundle_in.sku or "").strip()
    if sku:
        if (await db.execute(select(Bundle.id).where(Bundle.sku == sku))).scalar() is not None:
            raise ConflictError(f"SKU {sku} already exists")
    else:
        sku = await generate_bundle_sku(db)

    bundle = Bundle(**data, sku=sku, created_by=current_user.id)
    _check_validity_window(bundle)
    bundle.items = await build_bundle_items(db, bundle_in.items)
    await refresh_availability(db, bundle)
    db.add(bundle)
    await db.flush()

    await create_audit_log(
        db, current_user.id, "create", "bundle",
        resource_id=bundle.id,
        resource_name=bundle.sku,
        description=f"Created bundle {bundle.name}")
    await db.commit()
    await db.refresh(bundle)
    return BundleResponse.model_validate(bundle)


@router.get("/{bundle_id}", response_model=BundleResponse)
async def get_bundle(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bundle_id: int) -> Any:
    """Bundle detail"""
    return BundleResponse.model_validate(await get_bundle_or_404(db, bundle_id))


@router.put("/{bundle_id}", response_model=BundleResponse)
async def update_bundle(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    bundle_id: int,
    bundle_in: BundleUpdate) -> Any:
    """Update a bundle; given items replace the existing ones"""
    bundle = await get_bundle_or_404(db, bundle_id)

    update_data = bundle_in.model_dump(exclude_unset=True, exclude={"items"})
    for field, value in update_data.items():
        setattr(bundle, field, to_utc_naive(value))
    _check_validity_window(bundle)
    if bundle_in.items is not None:
        bundle.items = await build_bundle_items(db, bundle_in.items)
    await refresh_availability(db, bundle)
    bundle.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "bundle",
        resource_id=bundle.id,
        resource_name=bundle.sku,
        new_value=bundle_in.model_dump(exclude_unset=True, mode="json"))
    await db.commit()
    await db.refresh(bundle)
    return BundleResponse.model_validate(bundle)


@router.delete("/{bundle_id}")
async def delete_bundle(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    bundle_id: int) -> Any:
    """Delete a bundle"""
    bundle = await get_bundle_or_404(db, bundle_id)
    await create_audit_log(
        db, current_user.id, "delete", "bundle",
        resource_id=bundle.id,
        resource_name=bundle.sku)
    await db.delete(bundle)
    await db.commit()
    return {"message": "Bundle deleted successfully"}


@router.get("/{bundle_id}/availability", response_model=BundleAvailability)
async def get_bundle_availability(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bundle_id: int,
    quantity: int = Query(1, ge=1)) -> Any:
    """Stock check for selling `quantity` bundles"""
    bundle = await get_bundle_or_404(db, bundle_id)
    return await check_availability(db, bundle, quantity)


@router.post("/{bundle_id}/refresh-availability", response_model=BundleResponse)
async def refresh_bundle_availability(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bundle_id: int) -> Any:
    """Recompute available_quantity from component stock"""
    bundle = await get_bundle_or_404(db, bundle_id)
    await refresh_availability(db, bundle)
    bundle.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(bundle)
    return BundleResponse.model_validate(bundle)
