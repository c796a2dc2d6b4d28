"""Blend template API"""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.deps import get_db, get_current_user, require_roles
from clinicpos.core.errors import NotFoundError, ValidationError
from clinicpos.models.blend_template import BlendTemplate, BlendIngredient
from clinicpos.models.product import Product
from clinicpos.models.user import User
from clinicpos.schemas.blend_template import (
    BlendIngredientIn, BlendTemplateCreate, BlendTemplateUpdate,
    BlendTemplateResponse, BlendTemplateListResponse
)

router = APIRouter()


async def build_ingredients(db: AsyncSession, ingredients_in: List[BlendIngredientIn]) -> List[BlendIngredient]:
    """Ingredient rows with name, unit and cost filled from the product where not given"""
    ingredients = []
    for index, ingredient in enumerate(ingredients_in):
        product = await db.get(Product, ingredient.product_id)
        if not product or product.is_deleted:
            raise ValidationError(
                f"Ingredient {index + 1}: product {ingredient.product_id} not found",
                details={"ingredient_index": index, "product_id": ingredient.product_id})
        ingredients.append(BlendIngredient(
            product_id=product.id,
            name=ingredient.name or product.name,
            quantity=ingredient.quantity,
            unit_name=ingredient.unit_name or product.unit_name,
            cost_per_unit=ingredient.cost_per_unit if ingredient.cost_per_unit is not None else product.cost_price))
    return ingredients


async def get_template_or_404(db: AsyncSession, template_id: int) -> BlendTemplate:
    template = await db.get(BlendTemplate, template_id)
    if not template or template.is_deleted:
        raise NotFoundError("Blend template")
    return template


@router.get("/", response_model=BlendTemplateListResponse)
async def list_blend_templates(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None)) -> Any:
    """List blend templates"""
    query = select(BlendTemplate)

    conditions = [BlendTemplate.is_deleted == False]  # noqa: E712
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            BlendTemplate.name.ilike(pattern),
            BlendTemplate.description.ilike(pattern)
        ))
    if category:
        conditions.append(BlendTemplate.category == category)
    if is_active is not None:
        conditions.append(BlendTemplate.is_active == is_active)

    query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(BlendTemplate.name).offset((page - 1) * limit).limit(limit)
    templates = (await db.execute(query)).scalars().all()

    return BlendTemplateListResponse(
        data=[BlendTemplateResponse.model_validate(t) for t in templates],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/categories")
async def list_categories(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)) -> Any:
    """Distinct template categories"""
    result = await db.execute(
        select(BlendTemplate.category)
        .where(and_(BlendTemplate.category.isnot(None), BlendTemplate.is_deleted == False))  # noqa: E712
        .distinct()
        .order_by(BlendTemplate.category)
    )
    return [row[0] for row in result.all()]


@router.post("/", response_model=BlendTemplateResponse, status_code=201)
async def create_blend_template(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    template_in: BlendTemplateCreate) -> Any:
    """Create a blend template"""
    data = template_in.model_dump(exclude={"ingredients"})
    template = BlendTemplate(**data, created_by=current_user.id)
    template.ingredients = await build_ingredients(db, template_in.ingredients)
    db.add(template)
    await db.flush()

    await create_audit_log(
        db, current_user.id, "create", "blend_template",
        resource_id=template.id,
        resource_name=template.name)
    await db.commit()
    await db.refresh(template)
    return BlendTemplateResponse.model_validate(template)


@router.get("/{template_id}", response_model=BlendTemplateResponse)
async def get_blend_template(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    template_id: int) -> Any:
    """Blend template detail"""
    return BlendTemplateResponse.model_validate(await get_template_or_404(db, template_id))


@router.put("/{template_id}", response_model=BlendTemplateResponse)
async def update_blend_template(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    template_id: int,
    template_in: BlendTemplateUpdate) -> Any:
    """Update a blend template; given ingredients replace the existing ones"""
    template = await get_template_or_404(db, template_id)

    update_data = template_in.model_dump(exclude_unset=True, exclude={"ingredients"})
    for field, value in update_data.items():
        setattr(template, field, value)
    if template_in.ingredients is not None:
        template.ingredients = await build_ingredients(db, template_in.ingredients)
    template.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "blend_template",
        resource_id=template.id,
        resource_name=template.name,
        new_value=template_in.model_dump(exclude_unset=True, mode="json"))
    await db.commit()
    await db.refresh(template)
    return BlendTemplateResponse.model_validate(template)


@router.delete("/{template_id}")
async def delete_blend_template(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    template_id: int) -> Any:
    """Soft delete a blend template"""
    template = await get_template_or_404(db, template_id)
    template.is_deleted = True
    template.is_active = False
    template.deleted_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "delete", "blend_template",
        resource_id=template.id,
        resource_name=template.name)
    await db.commit()
    return {"message": "Blend template deleted successfully"}
