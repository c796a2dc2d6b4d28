"""User administration API (admin / super_admin only)"""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.deps import get_db, require_roles
from clinicpos.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from clinicpos.core.permissions import DISCOUNT_PERMISSION_KEYS
from clinicpos.core.security import get_password_hash
from clinicpos.models.user import User
from clinicpos.schemas.user import (
    UserCreate, UserUpdate, UserResponse, UserListResponse, DiscountPermissions,
    BulkUserStatus, BulkUserRole, BulkUserPermissions, BulkUpdateResult
)

router = APIRouter()

admin_only = require_roles("admin")


def _clean_permissions(permissions: Optional[DiscountPermissions]) -> Optional[dict]:
    if permissions is None:
        return None
    values = permissions.model_dump(exclude_none=True)
    return {k: v for k, v in values.items() if k in DISCOUNT_PERMISSION_KEYS} or None


async def _ensure_unique(db: AsyncSession, username: Optional[str], email: Optional[str], exclude_id: int = None):
    conditions = []
    if username:
        conditions.append(User.username == username)
    if email:
        conditions.append(User.email == email.lower())
    if not conditions:
        return
    query = select(User).where(or_(*conditions))
    if exclude_id:
        query = query.where(User.id != exclude_id)
    existing = (await db.execute(query)).scalars().first()
    if existing:
        field = "Username" if existing.username == username else "Email"
        raise ConflictError(f"{field} already exists")


def _guard_super_admin(current_user: User, target: User) -> None:
    """Only a super admin may change another super admin"""
    if target.is_super_admin and not current_user.is_super_admin:
        raise ForbiddenError("Only a super admin can modify a super admin")


async def _load_users(db: AsyncSession, user_ids: List[int]):
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    users = result.scalars().all()
    found = {u.id for u in users}
    return users, [uid for uid in user_ids if uid not in found]


@router.get("/", response_model=UserListResponse)
async def list_users(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None)) -> Any:
    """List users"""
    query = select(User)

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            User.username.ilike(pattern),
            User.email.ilike(pattern),
            User.full_name.ilike(pattern)
        ))
    if role:
        conditions.append(User.role == role)
    if is_active is not None:
        conditions.append(User.is_active == is_active)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit)
    users = (await db.execute(query)).scalars().all()

    return UserListResponse(
        data=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        limit=limit
    )


@router.post("/", response_model=UserResponse, status_code=201)
async def create_user(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    user_in: UserCreate) -> Any:
    """Create a user"""
    if user_in.role == "super_admin" and not current_user.is_super_admin:
        raise ForbiddenError("Only a super admin can create a super admin")
    await _ensure_unique(db, user_in.username, user_in.email)

    user = User(
        username=user_in.username,
        email=user_in.email.lower(),
        full_name=user_in.full_name,
        password=get_password_hash(user_in.password),
        role=user_in.role,
        is_active=user_in.is_active,
        discount_permissions=_clean_permissions(user_in.discount_permissions))
    db.add(user)
    await db.flush()

    await create_audit_log(
        db, current_user.id, "create", "user",
        resource_id=user.id,
        resource_name=user.username,
        description=f"Created user {user.username} ({user.role})")
    await db.commit()
    await db.refresh(user)
    return UserResponse.model_validate(user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    user_id: int) -> Any:
    """User detail"""
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    return UserResponse.model_validate(user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    user_id: int,
    user_in: UserUpdate) -> Any:
    """Update a user"""
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    _guard_super_admin(current_user, user)

    update_data = user_in.model_dump(exclude_unset=True)
    if update_data.get("role") == "super_admin" and not current_user.is_super_admin:
        raise ForbiddenError("Only a super admin can grant the super admin role")
    if user.id == current_user.id and update_data.get("is_active") is False:
        raise ValidationError("You cannot deactivate your own account")
    await _ensure_unique(db, update_data.get("username"), update_data.get("email"), exclude_id=user.id)

    password = update_data.pop("password", None)
    if password:
        user.password = get_password_hash(password)
    if update_data.get("email"):
        update_data["email"] = update_data["email"].lower()

    old_value = {k: getattr(user, k) for k in update_data}
    for field, value in update_data.items():
        setattr(user, field, value)
    user.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "user",
        resource_id=user.id,
        resource_name=user.username,
        old_value=old_value,
        new_value=update_data)
    await db.commit()
    await db.refresh(user)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}")
async def delete_user(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    user_id: int) -> Any:
    """Delete a user"""
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    if user.id == current_user.id:
        raise ValidationError("You cannot delete your own account")
    _guard_super_admin(current_user, user)

    await create_audit_log(
        db, current_user.id, "delete", "user",
        resource_id=user.id,
        resource_name=user.username)
    await db.delete(user)
    await db.commit()
    return {"message": "User deleted successfully"}


@router.put("/{user_id}/discount-permissions", response_model=UserResponse)
async def update_discount_permissions(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    user_id: int,
    permissions_in: DiscountPermissions) -> Any:
    """Replace a user's discount permission overrides"""
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    _guard_super_admin(current_user, user)

    old_value = user.discount_permissions
    user.discount_permissions = _clean_permissions(permissions_in)
    user.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "user",
        resource_id=user.id,
        resource_name=user.username,
        description="Updated discount permissions",
        old_value=old_value,
        new_value=user.discount_permissions)
    await db.commit()
    await db.refresh(user)
    return UserResponse.model_validate(user)


@router.post("/bulk/status", response_model=BulkUpdateResult)
async def bulk_update_status(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    bulk_in: BulkUserStatus) -> Any:
    """Activate or deactivate many users; your own account is skipped"""
    users, not_found = await _load_users(db, bulk_in.user_ids)
    skipped = []
    updated = 0
    for user in users:
        if user.id == current_user.id or (user.is_super_admin and not current_user.is_super_admin):
            skipped.append(user.id)
            continue
        user.is_active = bulk_in.is_active
        user.updated_at = datetime.utcnow()
        updated += 1

    await create_audit_log(
        db, current_user.id, "bulk", "user",
        description=f"Set is_active={bulk_in.is_active} for {updated} user(s)",
        new_value={"user_ids": bulk_in.user_ids, "is_active": bulk_in.is_active})
    await db.commit()
    return BulkUpdateResult(updated=updated, not_found=not_found, skipped=skipped)


@router.post("/bulk/role", response_model=BulkUpdateResult)
async def bulk_update_role(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    bulk_in: BulkUserRole) -> Any:
    """Change the role of many users; discount overrides reset to the role template"""
    if bulk_in.role == "super_admin" and not current_user.is_super_admin:
        raise ForbiddenError("Only a super admin can grant the super admin role")

    users, not_found = await _load_users(db, bulk_in.user_ids)
    skipped = []
    updated = 0
    for user in users:
        if user.id == current_user.id or (user.is_super_admin and not current_user.is_super_admin):
            skipped.append(user.id)
            continue
        user.role = bulk_in.role
        user.discount_permissions = None
        user.updated_at = datetime.utcnow()
        updated += 1

    await create_audit_log(
        db, current_user.id, "bulk", "user",
        description=f"Set role={bulk_in.role} for {updated} user(s)",
        new_value={"user_ids": bulk_in.user_ids, "role": bulk_in.role})
    await db.commit()
    return BulkUpdateResult(updated=updated, not_found=not_found, skipped=skipped)


@router.post("/bulk/permissions", response_model=BulkUpdateResult)
async def bulk_update_permissions(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    bulk_in: BulkUserPermissions) -> Any:
    """Merge discount permission overrides into many users"""
    overrides = _clean_permissions(bulk_in.discount_permissions) or {}
    users, not_found = await _load_users(db, bulk_in.user_ids)
    skipped = []
    updated = 0
    for user in users:
        if user.is_super_admin:
            # Super admins are never limited
            skipped.append(user.id)
            continue
        user.discount_permissions = {**(user.discount_permissions or {}), **overrides}
        user.updated_at = datetime.utcnow()
        updated += 1

    await create_audit_log(
        db, current_user.id, "bulk", "user",
        description=f"Updated discount permissions for {updated} user(s)",
        new_value={"user_ids": bulk_in.user_ids, "discount_permissions": overrides})
    await db.commit()
    return BulkUpdateResult(updated=updated, not_found=not_found, skipped=skipped)
