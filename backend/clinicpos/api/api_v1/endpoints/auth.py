"""Login and account API"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log, client_ip
from clinicpos.core.deps import get_db, get_current_user
from clinicpos.core.errors import AuthenticationError, ValidationError
from clinicpos.core.security import create_access_token, get_password_hash, verify_password
from clinicpos.models.user import User
from clinicpos.schemas.user import LoginRequest, PasswordChange, TokenResponse, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(
    *,
    db: AsyncSession = Depends(get_db),
    request: Request,
    login_in: LoginRequest) -> Any:
    """Exchange username (or email) and password for a bearer token"""
    identifier = (login_in.username or login_in.email or "").strip()
    if not identifier:
        raise ValidationError("Username or email is required")

    result = await db.execute(
        select(User).where(or_(User.username == identifier, User.email == identifier.lower()))
    )
    user = result.scalars().first()
    if not user or not verify_password(login_in.password, user.password):
        logger.info(f"Failed login for '{identifier}'")
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        raise AuthenticationError("Account is disabled")

    user.last_login_at = datetime.utcnow()
    await create_audit_log(
        db, user.id, "login", "user",
        resource_id=user.id,
        resource_name=user.username,
        description="Signed in",
        ip_address=client_ip(request))
    await db.commit()
    await db.refresh(user)

    token = create_access_token(user.id, user.role, user.username)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def read_me(*, current_user: User = Depends(get_current_user)) -> Any:
    """Current user"""
    return UserResponse.model_validate(current_user)


@router.post("/change-password")
async def change_password(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    password_in: PasswordChange) -> Any:
    """Change own password"""
    if not verify_password(password_in.current_password, current_user.password):
        raise ValidationError("Current password is incorrect")

    current_user.password = get_password_hash(password_in.new_password)
    current_user.updated_at = datetime.utcnow()
    await create_audit_log(
        db, current_user.id, "update", "user",
        resource_id=current_user.id,
        resource_name=current_user.username,
        description="Changed password")
    await db.commit()
    return {"message": "Password changed successfully"}
