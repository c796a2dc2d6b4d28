"""Dependency injection: database session and current user"""
from typing import AsyncGenerator, Callable, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.core.errors import AuthenticationError, ForbiddenError
from clinicpos.core.security import decode_access_token
from clinicpos.db.session import SessionLocal
from clinicpos.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session per request
    """
    async with SessionLocal() as session:
        yield session


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
    """Resolve the bearer token to an active user"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")

    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token")

    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    return user


def require_roles(*roles: str) -> Callable:
    """
    Dependency factory limiting an endpoint to the given roles.
    super_admin always passes.

    Usage:
        current_user: User = Depends(require_roles("admin", "manager"))
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role == "super_admin" or current_user.role in roles:
            return current_user
        raise ForbiddenError("Insufficient permissions")

    return checker
