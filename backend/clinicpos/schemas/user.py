"""User, auth and bulk user operation schemas"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, EmailStr, Field

ROLE_PATTERN = "^(super_admin|admin|manager|staff|user)$"


class DiscountPermissions(BaseModel):
    """Per-user overrides; None keeps the role default"""
    can_apply_product_discount: Optional[bool] = None
    can_apply_bill_discount: Optional[bool] = None
    max_discount_percent: Optional[float] = Field(None, ge=0, le=100)
    max_discount_amount: Optional[float] = Field(None, ge=0)


class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    full_name: Optional[str] = Field(None, max_length=100)
    role: str = Field(default="staff", pattern=ROLE_PATTERN)


class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    is_active: bool = True
    discount_permissions: Optional[DiscountPermissions] = None


class UserUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    role: Optional[str] = Field(None, pattern=ROLE_PATTERN)
    password: Optional[str] = Field(None, min_length=6)
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    full_name: Optional[str] = None
    role: str
    role_display: str
    is_active: bool
    discount_permissions: Optional[Dict[str, Any]] = None
    effective_discount_permissions: Dict[str, Any]
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    data: List[UserResponse]
    total: int
    page: int
    limit: int


class LoginRequest(BaseModel):
    """Either username or email identifies the account"""
    username: Optional[str] = None
    email: Optional[str] = None
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class BulkUserStatus(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    is_active: bool


class BulkUserRole(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    role: str = Field(..., pattern=ROLE_PATTERN)


class BulkUserPermissions(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    discount_permissions: DiscountPermissions


class BulkUpdateResult(BaseModel):
    updated: int
    not_found: List[int] = []
    skipped: List[int] = []
