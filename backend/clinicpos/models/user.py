from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.dialects.sqlite import JSON

from clinicpos.db.base import Base
from clinicpos.core.permissions import ROLE_DISPLAY, effective_discount_permissions


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(120), unique=True, index=True, nullable=False)
    password = Column(String(100), nullable=False, comment="bcrypt hash")
    full_name = Column(String(100))
    # super_admin / admin / manager / staff / user
    role = Column(String(20), nullable=False, default="staff", index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # Per-user overrides of the role's discount template
    discount_permissions = Column(JSON, comment="Discount permission overrides")
    last_login_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    @property
    def is_admin(self) -> bool:
        return self.role in ("super_admin", "admin")

    @property
    def role_display(self) -> str:
        return ROLE_DISPLAY.get(self.role, self.role)

    @property
    def effective_discount_permissions(self) -> dict:
        """Role template merged with this user's overrides"""
        return effective_discount_permissions(self.role, self.discount_permissions)
