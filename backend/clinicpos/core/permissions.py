"""
Role based discount permissions.

Each role has a template of discount limits; a user may carry overrides
that replace individual keys of the template.
"""

from typing import Any, Dict, Optional, Tuple

ROLES = ["super_admin", "admin", "manager", "staff", "user"]

ROLE_DISPLAY = {
    "super_admin": "Super Admin",
    "admin": "Administrator",
    "manager": "Manager",
    "staff": "Staff",
    "user": "User",
}

# Discount limits per role
ROLE_DISCOUNT_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "admin": {
        "can_apply_product_discount": True,
        "can_apply_bill_discount": True,
        "max_discount_percent": 50,
        "max_discount_amount": 1000,
    },
    "manager": {
        "can_apply_product_discount": True,
        "can_apply_bill_discount": True,
        "max_discount_percent": 25,
        "max_discount_amount": 500,
    },
    "staff": {
        "can_apply_product_discount": False,
        "can_apply_bill_discount": True,
        "max_discount_percent": 10,
        "max_discount_amount": 100,
    },
}

DISCOUNT_PERMISSION_KEYS = tuple(ROLE_DISCOUNT_TEMPLATES["staff"].keys())


def role_template(role: str) -> Dict[str, Any]:
    """Discount defaults for a role; unknown roles get the staff template"""
    return dict(ROLE_DISCOUNT_TEMPLATES.get(role, ROLE_DISCOUNT_TEMPLATES["staff"]))


def effective_discount_permissions(role: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    permissions = role_template(role)
    for key, value in (overrides or {}).items():
        if key in DISCOUNT_PERMISSION_KEYS and value is not None:
            permissions[key] = value
    return permissions


def _format_limit(value: float) -> str:
    return f"{value:g}"


def check_discount_permission(
    user: Any,
    discount_percent: float = 0,
    discount_amount: float = 0,
    discount_type: str = "bill") -> Tuple[bool, Optional[str]]:
    """
    Can `user` apply this discount?

    Args:
        user: anything with `role` and optional `discount_permissions`
        discount_type: "product" for line item discounts, "bill" for the whole bill

    Returns:
        (allowed, reason) where reason is None when allowed
    """
    role = getattr(user, "role", None) or "staff"
    if role == "super_admin":
        return True, None

    permissions = effective_discount_permissions(role, getattr(user, "discount_permissions", None))

    if discount_type == "product" and not permissions["can_apply_product_discount"]:
        return False, "No product discount permissions"
    if discount_type == "bill" and not permissions["can_apply_bill_discount"]:
        return False, "No bill discount permissions"

    max_percent = permissions["max_discount_percent"]
    if discount_percent and discount_percent > max_percent:
        return False, f"Discount percent exceeds limit of {_format_limit(max_percent)}%"

    max_amount = permissions["max_discount_amount"]
    if discount_amount and discount_amount > max_amount:
        return False, f"Discount amount exceeds limit of ${_format_limit(max_amount)}"

    return True, None
