from types import SimpleNamespace

from clinicpos.core.permissions import check_discount_permission, effective_discount_permissions


def user(role, overrides=None):
    return SimpleNamespace(role=role, discount_permissions=overrides)


class TestDiscountPermission:
    def test_super_admin_is_unlimited(self):
        assert check_discount_permission(user("super_admin"), 99, 100000, "product") == (True, None)

    def test_staff_cannot_discount_products(self):
        allowed, reason = check_discount_permission(user("staff"), 5, 1, "product")
        assert not allowed
        assert reason == "No product discount permissions"

    def test_staff_bill_discount_within_limits(self):
        assert check_discount_permission(user("staff"), 10, 100, "bill") == (True, None)

    def test_percent_limit(self):
        allowed, reason = check_discount_permission(user("staff"), 10.5, 5, "bill")
        assert not allowed
        assert reason == "Discount percent exceeds limit of 10%"

    def test_amount_limit(self):
        allowed, reason = check_discount_permission(user("manager"), 5, 600, "bill")
        assert not allowed
        assert reason == "Discount amount exceeds limit of $500"

    def test_overrides_replace_template_keys(self):
        staff = user("staff", {"can_apply_product_discount": True, "max_discount_percent": 30})
        assert check_discount_permission(staff, 25, 50, "product") == (True, None)

    def test_unknown_role_uses_staff_template(self):
        allowed, _ = check_discount_permission(user("user"), 5, 5, "product")
        assert not allowed


def test_effective_permissions_ignore_unknown_and_null_overrides():
    permissions = effective_discount_permissions("manager", {"max_discount_amount": None, "bogus": 1})
    assert permissions["max_discount_amount"] == 500
    assert "bogus" not in permissions
