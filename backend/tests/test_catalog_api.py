from datetime import datetime, timedelta

import pytest

from conftest import item_payload


class TestProducts:
    @pytest.mark.asyncio
    async def test_create_generates_sku_and_normalizes_unit(self, client, admin_headers):
        first = await client.post(
            "/api/products/", json={"name": "Rose Oil", "unit_name": "ML", "selling_price": 30}, headers=admin_headers)
        second = await client.post(
            "/api/products/", json={"name": "Capsules", "unit_name": "capsule"}, headers=admin_headers)
        assert first.status_code == 201
        assert first.json()["sku"] == "PRD-000001"
        assert first.json()["unit_name"] == "ml"
        assert second.json()["sku"] == "PRD-000002"
        assert second.json()["unit_name"] == "capsule"

    @pytest.mark.asyncio
    async def test_duplicate_sku(self, client, admin_headers, make_product):
        await make_product(sku="OIL-1")
        response = await client.post("/api/products/", json={"name": "Copy", "sku": "OIL-1"}, headers=admin_headers)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_staff_cannot_create(self, client, staff_headers):
        response = await client.post("/api/products/", json={"name": "Nope"}, headers=staff_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_supplier(self, client, admin_headers):
        response = await client.post("/api/products/", json={"name": "Oil", "supplier_id": 42}, headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_filters(self, client, admin_headers, make_product):
        await make_product(name="Lavender Oil", stock=2, reorder_point=5)
        await make_product(name="Peppermint Oil", stock=50, reorder_point=5)
        await make_product(name="Lavender Soap", stock=50, reorder_point=5, unit_name="piece")

        searched = (await client.get("/api/products/", params={"search": "lavender"}, headers=admin_headers)).json()
        assert searched["total"] == 2

        low = (await client.get("/api/products/", params={"low_stock": True}, headers=admin_headers)).json()
        assert [p["name"] for p in low["data"]] == ["Lavender Oil"]
        assert low["data"][0]["is_low_stock"] is True

    @pytest.mark.asyncio
    async def test_soft_delete(self, client, admin_headers, make_product):
        product = await make_product()
        response = await client.delete(
            f"/api/products/{product.id}", params={"reason": "Discontinued"}, headers=admin_headers)
        assert response.status_code == 200

        listed = (await client.get("/api/products/", headers=admin_headers)).json()
        assert listed["total"] == 0
        detail = (await client.get(f"/api/products/{product.id}", headers=admin_headers)).json()
        assert detail["is_deleted"] is True
        assert detail["delete_reason"] == "Discontinued"

    @pytest.mark.asyncio
    async def test_bulk_delete(self, client, admin_headers, make_product):
        a = await make_product()
        b = await make_product()
        response = await client.post(
            "/api/products/bulk-delete", json={"product_ids": [a.id, b.id, 999]}, headers=admin_headers)
        assert response.json() == {"deleted": 2, "not_found": [999]}

    @pytest.mark.asyncio
    async def test_stock_adjustments(self, client, admin_headers, make_product):
        product = await make_product(stock=5)
        added = await client.post(
            f"/api/products/{product.id}/add-stock", json={"quantity": 10}, headers=admin_headers)
        assert added.json()["current_stock"] == 15

        removed = await client.post(
            f"/api/products/{product.id}/adjust-stock",
            json={"quantity": -3, "reason": "Broken bottle"},
            headers=admin_headers)
        assert removed.json()["current_stock"] == 12

        too_much = await client.post(
            f"/api/products/{product.id}/adjust-stock", json={"quantity": -50}, headers=admin_headers)
        assert too_much.status_code == 400

        movements = (await client.get(
            "/api/inventory/movements", params={"product_id": product.id}, headers=admin_headers)).json()
        assert movements["total"] == 2


class TestPatients:
    @pytest.mark.asyncio
    async def test_create_normalizes_nric(self, client, staff_headers):
        payload = {"first_name": "Mei", "last_name": "Lin", "nric": " s1234567a ", "email": "Mei@Example.com"}
        response = await client.post("/api/patients/", json=payload, headers=staff_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["nric"] == "S1234567A"
        assert body["email"] == "mei@example.com"
        assert body["membership_tier"] == "standard"
        assert body["full_name"] == "Mei Lin"

        duplicate = await client.post("/api/patients/", json=payload, headers=staff_headers)
        assert duplicate.status_code == 409

    @pytest.mark.asyncio
    async def test_discount_window_must_be_ordered(self, client, staff_headers):
        now = datetime.utcnow()
        payload = {
            "first_name": "Ken",
            "last_name": "Goh",
            "discount_percentage": 10,
            "discount_start_date": now.isoformat(),
            "discount_end_date": (now - timedelta(days=1)).isoformat(),
        }
        response = await client.post("/api/patients/", json=payload, headers=staff_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_membership_update_requires_manager(self, client, admin_headers, staff_headers, make_patient):
        patient = await make_patient()
        payload = {"membership_tier": "gold", "discount_percentage": 15}
        denied = await client.put(f"/api/patients/{patient.id}/membership", json=payload, headers=staff_headers)
        assert denied.status_code == 403

        response = await client.put(f"/api/patients/{patient.id}/membership", json=payload, headers=admin_headers)
        body = response.json()
        assert body["membership_tier"] == "gold"
        assert body["discount_percentage"] == 15

    @pytest.mark.asyncio
    async def test_stats(self, client, admin_headers, make_patient):
        await make_patient(first_name="A", discount=10, membership_tier="gold")
        await make_patient(first_name="B", status="inactive")
        body = (await client.get("/api/patients/stats", headers=admin_headers)).json()
        assert body["total"] == 2
        assert body["by_status"] == {"active": 1, "inactive": 1}
        assert body["with_active_discount"] == 1

    @pytest.mark.asyncio
    async def test_bulk_membership(self, client, admin_headers, staff_headers, make_patient):
        a = await make_patient(first_name="Ann")
        b = await make_patient(first_name="Ben", discount=5)
        payload = {"patient_ids": [a.id, b.id, 999], "membership_tier": "silver", "discount_percentage": 8}

        denied = await client.post("/api/patients/bulk/membership", json=payload, headers=staff_headers)
        assert denied.status_code == 403

        response = await client.post("/api/patients/bulk/membership", json=payload, headers=admin_headers)
        assert response.json() == {"updated": 2, "not_found": [999]}
        for patient in (a, b):
            detail = (await client.get(f"/api/patients/{patient.id}", headers=admin_headers)).json()
            assert detail["membership_tier"] == "silver"
            assert detail["discount_percentage"] == 8

        tier_only = {"patient_ids": [a.id], "membership_tier": "gold"}
        await client.post("/api/patients/bulk/membership", json=tier_only, headers=admin_headers)
        detail = (await client.get(f"/api/patients/{a.id}", headers=admin_headers)).json()
        assert detail["membership_tier"] == "gold"
        assert detail["discount_percentage"] == 8

    @pytest.mark.asyncio
    async def test_patient_with_transactions_cannot_be_deleted(self, client, admin_headers, make_patient, make_product):
        patient = await make_patient()
        product = await make_product()
        sale = {"customer_id": patient.id, "customer_name": patient.full_name, "items": [item_payload(product)]}
        assert (await client.post("/api/transactions/", json=sale, headers=admin_headers)).status_code == 201

        response = await client.delete(f"/api/patients/{patient.id}", headers=admin_headers)
        assert response.status_code == 409


class TestSuppliers:
    @pytest.mark.asyncio
    async def test_supplier_in_use_cannot_be_deleted(self, client, admin_headers):
        supplier = (await client.post("/api/suppliers/", json={"name": "Aroma Co"}, headers=admin_headers)).json()
        await client.post(
            "/api/products/", json={"name": "Oil", "supplier_id": supplier["id"]}, headers=admin_headers)

        response = await client.delete(f"/api/suppliers/{supplier['id']}", headers=admin_headers)
        assert response.status_code == 409

        duplicate = await client.post("/api/suppliers/", json={"name": "Aroma Co"}, headers=admin_headers)
        assert duplicate.status_code == 409


class TestBlendsAndBundles:
    @pytest.mark.asyncio
    async def test_blend_template_costs(self, client, admin_headers, make_product):
        lavender = await make_product(name="Lavender", cost=2)
        carrier = await make_product(name="Carrier", cost=0.5)
        payload = {
            "name": "Calm",
            "batch_size": 10,
            "selling_price": 40,
            "ingredients": [
                {"product_id": lavender.id, "quantity": 5},
                {"product_id": carrier.id, "quantity": 20},
            ],
        }
        response = await client.post("/api/blend-templates/", json=payload, headers=admin_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["ingredients"][0]["name"] == "Lavender"
        assert body["ingredients"][0]["unit_name"] == "ml"
        assert body["total_cost"] == 20
        assert body["cost_per_unit"] == 2
        assert body["profit"] == 20
        assert body["profit_margin"] == 50

    @pytest.mark.asyncio
    async def test_blend_template_unknown_product(self, client, admin_headers):
        payload = {"name": "Bad", "ingredients": [{"product_id": 404, "quantity": 1}]}
        response = await client.post("/api/blend-templates/", json=payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["details"]["product_id"] == 404

    @pytest.mark.asyncio
    async def test_bundle_pricing_and_availability(self, client, admin_headers, make_product):
        soap = await make_product(name="Soap", price=10, stock=7, unit_name="piece")
        oil = await make_product(name="Oil", price=30, stock=100)
        payload = {
            "name": "Spa Set",
            "bundle_price": 40,
            "items": [
                {"product_id": soap.id, "quantity": 2},
                {"product_id": oil.id, "quantity": 1},
            ],
        }
        response = await client.post("/api/bundles/", json=payload, headers=admin_headers)
        assert response.status_code == 201
        bundle = response.json()
        assert bundle["sku"] == "BDL-000001"
        assert bundle["individual_total_price"] == 50
        assert bundle["savings"] == 10
        assert bundle["available_quantity"] == 3

        check = (await client.get(
            f"/api/bundles/{bundle['id']}/availability", params={"quantity": 4}, headers=admin_headers)).json()
        assert check["available"] is False
        assert "Insufficient stock for Soap" in check["issues"][0]

    @pytest.mark.asyncio
    async def test_refresh_availability(self, client, admin_headers, make_product):
        soap = await make_product(name="Soap", price=10, stock=7, unit_name="piece")
        oil = await make_product(name="Oil", price=30, stock=100)
        items = [{"product_id": soap.id, "quantity": 2}, {"product_id": oil.id, "quantity": 1}]
        bundle = (await client.post(
            "/api/bundles/", json={"name": "Spa Set", "bundle_price": 40, "items": items}, headers=admin_headers)).json()
        capped = (await client.post(
            "/api/bundles/",
            json={"name": "Limited Set", "bundle_price": 40, "items": items, "max_quantity": 1},
            headers=admin_headers)).json()
        assert capped["available_quantity"] == 1

        await client.post(
            f"/api/products/{soap.id}/adjust-stock", json={"quantity": -2, "reason": "Damaged"}, headers=admin_headers)
        refreshed = await client.post(f"/api/bundles/{bundle['id']}/refresh-availability", headers=admin_headers)
        assert refreshed.status_code == 200
        assert refreshed.json()["available_quantity"] == 2

        await client.delete(f"/api/products/{oil.id}", headers=admin_headers)
        refreshed = (await client.post(
            f"/api/bundles/{bundle['id']}/refresh-availability", headers=admin_headers)).json()
        assert refreshed["available_quantity"] == 0

    @pytest.mark.asyncio
    async def test_fixed_blend_item_needs_template(self, client, admin_headers, make_product):
        oil = await make_product()
        payload = {
            "name": "Broken",
            "bundle_price": 10,
            "items": [{"product_id": oil.id, "product_type": "fixed_blend"}],
        }
        response = await client.post("/api/bundles/", json=payload, headers=admin_headers)
        assert response.status_code == 400


class TestUnitsAndAuditLogs:
    @pytest.mark.asyncio
    async def test_convert(self, client, staff_headers):
        body = (await client.get(
            "/api/units/convert", params={"value": 2, "from_unit": "L", "to_unit": "ml"}, headers=staff_headers)).json()
        assert body["result"] == 2000
        assert body["unit_type"] == "volume"

        bad = await client.get(
            "/api/units/convert", params={"value": 2, "from_unit": "l", "to_unit": "kg"}, headers=staff_headers)
        assert bad.status_code == 400

    @pytest.mark.asyncio
    async def test_audit_log_filters(self, client, admin_headers, make_product):
        product = await make_product()
        await client.put(f"/api/products/{product.id}", json={"name": "Renamed"}, headers=admin_headers)

        logs = (await client.get(
            "/api/audit-logs/", params={"resource_type": "product", "action": "update"}, headers=admin_headers)).json()
        assert logs["total"] == 1
        assert logs["data"][0]["resource_id"] == product.id

        bad = await client.get("/api/audit-logs/", params={"start_date": "01/02/2026"}, headers=admin_headers)
        assert bad.status_code == 400
