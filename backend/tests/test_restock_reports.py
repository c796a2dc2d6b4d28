from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from clinicpos.models import InventoryMovement, Transaction, TransactionItem


async def make_sale(db, user, number, when, items, status="completed", **kwargs):
    transaction = Transaction(
        transaction_number=number,
        type="COMPLETED",
        status=status,
        customer_name=kwargs.pop("customer_name", "Walk-in"),
        transaction_date=when,
        total_amount=sum(i.total_price for i in items),
        created_by=user.id,
        items=items,
        **kwargs)
    db.add(transaction)
    await db.commit()
    return transaction


def sold(name, quantity, unit_price, total, product=None, cost=None, item_type="product", discount=0):
    return TransactionItem(
        product_id=product.id if product else None,
        item_type=item_type,
        name=name,
        quantity=Decimal(str(quantity)),
        unit_price=Decimal(str(unit_price)),
        cost_price=Decimal(str(cost)) if cost is not None else None,
        discount_amount=Decimal(str(discount)),
        total_price=Decimal(str(total)),
        is_service=item_type == "service")


@pytest.fixture
async def sales(db, admin_user, make_product):
    lavender = await make_product("Lavender Oil", stock=50, price=25, cost=8)
    await make_sale(db, admin_user, "TXN-20260301-0001", datetime(2026, 3, 1, 10),
                    [sold("Lavender Oil", 2, 25, 50, product=lavender, cost=8)],
                    customer_email="alice@patient.test", customer_name="Alice Tan", payment_method="card")
    await make_sale(db, admin_user, "TXN-20260301-0002", datetime(2026, 3, 1, 15),
                    [sold("Consultation", 1, 30, 30, item_type="service")],
                    customer_name="Bob", payment_method="cash")
    await make_sale(db, admin_user, "TXN-20260303-0001", datetime(2026, 3, 3, 9),
                    [sold("Lavender Oil", 1, 25, 20, product=lavender, discount=5)],
                    customer_email="ALICE@patient.test", customer_name="Alice Tan", payment_method="card")
    await make_sale(db, admin_user, "TXN-20260301-0003", datetime(2026, 3, 1, 18),
                    [sold("Lavender Oil", 40, 25, 999, product=lavender, cost=8)],
                    status="cancelled", customer_name="Bob")
    return lavender


class TestRestock:
    @pytest.mark.asyncio
    async def test_restock_adds_stock_and_tracks_history(self, client, db, admin_headers, make_product):
        product = await make_product(stock=5)

        response = await client.post(
            "/api/inventory/restock/", json={"product_id": product.id, "quantity": 20}, headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["previous_stock"] == 5
        assert body["new_stock"] == 25
        assert body["quantity_added"] == 20

        await client.post(
            "/api/inventory/restock/",
            json={"product_id": product.id, "quantity": 10, "reference": "PO-1001"},
            headers=admin_headers)

        await db.refresh(product)
        assert product.current_stock == Decimal("35")
        assert product.restock_count == 2
        assert product.average_restock_quantity == Decimal("15")
        assert product.last_restock_date is not None

        result = await db.execute(
            select(InventoryMovement).where(InventoryMovement.product_id == product.id).order_by(InventoryMovement.id)
        )
        moves = result.scalars().all()
        assert [m.movement_type for m in moves] == ["adjustment", "adjustment"]
        assert all(m.reference_type == "restock" for m in moves)
        assert moves[0].reference.startswith("RESTOCK-")
        assert moves[1].reference == "PO-1001"

        detail = (await client.get(f"/api/products/{product.id}", headers=admin_headers)).json()
        assert detail["restock_count"] == 2
        assert detail["average_restock_quantity"] == 15

    @pytest.mark.asyncio
    async def test_restock_errors(self, client, admin_headers, staff_headers, make_product):
        product = await make_product()
        forbidden = await client.post(
            "/api/inventory/restock/", json={"product_id": product.id, "quantity": 1}, headers=staff_headers)
        assert forbidden.status_code == 403

        missing = await client.post(
            "/api/inventory/restock/", json={"product_id": 9999, "quantity": 1}, headers=admin_headers)
        assert missing.status_code == 404

        zero = await client.post(
            "/api/inventory/restock/", json={"product_id": product.id, "quantity": 0}, headers=admin_headers)
        assert zero.status_code == 422

    @pytest.mark.asyncio
    async def test_bulk_restock_reports_each_operation(self, client, db, admin_headers, make_product):
        rose = await make_product("Rose Oil", stock=1)
        mint = await make_product("Mint Oil", stock=2)

        response = await client.post("/api/inventory/restock/bulk", json={
            "batch_reference": "PO-77",
            "operations": [
                {"product_id": rose.id, "quantity": 9},
                {"product_id": 9999, "quantity": 5},
                {"product_id": mint.id, "quantity": -1},
                {"product_id": mint.id, "quantity": 3, "reference": "PO-78"},
            ],
        }, headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["batch_id"] == "PO-77"
        assert body["total_operations"] == 4
        assert body["success_count"] == 2
        assert body["failure_count"] == 2
        assert body["results"][1]["error"] == "Product not found"
        assert body["results"][2]["error"] == "Quantity must be positive"

        await db.refresh(rose)
        await db.refresh(mint)
        assert rose.current_stock == Decimal("10")
        assert mint.current_stock == Decimal("5")

        history = (await client.get("/api/inventory/restock/", headers=admin_headers)).json()
        assert [m["reference"] for m in history] == ["PO-78", "PO-77"]

    @pytest.mark.asyncio
    async def test_suggestions_are_ordered_by_priority(self, client, admin_headers, make_product):
        await make_product("Calm Oil", stock=9, reorder_point=Decimal("10"),
                           restock_count=3, average_restock_quantity=Decimal("12"), restock_frequency=30)
        await make_product("Empty Oil", stock=0, reorder_point=Decimal("10"))
        await make_product("Half Oil", stock=7, reorder_point=Decimal("10"))
        await make_product("Full Oil", stock=50, reorder_point=Decimal("10"))
        await make_product("Retired Oil", stock=0, reorder_point=Decimal("10"), status="inactive")

        response = await client.get("/api/inventory/restock/suggestions", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        items = body["items"]
        assert [i["name"] for i in items] == ["Empty Oil", "Half Oil", "Calm Oil"]
        assert [i["priority"] for i in items] == ["high", "medium", "low"]
        assert items[0]["suggested_quantity"] == 10
        assert items[1]["suggested_quantity"] == 10
        assert items[2]["suggested_quantity"] == 12
        assert items[2]["days_until_stockout"] == 22
        assert items[0]["days_until_stockout"] is None
        assert body["summary"] == {"total": 3, "high": 1, "medium": 1, "low": 1}

    @pytest.mark.asyncio
    async def test_suggestion_threshold_widens_the_net(self, client, admin_headers, make_product):
        await make_product("Nearly Oil", stock=12, reorder_point=Decimal("10"))
        narrow = (await client.get("/api/inventory/restock/suggestions", headers=admin_headers)).json()
        wide = (await client.get(
            "/api/inventory/restock/suggestions", params={"threshold": 1.5}, headers=admin_headers)).json()
        assert narrow["summary"]["total"] == 0
        assert [i["name"] for i in wide["items"]] == ["Nearly Oil"]


class TestSalesReports:
    @pytest.mark.asyncio
    async def test_sales_trends(self, client, admin_headers, sales):
        response = await client.get(
            "/api/reports/sales-trends",
            params={"start_date": "2026-03-01", "end_date": "2026-03-03"},
            headers=admin_headers)
        assert response.status_code == 200
        body = response.json()

        assert [d["date"] for d in body["daily"]] == ["2026-03-01", "2026-03-02", "2026-03-03"]
        first, empty, third = body["daily"]
        assert first == {"date": "2026-03-01", "revenue": 80, "cost": 16, "profit": 64, "transactions": 2}
        assert empty["revenue"] == 0 and empty["transactions"] == 0
        assert third["cost"] == 8
        assert third["profit"] == 12

        summary = body["summary"]
        assert summary["total_revenue"] == 100
        assert summary["total_cost"] == 24
        assert summary["total_transactions"] == 3
        assert summary["average_order_value"] == pytest.approx(33.33)

        assert body["categories"] == [
            {"category": "product", "revenue": 70, "percentage": 70},
            {"category": "service", "revenue": 30, "percentage": 30},
        ]
        assert body["top_products"][0] == {"name": "Lavender Oil", "revenue": 70, "quantity": 3}

    @pytest.mark.asyncio
    async def test_sales_trends_validation(self, client, admin_headers, staff_headers):
        assert (await client.get("/api/reports/sales-trends", headers=staff_headers)).status_code == 403
        bad = await client.get("/api/reports/sales-trends", params={"start_date": "03/01/2026"}, headers=admin_headers)
        assert bad.status_code == 400
        reversed_range = await client.get(
            "/api/reports/sales-trends",
            params={"start_date": "2026-03-05", "end_date": "2026-03-01"},
            headers=admin_headers)
        assert reversed_range.status_code == 400

    @pytest.mark.asyncio
    async def test_item_sales(self, client, admin_headers, sales):
        body = (await client.get("/api/reports/item-sales", headers=admin_headers)).json()
        assert body["total"] == 2
        lavender, consultation = body["items"]

        assert lavender["name"] == "Lavender Oil"
        assert lavender["product_id"] == sales.id
        assert lavender["quantity_sold"] == 3
        assert lavender["total_sales"] == 70
        assert lavender["total_discount"] == 5
        assert lavender["total_cost"] == 24
        assert lavender["average_list_price"] == 25
        assert lavender["margin"] == pytest.approx(0.6571)

        assert consultation["item_type"] == "service"
        assert consultation["total_cost"] is None
        assert consultation["margin"] == -1

    @pytest.mark.asyncio
    async def test_item_sales_filters_and_sorting(self, client, admin_headers, sales):
        filtered = (await client.get(
            "/api/reports/item-sales", params={"min_sales": 50}, headers=admin_headers)).json()
        assert [i["name"] for i in filtered["items"]] == ["Lavender Oil"]

        by_name = (await client.get(
            "/api/reports/item-sales", params={"sort_by": "name", "sort_order": "asc"}, headers=admin_headers)).json()
        assert [i["name"] for i in by_name["items"]] == ["Consultation", "Lavender Oil"]

        ranged = (await client.get(
            "/api/reports/item-sales", params={"start_date": "2026-03-02"}, headers=admin_headers)).json()
        assert ranged["items"][0]["quantity_sold"] == 1

        bad = await client.get("/api/reports/item-sales", params={"sort_by": "colour"}, headers=admin_headers)
        assert bad.status_code == 400

    @pytest.mark.asyncio
    async def test_customer_value(self, client, admin_headers, sales, make_patient):
        alice = await make_patient("Alice", "Tan", membership_tier="gold")

        body = (await client.get("/api/reports/customer-value", headers=admin_headers)).json()
        assert body["total"] == 2
        top, bob = body["items"]

        assert top["customer_key"] == "alice@patient.test"
        assert top["customer_id"] == alice.id
        assert top["membership_tier"] == "gold"
        assert top["total_orders"] == 2
        assert top["total_revenue"] == 70
        assert top["average_order_value"] == 35
        assert top["total_discount"] == 5
        assert top["total_cost"] == 24
        assert top["preferred_payment_method"] == "card"
        assert top["top_products"] == [{"name": "Lavender Oil", "quantity": 3, "revenue": 70}]

        assert bob["customer_key"] == "Bob"
        assert bob["membership_tier"] is None
        assert bob["margin"] == 1

        limited = (await client.get(
            "/api/reports/customer-value", params={"sort_by": "recent", "limit": 1}, headers=admin_headers)).json()
        assert limited["total"] == 2
        assert [c["customer_name"] for c in limited["items"]] == ["Alice Tan"]


class TestInventoryCostReport:
    @pytest.mark.asyncio
    async def test_inventory_cost(self, client, admin_headers, make_product):
        await make_product("Lavender Oil", stock=10, cost=8, category="Oils")
        await make_product("Tea Tree Oil", stock=0, cost=5, category="Oils")
        await make_product("Olive Soap", stock=60, cost=2, category="Soaps")
        await make_product("Old Soap", stock=5, cost=2, category="Soaps", status="discontinued")
        await make_product("Gone Soap", stock=5, cost=2, category="Soaps", is_deleted=True)

        response = await client.get("/api/reports/inventory-cost", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()

        assert [(i["name"], i["stock_status"]) for i in body["items"]] == [
            ("Olive Soap", "overstock"), ("Lavender Oil", "low"), ("Tea Tree Oil", "out"),
        ]
        assert body["items"][0]["total_cost"] == 120

        summary = body["summary"]
        assert summary["total_products"] == 3
        assert summary["total_inventory_value"] == 200
        assert summary["average_cost_per_item"] == pytest.approx(66.67)
        assert summary["low_stock_count"] == 1
        assert summary["out_of_stock_count"] == 1
        assert summary["category_breakdown"] == [
            {"category": "Soaps", "total_cost": 120, "product_count": 1, "percentage": 60},
            {"category": "Oils", "total_cost": 80, "product_count": 2, "percentage": 40},
        ]

    @pytest.mark.asyncio
    async def test_inventory_cost_filters(self, client, admin_headers, make_product):
        await make_product("Lavender Oil", stock=10, cost=8, category="Oils")
        await make_product("Olive Soap", stock=60, cost=2, category="Soaps")

        low = (await client.get(
            "/api/reports/inventory-cost", params={"status": "low"}, headers=admin_headers)).json()
        assert [i["name"] for i in low["items"]] == ["Lavender Oil"]

        soaps = (await client.get(
            "/api/reports/inventory-cost", params={"category": "Soaps", "sort_by": "name"}, headers=admin_headers)).json()
        assert [i["name"] for i in soaps["items"]] == ["Olive Soap"]

        bad = await client.get("/api/reports/inventory-cost", params={"status": "plenty"}, headers=admin_headers)
        assert bad.status_code == 400
