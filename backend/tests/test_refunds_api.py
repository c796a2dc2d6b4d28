from decimal import Decimal

import pytest

from conftest import item_payload

API = "/api/refunds"


async def sale(client, headers, *lines, **overrides):
    payload = {
        "customer_name": "John Smith",
        "items": list(lines),
        "payment_status": "paid",
        "status": "completed",
    }
    payload.update(overrides)
    response = await client.post("/api/transactions/", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def refund_payload(transaction, product, quantity=1, **overrides):
    payload = {
        "transaction_id": transaction["id"],
        "items": [{"product_id": product.id, "refund_quantity": quantity, "reason": "Leaking bottle"}],
        "refund_method": "cash",
        "refund_reason": "defective_product",
    }
    payload.update(overrides)
    return payload


class TestCreateRefund:
    @pytest.mark.asyncio
    async def test_partial_refund(self, client, admin_headers, make_product):
        product = await make_product(price=20)
        transaction = await sale(client, admin_headers, item_payload(product, quantity=3))

        response = await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)
        assert response.status_code == 201, response.text
        refund = response.json()
        assert refund["status"] == "pending"
        assert refund["refund_type"] == "partial"
        assert refund["refund_amount"] == 20
        assert refund["items"][0]["product_name"] == product.name

        detail = (await client.get(f"/api/transactions/{transaction['id']}", headers=admin_headers)).json()
        assert detail["status"] == "partially_refunded"
        assert detail["refund_status"] == "partial"
        assert detail["refund_count"] == 1
        assert detail["total_refunded"] == 20
        assert detail["refundable_amount"] == 40

    @pytest.mark.asyncio
    async def test_full_refund(self, client, admin_headers, make_product):
        product = await make_product(price=20)
        transaction = await sale(client, admin_headers, item_payload(product, quantity=2))

        refund = (await client.post(
            f"{API}/", json=refund_payload(transaction, product, quantity=2), headers=admin_headers)).json()
        assert refund["refund_type"] == "full"

        detail = (await client.get(f"/api/transactions/{transaction['id']}", headers=admin_headers)).json()
        assert detail["status"] == "refunded"

    @pytest.mark.asyncio
    async def test_quantity_over_purchased(self, client, admin_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product, quantity=1))
        response = await client.post(
            f"{API}/", json=refund_payload(transaction, product, quantity=2), headers=admin_headers)
        assert response.status_code == 400
        assert "exceeds refundable quantity" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_product_not_in_transaction(self, client, admin_headers, make_product):
        product = await make_product()
        other = await make_product(name="Tea Tree")
        transaction = await sale(client, admin_headers, item_payload(product))
        response = await client.post(f"{API}/", json=refund_payload(transaction, other), headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rapid_duplicate_is_rejected(self, client, admin_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product, quantity=5))
        first = await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)
        assert first.status_code == 201
        second = await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_cancelled_transaction_cannot_be_refunded(self, client, admin_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product))
        await client.post(f"/api/transactions/{transaction['id']}/cancel", json={}, headers=admin_headers)
        response = await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_transaction(self, client, admin_headers, make_product):
        product = await make_product()
        response = await client.post(f"{API}/", json=refund_payload({"id": 999}, product), headers=admin_headers)
        assert response.status_code == 404


class TestRefundWorkflow:
    @pytest.mark.asyncio
    async def test_approve_process_complete(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        transaction = await sale(client, admin_headers, item_payload(product, quantity=2))
        refund = (await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)).json()

        approved = await client.post(
            f"{API}/{refund['id']}/approve", json={"approval_notes": "ok"}, headers=admin_headers)
        assert approved.json()["status"] == "approved"

        processed = await client.post(f"{API}/{refund['id']}/process", headers=admin_headers)
        assert processed.json()["status"] == "processing"
        await db.refresh(product)
        assert product.current_stock == Decimal("9")

        completed = await client.post(
            f"{API}/{refund['id']}/complete",
            json={"payment_details": {"reference": "CASH-1"}},
            headers=admin_headers)
        body = completed.json()
        assert body["status"] == "completed"
        assert body["payment_details"]["method"] == "cash"
        assert body["payment_details"]["amount"] == 20

        cancel = await client.post(f"{API}/{refund['id']}/cancel", json={}, headers=admin_headers)
        assert cancel.status_code == 400

    @pytest.mark.asyncio
    async def test_process_requires_approval(self, client, admin_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product))
        refund = (await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)).json()
        response = await client.post(f"{API}/{refund['id']}/process", headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reject_resets_transaction(self, client, admin_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product, quantity=2))
        refund = (await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)).json()

        response = await client.post(
            f"{API}/{refund['id']}/reject", json={"rejection_reason": "Used product"}, headers=admin_headers)
        assert response.json()["status"] == "rejected"

        detail = (await client.get(f"/api/transactions/{transaction['id']}", headers=admin_headers)).json()
        assert detail["status"] == "completed"
        assert detail["refund_status"] == "none"
        assert detail["refund_count"] == 0
        assert detail["total_refunded"] == 0

    @pytest.mark.asyncio
    async def test_staff_cannot_approve(self, client, admin_headers, staff_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product))
        refund = (await client.post(f"{API}/", json=refund_payload(transaction, product), headers=staff_headers)).json()
        response = await client.post(f"{API}/{refund['id']}/approve", json={}, headers=staff_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_refunded_transaction_cannot_be_deleted(self, client, admin_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product, quantity=2))
        await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)
        response = await client.delete(f"/api/transactions/{transaction['id']}", headers=admin_headers)
        assert response.status_code == 409


class TestRefundQueries:
    @pytest.mark.asyncio
    async def test_eligibility(self, client, admin_headers, make_product):
        oil = await make_product(price=20)
        soap = await make_product(name="Soap", price=5, unit_name="piece")
        transaction = await sale(
            client, admin_headers, item_payload(oil, quantity=2), item_payload(soap, quantity=1))
        await client.post(f"{API}/", json=refund_payload(transaction, soap), headers=admin_headers)

        body = (await client.get(f"{API}/eligibility/{transaction['id']}", headers=admin_headers)).json()
        assert body["eligible"] is True
        assert body["max_refundable_amount"] == 40
        assert [item["product_id"] for item in body["refundable_items"]] == [oil.id]

    @pytest.mark.asyncio
    async def test_eligibility_of_cancelled(self, client, admin_headers, make_product):
        product = await make_product()
        transaction = await sale(client, admin_headers, item_payload(product))
        await client.post(f"/api/transactions/{transaction['id']}/cancel", json={}, headers=admin_headers)
        body = (await client.get(f"{API}/eligibility/{transaction['id']}", headers=admin_headers)).json()
        assert body["eligible"] is False
        assert body["reason"] == "Transaction is cancelled"

    @pytest.mark.asyncio
    async def test_list_and_statistics(self, client, admin_headers, staff_headers, make_product):
        product = await make_product(price=10)
        transaction = await sale(client, admin_headers, item_payload(product, quantity=4))
        await client.post(f"{API}/", json=refund_payload(transaction, product), headers=admin_headers)

        listed = (await client.get(f"{API}/", params={"status": "pending"}, headers=admin_headers)).json()
        assert listed["total"] == 1

        by_transaction = (await client.get(f"{API}/transaction/{transaction['id']}", headers=admin_headers)).json()
        assert len(by_transaction) == 1

        stats = (await client.get(f"{API}/statistics", headers=admin_headers)).json()
        assert stats["total_refunds"] == 1
        assert stats["total_amount"] == 10
        assert stats["refunds_by_status"] == {"pending": 1}
        assert stats["refunds_by_reason"] == {"defective_product": 1}

        assert (await client.get(f"{API}/statistics", headers=staff_headers)).status_code == 403
