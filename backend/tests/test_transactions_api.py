import os
import re
import threading
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from clinicpos.models import InventoryMovement, Transaction
from clinicpos.services.email_service import email_service
from clinicpos.services.file_storage import InvalidFilenameError, get_storage
from clinicpos.services.invoice_generator import InvoiceGenerator

from conftest import auth_headers, item_payload

API = "/api/transactions"


def transaction_payload(product, **overrides):
    payload = {
        "customer_name": "John Smith",
        "items": [item_payload(product, quantity=2)],
        "payment_method": "cash",
        "payment_status": "paid",
        "status": "completed",
    }
    payload.update(overrides)
    return payload


async def stock_of(db, product):
    await db.refresh(product)
    return product.current_stock


class TestCreateTransaction:
    @pytest.mark.asyncio
    async def test_create_deducts_stock_and_generates_invoice(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10, price=20)

        response = await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)
        assert response.status_code == 201, response.text
        body = response.json()

        assert re.fullmatch(r"TXN-\d{8}-0001", body["transaction_number"])
        assert body["subtotal"] == 40
        assert body["total_amount"] == 40
        assert body["items"][0]["total_price"] == 40
        assert body["invoice_generating"] is True
        assert body["inventory_errors"] == []
        assert await stock_of(db, product) == Decimal("8")

        # The background task has run by the time the client returns
        detail = (await client.get(f"{API}/{body['id']}", headers=admin_headers)).json()
        assert detail["invoice_status"] == "completed"
        assert detail["invoice_generated"] is True
        assert detail["invoice_filename"].startswith(f"{body['transaction_number']}_John_Smith_")
        assert os.path.exists(detail["invoice_path"])

    @pytest.mark.asyncio
    async def test_numbers_increase_per_day(self, client, admin_headers, make_product):
        product = await make_product()
        first = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        second = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        assert first["transaction_number"].endswith("-0001")
        assert second["transaction_number"].endswith("-0002")

    @pytest.mark.asyncio
    async def test_draft_placeholder_number_is_replaced(self, client, admin_headers, make_product):
        product = await make_product()
        payload = transaction_payload(product, transaction_number="DRAFT-1700000000")
        body = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()
        assert body["transaction_number"].startswith("TXN-")

    @pytest.mark.asyncio
    async def test_customer_name_required(self, client, admin_headers, make_product):
        product = await make_product()
        response = await client.post(f"{API}/", json=transaction_payload(product, customer_name=" "), headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Customer name is required"

    @pytest.mark.asyncio
    async def test_items_required(self, client, admin_headers):
        response = await client.post(f"{API}/", json={"customer_name": "John", "items": []}, headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_staff_cannot_give_item_discounts(self, client, staff_headers, make_product):
        product = await make_product(price=20)
        payload = transaction_payload(product, items=[item_payload(product, discount=2)])
        response = await client.post(f"{API}/", json=payload, headers=staff_headers)
        assert response.status_code == 403
        assert response.json()["code"] == "DISCOUNT_LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_bill_discount_over_role_limit(self, client, staff_headers, make_product):
        product = await make_product(price=100)
        payload = transaction_payload(product, items=[item_payload(product)], discount_amount=20)
        response = await client.post(f"{API}/", json=payload, headers=staff_headers)
        assert response.status_code == 403
        assert "10%" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_member_discount_over_tier_limit(self, client, admin_headers, make_product, make_patient):
        product = await make_product(price=100)
        patient = await make_patient(discount=10)
        payload = transaction_payload(
            product, customer_id=patient.id, items=[item_payload(product, discount=20)])
        response = await client.post(f"{API}/", json=payload, headers=admin_headers)
        assert response.status_code == 400
        errors = response.json()["details"]["errors"]
        assert errors[0]["code"] == "EXCEEDS_TIER_LIMIT"

    @pytest.mark.asyncio
    async def test_member_discount_within_tier(self, client, admin_headers, make_product, make_patient):
        product = await make_product(price=100)
        patient = await make_patient(discount=10)
        payload = transaction_payload(
            product, customer_id=patient.id, items=[item_payload(product, quantity=1, discount=10)])
        response = await client.post(f"{API}/", json=payload, headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["total_amount"] == 90

    @pytest.mark.asyncio
    async def test_draft_does_not_touch_stock(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        payload = transaction_payload(product, type="DRAFT", status="draft", payment_status="pending")
        body = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()
        assert body["invoice_generating"] is False
        assert body["invoice_status"] == "none"
        assert await stock_of(db, product) == Decimal("10")

    @pytest.mark.asyncio
    async def test_paid_draft_is_completed(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        payload = transaction_payload(product, type="DRAFT", status="draft", payment_status="paid")
        body = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()
        assert body["type"] == "COMPLETED"
        assert body["status"] == "completed"
        assert await stock_of(db, product) == Decimal("8")


class TestUpdateAndCancel:
    @pytest.mark.asyncio
    async def test_cancel_reverses_inventory(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        assert await stock_of(db, product) == Decimal("8")

        response = await client.post(f"{API}/{created['id']}/cancel", json={"reason": "Wrong patient"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert await stock_of(db, product) == Decimal("10")

        again = await client.post(f"{API}/{created['id']}/cancel", json={}, headers=admin_headers)
        assert again.status_code == 400

    @pytest.mark.asyncio
    async def test_update_to_cancelled_reverses_inventory(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()

        response = await client.put(f"{API}/{created['id']}", json={"status": "cancelled"}, headers=admin_headers)
        assert response.status_code == 200
        assert await stock_of(db, product) == Decimal("10")
        result = await db.execute(
            select(InventoryMovement).where(InventoryMovement.reference == f"CANCEL-{created['transaction_number']}")
        )
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_completing_a_draft_deducts_inventory(self, client, db, admin_headers, admin_user, make_product):
        product = await make_product(stock=10)
        payload = transaction_payload(product, type="DRAFT", status="draft", payment_status="pending")
        draft = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()

        response = await client.put(f"{API}/{draft['id']}", json={"status": "completed"}, headers=admin_headers)
        body = response.json()
        assert body["type"] == "COMPLETED"
        assert body["last_modified_by"] == admin_user.id
        assert await stock_of(db, product) == Decimal("8")

    @pytest.mark.asyncio
    async def test_items_update_recomputes_totals(self, client, admin_headers, make_product):
        product = await make_product(price=10)
        payload = transaction_payload(product, type="DRAFT", status="draft", payment_status="pending")
        draft = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()

        response = await client.put(
            f"{API}/{draft['id']}",
            json={"items": [item_payload(product, quantity=5)], "discount_amount": 5},
            headers=admin_headers)
        body = response.json()
        assert body["subtotal"] == 50
        assert body["total_amount"] == 45
        assert len(body["items"]) == 1

    @pytest.mark.asyncio
    async def test_delete_restores_stock_and_invoice_file(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        detail = (await client.get(f"{API}/{created['id']}", headers=admin_headers)).json()
        assert os.path.exists(detail["invoice_path"])

        response = await client.delete(f"{API}/{created['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert not os.path.exists(detail["invoice_path"])
        assert await stock_of(db, product) == Decimal("10")
        assert (await client.get(f"{API}/{created['id']}", headers=admin_headers)).status_code == 404

    @pytest.mark.asyncio
    async def test_deleted_number_is_not_reused(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        first = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        await client.delete(f"{API}/{first['id']}", headers=admin_headers)
        assert await stock_of(db, product) == Decimal("10")

        second = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        assert second["transaction_number"] != first["transaction_number"]
        assert second["inventory_warnings"] == []
        assert await stock_of(db, product) == Decimal("8")

        await client.post(f"{API}/{second['id']}/cancel", json={}, headers=admin_headers)
        assert await stock_of(db, product) == Decimal("10")

    @pytest.mark.asyncio
    async def test_number_of_deleted_transaction_is_rejected(self, client, admin_headers, make_product):
        product = await make_product()
        first = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        await client.delete(f"{API}/{first['id']}", headers=admin_headers)

        payload = transaction_payload(product, transaction_number=first["transaction_number"])
        response = await client.post(f"{API}/", json=payload, headers=admin_headers)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_update_cannot_exceed_member_tier(self, client, admin_headers, make_product, make_patient):
        product = await make_product(price=100)
        patient = await make_patient(discount=10)
        payload = transaction_payload(
            product, customer_id=patient.id, items=[item_payload(product, quantity=1, discount=10)])
        created = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()

        response = await client.put(
            f"{API}/{created['id']}",
            json={"items": [item_payload(product, quantity=1, discount=40)]},
            headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["details"]["errors"][0]["code"] == "EXCEEDS_TIER_LIMIT"

        detail = (await client.get(f"{API}/{created['id']}", headers=admin_headers)).json()
        assert detail["total_amount"] == 90

    @pytest.mark.asyncio
    async def test_switching_to_member_rechecks_discounts(self, client, admin_headers, make_product, make_patient):
        product = await make_product(price=100)
        patient = await make_patient(discount=5)
        payload = transaction_payload(product, items=[item_payload(product, quantity=1, discount=20)])
        created = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()

        response = await client.put(
            f"{API}/{created['id']}", json={"customer_id": patient.id}, headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_custom_blend_sale_deducts_ingredients(self, client, db, admin_headers, make_product):
        rose = await make_product(name="Rose", stock=50)
        item = {
            "item_type": "custom_blend",
            "name": "Custom calm blend",
            "quantity": 1,
            "unit_price": 45,
            "custom_blend_data": {"ingredients": [
                {"product_id": rose.id, "name": "Rose", "quantity": 4, "unit_name": "ml"},
            ]},
        }
        created = (await client.post(
            f"{API}/", json=transaction_payload(rose, items=[item]), headers=admin_headers)).json()
        assert created["inventory_errors"] == []
        assert await stock_of(db, rose) == Decimal("46")

        result = await db.execute(
            select(InventoryMovement).where(InventoryMovement.reference == created["transaction_number"])
        )
        assert [m.movement_type for m in result.scalars().all()] == ["custom_blend"]

    @pytest.mark.asyncio
    async def test_duplicate_creates_draft(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()

        response = await client.post(f"{API}/{created['id']}/duplicate", headers=admin_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["type"] == "DRAFT"
        assert body["status"] == "draft"
        assert body["customer_name"] == "John Smith"
        assert body["items"][0]["product_id"] == product.id
        assert body["transaction_number"] != created["transaction_number"]
        assert await stock_of(db, product) == Decimal("8")


class TestListTransactions:
    @pytest.mark.asyncio
    async def test_search_and_pagination(self, client, admin_headers, make_product):
        product = await make_product()
        for name in ("Alice Lim", "Bob Tan", "Alice Wong"):
            await client.post(f"{API}/", json=transaction_payload(product, customer_name=name), headers=admin_headers)

        response = await client.get(f"{API}/", params={"search": "alice", "limit": 1}, headers=admin_headers)
        body = response.json()
        assert body["total"] == 2
        assert len(body["data"]) == 1
        assert body["data"][0]["customer_name"] == "Alice Wong"
        assert body["pagination"]["total_pages"] == 2
        assert body["pagination"]["has_next_page"] is True

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.get(f"{API}/")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_transaction(self, client, admin_headers):
        response = await client.get(f"{API}/999", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Transaction not found"


class TestDrafts:
    @pytest.mark.asyncio
    async def test_autosave_upserts_by_draft_id(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        payload = {
            "draft_id": "draft-abc",
            "draft_name": "Morning walk-in",
            "form_data": {"items": [item_payload(product)], "discount": 0},
        }
        first = (await client.post(f"{API}/drafts/autosave", json=payload, headers=admin_headers)).json()
        payload["form_data"]["customer_name"] = "Jane"
        second = (await client.post(f"{API}/drafts/autosave", json=payload, headers=admin_headers)).json()
        assert first["transaction_id"] == second["transaction_id"]

        drafts = (await client.get(f"{API}/drafts", headers=admin_headers)).json()
        assert len(drafts) == 1
        assert drafts[0]["customer_name"] == "Jane"
        assert drafts[0]["notes"] == "Draft: Morning walk-in"
        assert await stock_of(db, product) == Decimal("10")

    @pytest.mark.asyncio
    async def test_autosave_defaults(self, client, admin_headers):
        payload = {"draft_id": "draft-empty", "form_data": {}}
        saved = (await client.post(f"{API}/drafts/autosave", json=payload, headers=admin_headers)).json()
        detail = (await client.get(f"{API}/{saved['transaction_id']}", headers=admin_headers)).json()
        assert detail["customer_name"] == "Draft Customer"
        assert detail["notes"] == "Draft: Auto-saved draft"

    @pytest.mark.asyncio
    async def test_drafts_are_per_user(self, client, admin_headers, staff_headers):
        payload = {"draft_id": "shared-id", "form_data": {}}
        mine = (await client.post(f"{API}/drafts/autosave", json=payload, headers=admin_headers)).json()
        theirs = (await client.post(f"{API}/drafts/autosave", json=payload, headers=staff_headers)).json()
        assert mine["transaction_id"] != theirs["transaction_id"]
        assert len((await client.get(f"{API}/drafts", headers=staff_headers)).json()) == 1

    @pytest.mark.asyncio
    async def test_delete_draft(self, client, admin_headers):
        await client.post(f"{API}/drafts/autosave", json={"draft_id": "gone", "form_data": {}}, headers=admin_headers)
        assert (await client.delete(f"{API}/drafts/gone", headers=admin_headers)).status_code == 200
        assert (await client.delete(f"{API}/drafts/gone", headers=admin_headers)).status_code == 404

    @pytest.mark.asyncio
    async def test_completed_draft_cannot_be_autosaved(self, client, db, admin_headers, make_product):
        product = await make_product(stock=10)
        payload = {"draft_id": "draft-done", "form_data": {"items": [item_payload(product, quantity=2)]}}
        saved = (await client.post(f"{API}/drafts/autosave", json=payload, headers=admin_headers)).json()
        await client.put(f"{API}/{saved['transaction_id']}", json={"status": "completed"}, headers=admin_headers)
        assert await stock_of(db, product) == Decimal("8")

        response = await client.post(f"{API}/drafts/autosave", json=payload, headers=admin_headers)
        assert response.status_code == 409

        detail = (await client.get(f"{API}/{saved['transaction_id']}", headers=admin_headers)).json()
        assert detail["type"] == "COMPLETED"
        assert detail["status"] == "completed"
        assert await stock_of(db, product) == Decimal("8")


class TestInvoiceEndpoints:
    @pytest.mark.asyncio
    async def test_pdf_is_rendered_off_the_event_loop(self, client, admin_headers, make_product, monkeypatch):
        product = await make_product()
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()

        threads = []
        render = InvoiceGenerator.generate

        def recording_generate(self, data, output_path):
            threads.append(threading.get_ident())
            return render(self, data, output_path)

        monkeypatch.setattr(InvoiceGenerator, "generate", recording_generate)
        response = await client.post(f"{API}/{created['id']}/invoice", headers=admin_headers)
        assert response.status_code == 200
        assert threads and threading.get_ident() not in threads

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["..secret.pdf", "invoice.txt", "a%5Cb.pdf"])
    async def test_download_rejects_bad_names(self, client, filename):
        response = await client.get(f"/api/invoices/{filename}")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid filename"

    @pytest.mark.asyncio
    async def test_download_missing_invoice(self, client):
        response = await client.get("/api/invoices/TXN-20260101-0001_Nobody_01012026.pdf")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_download_serves_stored_invoice(self, client, admin_headers, make_product):
        product = await make_product()
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        detail = (await client.get(f"{API}/{created['id']}", headers=admin_headers)).json()

        response = await client.get(f"/api/invoices/{detail['invoice_filename']}")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"] == f'inline; filename="{detail["invoice_filename"]}"'
        assert response.content.startswith(b"%PDF")

    def test_storage_rejects_directories(self, session_factory):
        storage = get_storage()
        for name in ("../x.pdf", "sub/x.pdf", "sub\\x.pdf", "x.PDF.exe", ""):
            with pytest.raises(InvalidFilenameError):
                storage.path_for(name)
        assert storage.path_for("x.PDF").name == "x.PDF"

    @pytest.mark.asyncio
    async def test_regenerate_invoice(self, client, admin_headers, make_product):
        product = await make_product()
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()

        response = await client.post(f"{API}/{created['id']}/invoice", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["invoice_number"] == created["transaction_number"]
        assert body["download_url"].startswith("/api/invoices/")
        assert body["email_sent"] is False

        download = await client.get(body["download_url"])
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/pdf"
        assert download.headers["content-disposition"].startswith("inline")
        assert download.content.startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_regenerate_emails_when_enabled(self, client, admin_headers, make_product, monkeypatch):
        product = await make_product()
        send = AsyncMock(return_value=True)
        monkeypatch.setattr(email_service, "is_enabled", lambda: True)
        monkeypatch.setattr(email_service, "send_invoice_email", send)

        payload = transaction_payload(product, customer_email="john@example.com")
        created = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()
        send.reset_mock()

        body = (await client.post(f"{API}/{created['id']}/invoice", headers=admin_headers)).json()
        assert body["email_sent"] is True
        send.assert_awaited_once()
        assert send.await_args.kwargs["customer_email"] == "john@example.com"

    @pytest.mark.asyncio
    async def test_send_email_requires_address(self, client, admin_headers, make_product):
        product = await make_product()
        created = (await client.post(f"{API}/", json=transaction_payload(product), headers=admin_headers)).json()
        response = await client.post(f"{API}/{created['id']}/send-invoice-email", headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_send_email_when_disabled(self, client, admin_headers, make_product):
        product = await make_product()
        payload = transaction_payload(product, customer_email="john@example.com")
        created = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()
        response = await client.post(f"{API}/{created['id']}/send-invoice-email", headers=admin_headers)
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_send_email(self, client, db, admin_headers, make_product, monkeypatch):
        product = await make_product()
        payload = transaction_payload(product, customer_email="john@example.com")
        created = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()

        monkeypatch.setattr(email_service, "is_enabled", lambda: True)
        monkeypatch.setattr(email_service, "send_invoice_email", AsyncMock(return_value=True))
        response = await client.post(f"{API}/{created['id']}/send-invoice-email", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["email_sent"] is True
        assert body["recipient"] == "john@example.com"
        assert body["sent_at"] is not None

        transaction = await db.get(Transaction, created["id"])
        await db.refresh(transaction)
        assert transaction.invoice_email_sent is True

    @pytest.mark.asyncio
    async def test_send_email_returning_false(self, client, admin_headers, make_product, monkeypatch):
        product = await make_product()
        payload = transaction_payload(product, customer_email="john@example.com")
        created = (await client.post(f"{API}/", json=payload, headers=admin_headers)).json()

        monkeypatch.setattr(email_service, "is_enabled", lambda: True)
        monkeypatch.setattr(email_service, "send_invoice_email", AsyncMock(return_value=False))
        response = await client.post(f"{API}/{created['id']}/send-invoice-email", headers=admin_headers)
        assert response.status_code == 503
