"""
HTTP route tests.

Requests run in their own app context and session, so tests read state back
through the API (or after expire_all) rather than from fixture objects.
"""

import pytest


pytestmark = pytest.mark.api


class TestProductRoutes:
    def test_create_with_opening_balance(self, client, db_session):
        resp = client.post("/api/products", json={
            "name": "Cocoa", "price": "4.20", "barcode": "COC-1", "initial_quantity": 7,
        })
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["price"] == "4.20"
        assert product["stock_quantity"] == 7
        assert product["stock_status"] == "in_stock"

        movements = client.get(f"/api/stock/movements?product_id={product['id']}").get_json()
        assert movements["count"] == 1
        assert movements["items"][0]["reason"] == "opening balance"

    @pytest.mark.parametrize("payload,fragment", [
        ({"price": "1"}, "Missing required fields"),
        ({"name": "X", "price": "-1"}, "price must be >= 0"),
        ({"name": "X", "price": "1", "stock_quantity": 5}, "Field not allowed"),
        ({"name": "X", "price": "1", "discount": "120"}, "percentage discount"),
    ])
    def test_create_validation(self, client, db_session, payload, fragment):
        resp = client.post("/api/products", json=payload)
        assert resp.status_code == 400
        assert fragment in resp.get_json()["error"]

    def test_duplicate_barcode_is_conflict(self, client, db_session, tea):
        resp = client.post("/api/products", json={"name": "Other", "price": "1", "barcode": "TEA-001"})
        assert resp.status_code == 409

    def test_patch_rejects_stock_quantity(self, client, db_session, tea):
        resp = client.patch(f"/api/products/{tea.id}", json={"stock_quantity": 100})
        assert resp.status_code == 400
        assert "stock ledger" in resp.get_json()["error"]

    def test_barcode_lookup(self, client, db_session, tea):
        resp = client.get("/api/products/barcode/TEA-001")
        assert resp.status_code == 200
        assert resp.get_json()["product"]["id"] == tea.id

        missing = client.get("/api/products/barcode/NOPE-404")
        assert missing.status_code == 404
        assert missing.get_json()["details"] == {"barcode": "NOPE-404"}

    def test_patch_and_get(self, client, db_session, tea):
        resp = client.patch(f"/api/products/{tea.id}", json={"min_stock_level": 10})
        assert resp.status_code == 200
        assert resp.get_json()["product"]["stock_status"] == "low_stock"

        assert client.get(f"/api/products/{tea.id}").get_json()["product"]["min_stock_level"] == 10
        assert client.get("/api/products/missing").status_code == 404

    def test_list_and_low_stock(self, client, db_session, tea, sugar):
        listing = client.get("/api/products?search=sugar").get_json()
        assert [p["name"] for p in listing["items"]] == ["Sugar 1kg"]

        low = client.get("/api/products/low-stock").get_json()
        assert [p["name"] for p in low["items"]] == ["Sugar 1kg"]

        assert client.get("/api/products?stock_status=bogus").status_code == 400


class TestStockRoutes:
    def test_movement_lifecycle(self, client, db_session, tea):
        resp = client.post("/api/stock/movements", json={
            "product_id": tea.id, "type": "in", "quantity": 10, "cost": "1.10", "reason": "delivery",
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["balance"] == 15
        assert body["movement"]["total_cost"] == "11.00"

        resp = client.post("/api/stock/movements", json={"product_id": tea.id, "type": "out", "quantity": 20})
        assert resp.status_code == 409
        assert resp.get_json()["details"]["available"] == 15

        resp = client.post(f"/api/stock/movements/{body['id']}/reverse", json={"created_by": "mgr"})
        assert resp.status_code == 201
        assert resp.get_json()["balance"] == 5

        resp = client.post(f"/api/stock/movements/{body['id']}/reverse")
        assert resp.status_code == 409

        balance = client.get(f"/api/stock/{tea.id}/balance").get_json()
        assert balance["stock_quantity"] == 5
        assert balance["consistent"] is True

    @pytest.mark.parametrize("payload", [
        {"type": "in", "quantity": 0},
        {"type": "adjust", "quantity": 1},
        {"type": "in", "quantity": 1, "direction": 1},
        {"type": "move", "quantity": 1},
        {"type": "in", "quantity": 1.5},
    ])
    def test_movement_validation(self, client, db_session, tea, payload):
        resp = client.post("/api/stock/movements", json={"product_id": tea.id, **payload})
        assert resp.status_code == 400

    def test_unknown_product(self, client, db_session):
        resp = client.post("/api/stock/movements", json={"product_id": "missing", "type": "in", "quantity": 1})
        assert resp.status_code == 404

    def test_delete_and_audit(self, client, db_session, tea):
        created = client.post("/api/stock/movements", json={
            "product_id": tea.id, "type": "adjust", "quantity": 2, "direction": -1,
        }).get_json()

        assert client.delete(f"/api/stock/movements/{created['id']}").status_code == 200
        assert client.delete(f"/api/stock/movements/{created['id']}").status_code == 404

        audit = client.get("/api/stock/audit").get_json()
        assert audit == {"ok": True, "mismatches": []}


class TestBillingRoutes:
    def test_summary_does_not_write(self, client, db_session, tea):
        resp = client.post("/api/billing/summary", json={
            "items": [{"product_id": tea.id, "quantity": 2}],
            "tax_rate_percent": 15,
        })
        assert resp.status_code == 200
        assert resp.get_json()["summary"]["total"] == "207.00"
        assert client.get(f"/api/stock/{tea.id}/balance").get_json()["stock_quantity"] == 5

    @pytest.mark.smoke
    def test_checkout_void_flow(self, client, db_session, tea):
        resp = client.post("/api/billing/checkout", json={
            "items": [{"product_id": tea.id, "quantity": 2}],
            "payment": {"method": "cash", "amount": "250"},
            "tax_rate_percent": 15,
            "cashier_id": "c1",
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["change"] == "43.00"
        assert body["invoice_number"] == "INV-000001"

        invoice = client.get(f"/api/invoices/{body['invoice_id']}").get_json()["invoice"]
        assert invoice["total"] == "207.00"
        assert invoice["lines"][0]["unit_price"] == "90.00"
        assert client.get(f"/api/stock/{tea.id}/balance").get_json()["stock_quantity"] == 3

        resp = client.post(f"/api/invoices/{body['invoice_id']}/void", json={"voided_by": "mgr"})
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["status"] == "void"
        assert client.get(f"/api/stock/{tea.id}/balance").get_json()["stock_quantity"] == 5

        resp = client.post(f"/api/invoices/{body['invoice_id']}/void")
        assert resp.status_code == 409

    def test_checkout_errors(self, client, db_session, tea):
        short = client.post("/api/billing/checkout", json={
            "items": [{"product_id": tea.id, "quantity": 1}],
            "payment": {"method": "cash", "amount": "1"},
        })
        assert short.status_code == 400
        assert short.get_json()["details"]["short_by"] == "89.00"

        stock = client.post("/api/billing/checkout", json={
            "items": [{"product_id": tea.id, "quantity": 6}],
            "payment": {"method": "cash", "amount": "1000"},
        })
        assert stock.status_code == 409

        assert client.get("/api/invoices").get_json()["count"] == 0

    def test_account_settle(self, client, db_session, tea):
        body = client.post("/api/billing/checkout", json={
            "items": [{"product_id": tea.id, "quantity": 1}],
            "payment": {"method": "account"},
            "customer_id": "cust-1",
        }).get_json()
        assert body["status"] == "pending"
        assert body["balance_due"] == "90.00"

        pending = client.get("/api/invoices?status=pending").get_json()
        assert pending["count"] == 1

        assert client.post(f"/api/invoices/{body['invoice_id']}/settle", json={}).status_code == 400
        resp = client.post(f"/api/invoices/{body['invoice_id']}/settle", json={"amount": "100"})
        assert resp.status_code == 200
        assert resp.get_json()["change"] == "10.00"
        assert resp.get_json()["invoice"]["status"] == "paid"


class TestSystemRoutes:
    @pytest.mark.smoke
    def test_health(self, client, db_session, tea):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["products"] == 1
