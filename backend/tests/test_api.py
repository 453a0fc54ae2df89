"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Capabilities are enforced per role (403)
- Sale, cancel, report, inventory and customer endpoints map errors to
  stable kinds and status codes
"""

import pytest

from conftest import auth_headers, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/sales"),
            ("GET", "/api/sales/1"),
            ("PUT", "/api/sales/1/cancel"),
            ("POST", "/api/reports/daily"),
            ("GET", "/api/reports/daily/2026-10-18"),
            ("GET", "/api/products"),
            ("POST", "/api/inventory/adjust"),
            ("GET", "/api/inventory/low-stock"),
            ("POST", "/api/customers"),
            ("GET", "/api/customers"),
            ("PUT", "/api/products/1"),
            ("DELETE", "/api/products/1"),
            ("GET", "/api/analytics/summary"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_bogus_token(self, client, db_session):
        resp = client.get("/api/products", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401


class TestAuth:

    def test_login_and_me(self, client, cashier_user):
        token = get_auth_token(client, "cashier")
        assert token

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "cashier"
        assert "CREATE_SALE" in resp.json["permissions"]
        assert "CANCEL_ANY_SALE" not in resp.json["permissions"]

    def test_bad_password(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "wrong"})
        assert resp.status_code == 401

    def test_logout_revokes_token(self, client, cashier_user):
        token = get_auth_token(client, "cashier")
        headers = auth_headers(token)

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


# =============================================================================
# SALES
# =============================================================================


class TestSalesApi:

    def _create(self, client, headers, laptop, cable, **extra):
        body = {
            "items": [
                {"product_id": laptop.id, "quantity": 1},
                {"product_id": cable.id, "quantity": 2},
            ],
            "payment_method": "card",
            **extra,
        }
        return client.post("/api/sales", json=body, headers=headers)

    def test_cashier_creates_sale(self, client, cashier_headers, loyal_customer, laptop, cable):
        resp = self._create(client, cashier_headers, laptop, cable, customer_phone="555-0199")

        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["status"] == "completed"
        assert sale["total"] == "2152.67"
        assert sale["discount"] == "103.00"
        assert sale["sale_number"].startswith("TXN-")
        assert len(sale["lines"]) == 2

        receipt = resp.json["receipt"]
        assert receipt["receipt_number"].startswith("RCP-")
        assert receipt["customer_data"]["customer_name"] == "Larry Loyal"
        assert "merchant_data" not in receipt

    def test_manager_cannot_ring_sales(self, client, manager_headers, laptop, cable):
        resp = self._create(client, manager_headers, laptop, cable)
        assert resp.status_code == 403
        assert resp.json["error"] == "Unauthorized"

    def test_insufficient_stock(self, client, cashier_headers, laptop, cable):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": laptop.id, "quantity": 6}], "payment_method": "cash"},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "InsufficientStock"
        assert resp.json["details"]["on_hand"] == 5

    def test_oversized_quantity(self, client, cashier_headers, laptop, cable):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": laptop.id, "quantity": 10**20}], "payment_method": "cash"},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "InsufficientStock"
        assert resp.json["details"]["on_hand"] == 5

        product = client.get(f"/api/products/{laptop.id}", headers=cashier_headers).json["product"]
        assert product["quantity_on_hand"] == 5

    def test_invalid_input(self, client, cashier_headers, laptop, cable):
        resp = client.post("/api/sales", json={"items": [], "payment_method": "cash"}, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "InvalidInput"

    def test_missing_body(self, client, cashier_headers):
        resp = client.post("/api/sales", data="nope", headers=cashier_headers)
        assert resp.status_code == 400

    def test_get_sale(self, client, cashier_headers, laptop, cable):
        sale_id = self._create(client, cashier_headers, laptop, cable).json["sale"]["id"]

        resp = client.get(f"/api/sales/{sale_id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["id"] == sale_id
        assert resp.json["receipt"]["sale_id"] == sale_id

        assert client.get("/api/sales/99999", headers=cashier_headers).status_code == 404

    def test_merchant_copy_for_managers(self, client, cashier_user, cashier_headers, manager_headers, laptop, cable):
        sale_id = self._create(client, cashier_headers, laptop, cable).json["sale"]["id"]

        as_cashier = client.get(f"/api/sales/{sale_id}", headers=cashier_headers).json["receipt"]
        assert "merchant_data" not in as_cashier

        as_manager = client.get(f"/api/sales/{sale_id}", headers=manager_headers).json["receipt"]
        assert as_manager["merchant_data"]["cashier_id"] == cashier_user.id
        assert as_manager["customer_data"] == as_cashier["customer_data"]

    def test_cancel_flow(self, client, cashier_headers, other_cashier_headers, manager_headers, laptop, cable):
        sale_id = self._create(client, cashier_headers, laptop, cable).json["sale"]["id"]

        denied = client.put(f"/api/sales/{sale_id}/cancel", json={}, headers=other_cashier_headers)
        assert denied.status_code == 403
        assert denied.json["error"] == "Unauthorized"

        ok = client.put(f"/api/sales/{sale_id}/cancel", json={"reason": "Wrong item"}, headers=cashier_headers)
        assert ok.status_code == 200
        assert ok.json["sale"]["status"] == "cancelled"
        assert ok.json["sale"]["cancel_reason"] == "Wrong item"

        again = client.put(f"/api/sales/{sale_id}/cancel", headers=manager_headers)
        assert again.status_code == 409
        assert again.json["error"] == "AlreadyCancelled"

        product = client.get(f"/api/products/{laptop.id}", headers=cashier_headers).json["product"]
        assert product["quantity_on_hand"] == 5

    def test_cancel_unknown_sale(self, client, manager_headers):
        resp = client.put("/api/sales/424242/cancel", headers=manager_headers)
        assert resp.status_code == 404
        assert resp.json["error"] == "NotFound"


# =============================================================================
# REPORTS
# =============================================================================


class TestReportsApi:

    def test_generate_and_fetch(self, client, admin_headers, manager_headers, cashier_headers, laptop, cable):
        sale = client.post(
            "/api/sales",
            json={"items": [{"product_id": cable.id, "quantity": 2}], "payment_method": "cash"},
            headers=cashier_headers,
        ).json["sale"]
        day = sale["business_date"]

        resp = client.post("/api/reports/daily", json={"date": day}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["report"]["total_transactions"] == 1
        assert resp.json["report"]["total_sales_cents"] == sale["total_cents"]
        assert resp.json["generated_at"].endswith("Z")

        fetched = client.get(f"/api/reports/daily/{day}", headers=manager_headers)
        assert fetched.status_code == 200
        assert fetched.json["report"] == resp.json["report"]

    def test_cashier_cannot_generate(self, client, cashier_headers):
        resp = client.post("/api/reports/daily", json={"date": "2026-10-18"}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_manager_cannot_generate(self, client, manager_headers):
        resp = client.post("/api/reports/daily", json={"date": "2026-10-18"}, headers=manager_headers)
        assert resp.status_code == 403

    def test_missing_report(self, client, manager_headers):
        resp = client.get("/api/reports/daily/2026-10-18", headers=manager_headers)
        assert resp.status_code == 404
        assert resp.json == {"error": "NotFound", "message": "No report for this date"}

    def test_bad_date(self, client, admin_headers):
        resp = client.post("/api/reports/daily", json={"date": "18/10/2026"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "InvalidInput"


# =============================================================================
# CATALOG, INVENTORY, CUSTOMERS
# =============================================================================


class TestCatalogApi:

    def test_manager_creates_product(self, client, manager_headers):
        resp = client.post(
            "/api/products",
            json={"sku": "kb-01", "name": "Keyboard", "price": "49.99", "quantity_on_hand": 12},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.json["product"]["sku"] == "KB-01"
        assert resp.json["product"]["price_cents"] == 4_999

    def test_cashier_cannot_create_product(self, client, cashier_headers):
        resp = client.post("/api/products", json={"sku": "X", "name": "X", "price": "1"}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_list_products(self, client, cashier_headers, laptop, cable):
        resp = client.get("/api/products?q=cable", headers=cashier_headers)
        assert resp.status_code == 200
        assert [p["sku"] for p in resp.json["items"]] == ["CBL-001"]

    def test_adjust_inventory(self, client, manager_headers, cashier_headers, laptop):
        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": laptop.id, "quantity_change": -2, "reason": "Damaged in transit"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.json["movement"]["new_quantity"] == 3

        denied = client.post(
            "/api/inventory/adjust",
            json={"product_id": laptop.id, "quantity_change": 5, "reason": "x"},
            headers=cashier_headers,
        )
        assert denied.status_code == 403

        too_much = client.post(
            "/api/inventory/adjust",
            json={"product_id": laptop.id, "quantity_change": -4, "reason": "Shrink"},
            headers=manager_headers,
        )
        assert too_much.status_code == 400
        assert too_much.json["error"] == "InsufficientStock"

        low = client.get("/api/inventory/low-stock", headers=manager_headers)
        assert [p["sku"] for p in low.json["items"]] == []

        movements = client.get(f"/api/inventory/movements?product_id={laptop.id}", headers=manager_headers)
        assert len(movements.json["items"]) == 1

    def test_update_product(self, client, manager_headers, cashier_headers, laptop):
        resp = client.put(f"/api/products/{laptop.id}", json={"price": "1899.00", "name": "Laptop 14"}, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["product"]["price_cents"] == 189_900
        assert resp.json["product"]["name"] == "Laptop 14"

        stock_edit = client.put(f"/api/products/{laptop.id}", json={"quantity_on_hand": 99}, headers=manager_headers)
        assert stock_edit.status_code == 400
        assert stock_edit.json["error"] == "InvalidInput"

        denied = client.put(f"/api/products/{laptop.id}", json={"price": "1.00"}, headers=cashier_headers)
        assert denied.status_code == 403

        missing = client.put("/api/products/424242", json={"price": "1.00"}, headers=manager_headers)
        assert missing.status_code == 404

        sale = client.post(
            "/api/sales",
            json={"items": [{"product_id": laptop.id, "quantity": 1}], "payment_method": "cash"},
            headers=cashier_headers,
        ).json["sale"]
        assert sale["lines"][0]["unit_price_cents"] == 189_900

    def test_deactivate_product(self, client, manager_headers, cashier_headers, laptop, cable):
        resp = client.delete(f"/api/products/{laptop.id}", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["product"]["is_active"] is False

        active = client.get("/api/products", headers=cashier_headers).json["items"]
        assert [p["sku"] for p in active] == ["CBL-001"]

        everything = client.get("/api/products?include_inactive=true", headers=cashier_headers).json["items"]
        assert sorted(p["sku"] for p in everything) == ["CBL-001", "LAP-001"]

        sale = client.post(
            "/api/sales",
            json={"items": [{"product_id": laptop.id, "quantity": 1}], "payment_method": "cash"},
            headers=cashier_headers,
        )
        assert sale.status_code == 400
        assert sale.json["error"] == "InvalidInput"

        assert client.delete(f"/api/products/{cable.id}", headers=cashier_headers).status_code == 403
        assert client.delete("/api/products/424242", headers=manager_headers).status_code == 404

    def test_oversized_counts_rejected(self, client, manager_headers, laptop):
        created = client.post(
            "/api/products",
            json={"sku": "BIG-1", "name": "Big", "price": "1.00", "quantity_on_hand": 10**20},
            headers=manager_headers,
        )
        assert created.status_code == 400
        assert created.json["error"] == "InvalidInput"

        adjusted = client.post(
            "/api/inventory/adjust",
            json={"product_id": laptop.id, "quantity_change": 10**20, "reason": "Bulk"},
            headers=manager_headers,
        )
        assert adjusted.status_code == 400
        assert adjusted.json["error"] == "InvalidInput"

    def test_list_customers(self, client, cashier_headers, regular_customer, loyal_customer):
        resp = client.get("/api/customers", headers=cashier_headers)
        assert resp.status_code == 200
        assert [c["full_name"] for c in resp.json["items"]] == ["Larry Loyal", "Rita Regular"]

        assert client.get("/api/customers?limit=0", headers=cashier_headers).status_code == 400

    def test_customer_endpoints(self, client, cashier_headers):
        created = client.post(
            "/api/customers",
            json={"phone": "555-0123", "full_name": "New Person"},
            headers=cashier_headers,
        )
        assert created.status_code == 201
        customer_id = created.json["customer"]["id"]

        found = client.get("/api/customers/search/5550123", headers=cashier_headers)
        assert found.status_code == 200
        assert found.json["customer"]["id"] == customer_id

        loyalty = client.get(f"/api/customers/{customer_id}/loyalty", headers=cashier_headers)
        assert loyalty.status_code == 200
        assert loyalty.json["is_eligible"] is False
        assert loyalty.json["discount_percentage"] == 0

        dup = client.post(
            "/api/customers",
            json={"phone": "5550123", "full_name": "Duplicate"},
            headers=cashier_headers,
        )
        assert dup.status_code == 400


# =============================================================================
# ANALYTICS
# =============================================================================


class TestAnalyticsApi:

    def test_summary(self, client, manager_headers, cashier_headers, laptop, cable):
        client.post(
            "/api/sales",
            json={"items": [{"product_id": laptop.id, "quantity": 3}], "payment_method": "card"},
            headers=cashier_headers,
        )

        resp = client.get("/api/analytics/summary", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["today_sales"]["total_transactions"] == 1
        assert resp.json["top_products"][0]["sku"] == "LAP-001"
        assert resp.json["low_stock_items"] == 1

    def test_cashier_denied(self, client, cashier_headers):
        resp = client.get("/api/analytics/summary", headers=cashier_headers)
        assert resp.status_code == 403


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["status"] == "healthy"
