"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Staff are denied administrator operations (403)
- Domain errors map onto status codes with structured details
- The order lifecycle works end to end over HTTP
- Customers, installment payments and session logout over HTTP
"""

import pytest

from inventory_flow.services import session_service


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/inventory/1"),
            ("POST", "/api/inventory/1/restock"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("POST", "/api/orders/1/confirm"),
            ("GET", "/api/returns"),
            ("GET", "/api/invoices"),
            ("GET", "/api/audit"),
            ("GET", "/api/customers"),
            ("POST", "/api/customers/1/payments"),
            ("GET", "/api/auth/me"),
            ("GET", "/api/orders/1/lines/1/returnable"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client):
        resp = client.get("/api/products", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401

    def test_revoked_token_rejected(self, client, staff):
        _, token = session_service.create_session(staff.id)
        session_service.revoke_session(token)
        resp = client.get("/api/products", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_health_is_public(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["database"]["status"] == "healthy"


# =============================================================================
# STAFF DENIED ADMINISTRATOR OPERATIONS - 403
# =============================================================================


class TestStaffDenied:

    def test_cannot_create_product(self, client, staff_headers):
        resp = client.post(
            "/api/products",
            json={"sku": "X-1", "name": "X", "price_per_piece_cents": 100},
            headers=staff_headers,
        )
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "forbidden"

    def test_cannot_restock(self, client, staff_headers, soda):
        resp = client.post(f"/api/inventory/{soda.id}/restock", json={"added_pieces": 5}, headers=staff_headers)
        assert resp.status_code == 403

    def test_cannot_adjust(self, client, staff_headers, soda):
        resp = client.post(
            f"/api/inventory/{soda.id}/adjust",
            json={"delta": -1, "reason_code": "damaged"},
            headers=staff_headers,
        )
        assert resp.status_code == 403

    def test_cannot_create_customer(self, client, staff_headers):
        resp = client.post("/api/customers", json={"name": "X", "phone": "1"}, headers=staff_headers)
        assert resp.status_code == 403

    def test_cannot_read_audit_log(self, client, staff_headers):
        resp = client.get("/api/audit", headers=staff_headers)
        assert resp.status_code == 403

    def test_cost_hidden_from_staff(self, client, staff_headers, admin_headers, soda):
        staff_view = client.get(f"/api/products/{soda.id}", headers=staff_headers).get_json()["product"]
        admin_view = client.get(f"/api/products/{soda.id}", headers=admin_headers).get_json()["product"]
        assert "wholesale_cost_per_piece_cents" not in staff_view
        assert admin_view["wholesale_cost_per_piece_cents"] == 150


# =============================================================================
# PRODUCTS AND INVENTORY
# =============================================================================


class TestProductsApi:

    def test_create_with_initial_pieces(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={
                "sku": "WATER-24",
                "name": "Water 500ml",
                "price_per_piece_cents": 80,
                "pieces_per_case": 24,
                "initial_pieces": 48,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["on_hand_pieces"] == 48

        stock = client.get(f"/api/inventory/{product['id']}", headers=admin_headers).get_json()["stock"]
        assert stock["full_cases"] == 2
        assert stock["loose_pieces"] == 0

    def test_duplicate_sku_conflict(self, client, admin_headers, soda):
        resp = client.post(
            "/api/products",
            json={"sku": "SODA-5", "name": "Again", "price_per_piece_cents": 1},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "conflict"

    def test_on_hand_not_patchable(self, client, admin_headers, soda):
        resp = client.patch(f"/api/products/{soda.id}", json={"on_hand_pieces": 999}, headers=admin_headers)
        assert resp.status_code == 400

    def test_admin_restock(self, client, admin_headers, soda):
        resp = client.post(
            f"/api/inventory/{soda.id}/restock",
            json={"added_pieces": 15, "note": "delivery"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["adjustment"]["quantity_after"] == 25


# =============================================================================
# ORDERS
# =============================================================================


class TestOrdersApi:

    def _create(self, client, headers, product_id, quantity, unit="case"):
        resp = client.post(
            "/api/orders",
            json={"lines": [{"product_id": product_id, "quantity": quantity, "unit": unit}]},
            headers=headers,
        )
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["order"]

    def test_lifecycle(self, client, staff_headers, soda):
        order = self._create(client, staff_headers, soda.id, 1)
        assert order["status"] == "draft"
        assert order["total_amount_cents"] == 1250

        resp = client.post(f"/api/orders/{order['id']}/confirm", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "confirmed"

        resp = client.post(f"/api/orders/{order['id']}/invoice", headers=staff_headers)
        assert resp.status_code == 200
        invoice = resp.get_json()["invoice"]
        assert invoice["document_ref"] == f"invoices/{invoice['invoice_number']}.pdf"

        again = client.post(f"/api/orders/{order['id']}/invoice", headers=staff_headers).get_json()["invoice"]
        assert again["id"] == invoice["id"]

        resp = client.post(f"/api/orders/{order['id']}/deliver", headers=staff_headers)
        assert resp.get_json()["order"]["status"] == "delivered"

    def test_insufficient_stock_details(self, client, staff_headers, soda):
        order = self._create(client, staff_headers, soda.id, 3)

        resp = client.post(f"/api/orders/{order['id']}/confirm", headers=staff_headers)

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "insufficient_stock"
        assert body["retryable"] is False
        assert body["details"]["order_line_id"] == order["lines"][0]["id"]
        assert body["details"]["requested_pieces"] == 15
        assert body["details"]["on_hand_pieces"] == 10

    def test_invalid_quantity(self, client, staff_headers, soda):
        resp = client.post(
            "/api/orders",
            json={"lines": [{"product_id": soda.id, "quantity": 0}]},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_argument"

    def test_other_staff_forbidden(self, client, staff_headers, other_staff_headers, soda):
        order = self._create(client, staff_headers, soda.id, 1)
        resp = client.post(f"/api/orders/{order['id']}/confirm", headers=other_staff_headers)
        assert resp.status_code == 403

    def test_invalid_transition(self, client, staff_headers, soda):
        order = self._create(client, staff_headers, soda.id, 1)
        resp = client.post(f"/api/orders/{order['id']}/deliver", headers=staff_headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "invalid_state"

    def test_unknown_order(self, client, staff_headers):
        resp = client.post("/api/orders/9999/confirm", headers=staff_headers)
        assert resp.status_code == 404

    def test_patch_draft_discount(self, client, staff_headers, soda):
        order = self._create(client, staff_headers, soda.id, 2)
        resp = client.patch(
            f"/api/orders/{order['id']}",
            json={"discount_kind": "percent", "discount_value": 5000},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["order"]["total_amount_cents"] == 1250

    def test_line_editing(self, client, staff_headers, soda, chips):
        order = self._create(client, staff_headers, soda.id, 1)
        resp = client.post(
            f"/api/orders/{order['id']}/lines",
            json={"product_id": chips.id, "quantity": 4, "unit": "piece"},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        line_id = resp.get_json()["line"]["id"]

        resp = client.delete(f"/api/orders/{order['id']}/lines/{line_id}", headers=staff_headers)
        assert resp.status_code == 200
        assert len(resp.get_json()["order"]["lines"]) == 1


# =============================================================================
# RETURNS AND AUDIT
# =============================================================================


class TestReturnsApi:

    def test_submit_and_approve(self, client, staff_headers, admin_headers, soda):
        order = client.post(
            "/api/orders",
            json={"lines": [{"product_id": soda.id, "quantity": 1, "unit": "case"}]},
            headers=staff_headers,
        ).get_json()["order"]
        client.post(f"/api/orders/{order['id']}/confirm", headers=staff_headers)

        resp = client.post(
            "/api/returns",
            json={
                "order_id": order["id"],
                "reason": "dented",
                "lines": [{"order_line_id": order["lines"][0]["id"], "pieces_returned": 2}],
            },
            headers=staff_headers,
        )
        assert resp.status_code == 201
        return_id = resp.get_json()["return"]["id"]

        denied = client.post(f"/api/returns/{return_id}/resolve", json={"decision": "approve"}, headers=staff_headers)
        assert denied.status_code == 403

        resp = client.post(f"/api/returns/{return_id}/resolve", json={"decision": "approve"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["return"]["status"] == "approved"

        stock = client.get(f"/api/inventory/{soda.id}", headers=staff_headers).get_json()["stock"]
        assert stock["on_hand_pieces"] == 7

    def test_returnable_pieces(self, client, staff_headers, soda, chips):
        order = client.post(
            "/api/orders",
            json={"lines": [{"product_id": soda.id, "quantity": 1, "unit": "case"}]},
            headers=staff_headers,
        ).get_json()["order"]
        other = client.post(
            "/api/orders",
            json={"lines": [{"product_id": chips.id, "quantity": 1, "unit": "case"}]},
            headers=staff_headers,
        ).get_json()["order"]
        client.post(f"/api/orders/{order['id']}/confirm", headers=staff_headers)
        line_id = order["lines"][0]["id"]

        submitted = client.post(
            "/api/returns",
            json={
                "order_id": order["id"],
                "reason": "crushed",
                "lines": [{"order_line_id": line_id, "pieces_returned": 2}],
            },
            headers=staff_headers,
        )
        assert submitted.status_code == 201

        resp = client.get(f"/api/orders/{order['id']}/lines/{line_id}/returnable", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.get_json()["returnable_pieces"] == 3

        wrong = client.get(f"/api/orders/{other['id']}/lines/{line_id}/returnable", headers=staff_headers)
        assert wrong.status_code == 404


class TestAuditApi:

    def test_admin_reads_history(self, client, admin_headers, soda):
        resp = client.get(f"/api/audit?entity_type=products&entity_id={soda.id}", headers=admin_headers)
        assert resp.status_code == 200
        entries = resp.get_json()["entries"]
        assert {e["action"] for e in entries} == {"INSERT", "UPDATE"}

    def test_bad_action_filter(self, client, admin_headers):
        resp = client.get("/api/audit?action=DROP", headers=admin_headers)
        assert resp.status_code == 400


# =============================================================================
# SESSIONS AND CUSTOMERS
# =============================================================================


class TestAuthApi:

    def test_me(self, client, staff, staff_headers):
        resp = client.get("/api/auth/me", headers=staff_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["user"]["username"] == "staff"
        assert body["session"]["user_id"] == staff.id
        assert body["session"]["is_revoked"] is False

    def test_logout_revokes_token(self, client, staff_headers):
        resp = client.post("/api/auth/logout", headers=staff_headers)
        assert resp.status_code == 200

        assert client.get("/api/products", headers=staff_headers).status_code == 401
        assert client.post("/api/auth/logout", headers=staff_headers).status_code == 401

    def test_logout_needs_header(self, client):
        assert client.post("/api/auth/logout").status_code == 401


class TestCustomersApi:

    def test_installment_flow(self, client, admin_headers, staff_headers, soda):
        resp = client.post(
            "/api/customers",
            json={"name": "Ana Reyes", "phone": "0917-555-0100", "customer_type": "wholesale"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        customer_id = resp.get_json()["customer"]["id"]

        resp = client.post(
            "/api/orders",
            json={
                "lines": [{"product_id": soda.id, "quantity": 4, "unit": "piece"}],
                "payment_method": "installment",
                "customer_id": customer_id,
            },
            headers=staff_headers,
        )
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["customer_id"] == customer_id
        client.post(f"/api/orders/{order['id']}/confirm", headers=staff_headers)

        customer = client.get(f"/api/customers/{customer_id}", headers=staff_headers).get_json()["customer"]
        assert customer["outstanding_balance_cents"] == 1000

        resp = client.post(
            f"/api/customers/{customer_id}/payments",
            json={"amount_cents": 250, "payment_method": "cash"},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["payment"]["balance_after_cents"] == 750

        payments = client.get(f"/api/customers/{customer_id}/payments", headers=staff_headers).get_json()["payments"]
        assert [p["amount_cents"] for p in payments] == [250]

    def test_overpayment_rejected(self, client, staff_headers, customer):
        resp = client.post(
            f"/api/customers/{customer.id}/payments",
            json={"amount_cents": 100},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_argument"

    def test_installment_without_customer(self, client, staff_headers, soda):
        resp = client.post(
            "/api/orders",
            json={"lines": [{"product_id": soda.id, "quantity": 1, "unit": "piece"}], "payment_method": "installment"},
            headers=staff_headers,
        )
        assert resp.status_code == 400

    def test_balance_not_patchable(self, client, admin_headers, customer):
        resp = client.patch(
            f"/api/customers/{customer.id}",
            json={"outstanding_balance_cents": 0},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_search(self, client, staff_headers, customer):
        resp = client.get("/api/customers?q=reyes", headers=staff_headers)
        assert [c["id"] for c in resp.get_json()["customers"]] == [customer.id]

    def test_delete(self, client, admin_headers, customer):
        customer_id = customer.id
        resp = client.delete(f"/api/customers/{customer_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/customers/{customer_id}", headers=admin_headers).status_code == 404
