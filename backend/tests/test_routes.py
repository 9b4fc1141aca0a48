"""
HTTP surface tests.

Verifies:
- Missing or unknown identity returns 401
- Role permissions return 403
- Service errors map to their status with {"error", "kind"}
- A full order -> fulfill round through the API
"""

import pytest

from fieldsales.models import OrderStatus
from fieldsales.services import catalog_service


class TestIdentityHeaders:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("GET", "/api/inventory"),
            ("GET", "/api/stores"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("POST", "/api/orders/1/fulfill"),
            ("POST", "/api/visits"),
            ("GET", "/api/reports/fulfillment"),
            ("GET", "/api/users"),
        ],
    )
    def test_requires_identity(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_user(self, client, db_session):
        resp = client.get("/api/products", headers={"X-User-Id": "nobody"})
        assert resp.status_code == 401

    def test_unknown_role_claim(self, client, salesman):
        resp = client.get("/api/products", headers={"X-User-Id": salesman.external_id, "X-User-Role": "cashier"})
        assert resp.status_code == 401

    def test_mirrored_role_used_without_claim(self, client, stock_manager):
        resp = client.get("/api/users/me", headers={"X-User-Id": stock_manager.external_id})
        assert resp.status_code == 200
        assert resp.get_json()["actor"]["role"] == "STOCK_MANAGER"

    def test_health_is_open(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"


class TestRolePermissions:

    def test_salesman_cannot_fulfill(self, client, salesman_headers, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=10)
        order = make_order({a.id: 1})

        resp = client.post(f"/api/orders/{order.id}/fulfill", json={"allocations": {str(a.id): 1}}, headers=salesman_headers)

        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "FULFILL_ORDERS"
        assert catalog_service.get_inventory(a.id) == 10

    def test_stock_manager_cannot_record_visits(self, client, stock_manager_headers, store_without_location):
        resp = client.post("/api/visits", json={"store_id": store_without_location.id}, headers=stock_manager_headers)
        assert resp.status_code == 403

    def test_salesman_cannot_manage_products(self, client, salesman_headers):
        resp = client.post("/api/products", json={"name": "X", "mrp": "1.00"}, headers=salesman_headers)
        assert resp.status_code == 403


class TestOrderFlow:

    def test_create_then_fulfill(self, client, salesman_headers, stock_manager_headers, make_product, store):
        a = make_product("Paracetamol 500mg", inventory=500)
        b = make_product("Vitamin C Tablets", inventory=50)

        resp = client.post(
            "/api/orders",
            json={"store_id": store.id, "items": [{"product_id": a.id, "quantity": 80}, {"product_id": b.id, "quantity": 70}]},
            headers=salesman_headers,
        )
        assert resp.status_code == 201
        order_id = resp.get_json()["id"]
        assert resp.get_json()["status"] == "PENDING"

        view = client.get(f"/api/orders/{order_id}/fulfillment", headers=stock_manager_headers).get_json()
        plan = {str(line["product_id"]): line["max_allocation"] for line in view["items"]}

        resp = client.post(f"/api/orders/{order_id}/fulfill", json={"allocations": plan}, headers=stock_manager_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == OrderStatus.PARTIAL.value
        assert body["unfulfilled_items"][0]["shortfall"] == 20

        again = client.post(f"/api/orders/{order_id}/fulfill", json={"allocations": plan}, headers=stock_manager_headers)
        assert again.status_code == 409
        assert again.get_json()["kind"] == "invalid_state"

    @pytest.mark.parametrize("strict", ["false", False, None])
    def test_strict_off_allows_partial(self, client, stock_manager_headers, make_product, make_order, strict):
        a = make_product("Paracetamol 500mg", inventory=10)
        order = make_order({a.id: 5})

        resp = client.post(
            f"/api/orders/{order.id}/fulfill",
            json={"allocations": {str(a.id): 1}, "strict": strict},
            headers=stock_manager_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["status"] == OrderStatus.PARTIAL.value

    def test_strict_on_refuses_partial(self, client, stock_manager_headers, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=10)
        order = make_order({a.id: 5})

        resp = client.post(
            f"/api/orders/{order.id}/fulfill",
            json={"allocations": {str(a.id): 1}, "strict": "true"},
            headers=stock_manager_headers,
        )
        assert resp.status_code == 409
        assert catalog_service.get_inventory(a.id) == 10

    def test_strict_must_be_boolean(self, client, stock_manager_headers, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=10)
        order = make_order({a.id: 5})

        resp = client.post(
            f"/api/orders/{order.id}/fulfill",
            json={"allocations": {str(a.id): 1}, "strict": "maybe"},
            headers=stock_manager_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "validation_error"

    def test_validation_error_shape(self, client, salesman_headers, store):
        resp = client.post("/api/orders", json={"store_id": store.id, "items": []}, headers=salesman_headers)
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "An order needs at least one item", "kind": "validation_error"}

    def test_not_found(self, client, stock_manager_headers):
        resp = client.get("/api/orders/99999", headers=stock_manager_headers)
        assert resp.status_code == 404
        assert resp.get_json()["kind"] == "not_found"

    def test_manual_status_rejects_fulfilled_target(self, client, stock_manager_headers, make_product, make_order):
        a = make_product("Paracetamol 500mg")
        order = make_order({a.id: 1})
        resp = client.post(f"/api/orders/{order.id}/status", json={"status": "FULFILLED"}, headers=stock_manager_headers)
        assert resp.status_code == 400


class TestVisitRoutes:

    def test_geofence_returns_403(self, client, salesman_headers, store):
        resp = client.post(
            "/api/visits",
            json={"store_id": store.id, "location": {"latitude": 13.5, "longitude": 77.5946}},
            headers=salesman_headers,
        )
        assert resp.status_code == 403
        assert resp.get_json()["kind"] == "location_error"

    def test_reconcile(self, client, salesman_headers, store, store_location, make_product):
        a = make_product("Paracetamol 500mg")
        resp = client.post(
            "/api/visits/reconcile",
            json={"store_id": store.id, "product_id": a.id, "observed_qty": 25, **store_location},
            headers=salesman_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["results"][0]["delta"] == 25

        positions = client.get(f"/api/stores/{store.id}/positions", headers=salesman_headers).get_json()
        assert [p["quantity"] for p in positions["items"]] == [25]


    def test_numeric_batch_number_is_a_validation_error(self, client, salesman_headers, store_without_location, make_product):
        a = make_product("Paracetamol 500mg")
        resp = client.post(
            "/api/visits/reconcile",
            json={"store_id": store_without_location.id, "product_id": a.id, "observed_qty": 3, "batch_number": 123},
            headers=salesman_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "validation_error"

    def test_check_in_line_with_numeric_batch(self, client, salesman_headers, store_without_location, make_product):
        a = make_product("Paracetamol 500mg")
        resp = client.post(
            "/api/visits",
            json={
                "store_id": store_without_location.id,
                "lines": [{"product_id": a.id, "observed_qty": 3, "batch_number": 123}],
            },
            headers=salesman_headers,
        )
        assert resp.status_code == 400


class TestAdminRoutes:

    def test_admin_creates_product_and_store(self, client, admin_headers):
        resp = client.post("/api/products", json={"name": "Cough Syrup", "mrp": "85.50"}, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.get_json()["mrp"] == "85.50"

        resp = client.post("/api/stores", json={"name": "Koramangala Store", "latitude": 12.93}, headers=admin_headers)
        assert resp.status_code == 400

    @pytest.mark.parametrize("mrp", ["NaN", "Infinity"])
    def test_non_finite_mrp_is_a_validation_error(self, client, admin_headers, mrp):
        resp = client.post("/api/products", json={"name": "X", "mrp": mrp}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "validation_error"

    def test_product_policy_rejects_unknown_fields(self, client, admin_headers):
        resp = client.post("/api/products", json={"name": "X", "mrp": "1", "id": 5}, headers=admin_headers)
        assert resp.status_code == 400
        assert "not allowed" in resp.get_json()["error"]

    def test_admin_mirrors_user(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"external_id": "user_new", "role": "salesman", "email": "new@demo.com"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        listed = client.get("/api/users?role=SALESMAN", headers=admin_headers).get_json()["items"]
        assert [u["external_id"] for u in listed] == ["user_new"]
