"""HTTP tests for the inventory API, driven through FastAPI's TestClient."""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from config import settings
from models.stock import MAX_QUANTITY
from services.product_locks import product_locks


def _create_product(client, **overrides):
    payload = {
        "name": "Cordless Drill",
        "sku": "drl-18v",
        "price": "329.00",
        "category": "Tools",
        "supplier": "Makita",
        "min_stock_level": 5,
        "quantity": 0,
    }
    payload.update(overrides)
    response = client.post("/api/products", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _move(client, product_id, movement_type, quantity, **extra):
    body = {"product_id": product_id, "type": movement_type, "quantity": quantity}
    body.update(extra)
    return client.post("/api/stock-movements", json=body)


class TestProducts:

    def test_create_with_initial_stock_books_a_movement(self, client):
        product = _create_product(client, quantity=25)

        assert product["sku"] == "DRL-18V"
        assert product["quantity"] == 25
        assert product["is_low_stock"] is False

        detail = client.get(f"/api/products/{product['id']}").json()
        assert len(detail["recent_movements"]) == 1
        opening = detail["recent_movements"][0]
        assert opening["type"] == "IN"
        assert opening["reason"] == "Initial stock"
        assert (opening["previous_quantity"], opening["new_quantity"]) == (0, 25)

    def test_create_without_stock_has_no_movements(self, client):
        product = _create_product(client)
        assert product["quantity"] == 0
        assert product["is_low_stock"] is True
        detail = client.get(f"/api/products/{product['id']}").json()
        assert detail["recent_movements"] == []

    def test_duplicate_sku_rejected(self, client):
        _create_product(client)
        response = client.post("/api/products", json={
            "name": "Another", "sku": " DRL-18V ", "price": "1.00", "category": "Tools",
        })
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "SKU already exists"}

    def test_negative_initial_quantity_is_a_validation_error(self, client):
        response = client.post("/api/products", json={
            "name": "X", "sku": "X-1", "price": "1.00", "category": "Misc", "quantity": -1,
        })
        assert response.status_code == 422

    def test_update_changes_catalog_fields(self, client):
        product = _create_product(client, quantity=3)
        response = client.put(f"/api/products/{product['id']}", json={
            "name": "Cordless Drill 18V", "sku": "DRL-18V", "price": "299.00", "category": "Power Tools",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "Cordless Drill 18V"
        assert body["category"] == "Power Tools"
        assert body["quantity"] == 3

    def test_update_cannot_touch_quantity(self, client):
        product = _create_product(client, quantity=3)
        response = client.put(f"/api/products/{product['id']}", json={
            "name": "Drill", "sku": "DRL-18V", "price": "1.00", "category": "Tools", "quantity": 999,
        })
        assert response.status_code == 422
        assert client.get(f"/api/products/{product['id']}").json()["quantity"] == 3

    def test_unknown_product(self, client):
        response = client.get("/api/products/4242")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Product not found"}

    def test_delete_removes_movement_history(self, client):
        product = _create_product(client, quantity=10)
        assert _move(client, product["id"], "OUT", 4).status_code == 201

        response = client.delete(f"/api/products/{product['id']}")
        assert response.status_code == 200
        assert response.json()["success"] is True

        assert client.get(f"/api/products/{product['id']}").status_code == 404
        history = client.get("/api/stock-movements", params={"product_id": product["id"]}).json()
        assert history["total"] == 0

    def test_list_filters(self, client):
        _create_product(client, name="Drill", sku="A-1", category="Tools", quantity=50)
        _create_product(client, name="Gloves", sku="B-1", category="Safety", quantity=2, min_stock_level=10)
        _create_product(client, name="Glasses", sku="B-2", category="Safety", quantity=30, description="anti-fog")

        assert client.get("/api/products").json()["total"] == 3
        safety = client.get("/api/products", params={"category": "Safety"}).json()
        assert {p["sku"] for p in safety["items"]} == {"B-1", "B-2"}
        low = client.get("/api/products", params={"low_stock": True}).json()
        assert [p["sku"] for p in low["items"]] == ["B-1"]
        found = client.get("/api/products", params={"search": "fog"}).json()
        assert [p["sku"] for p in found["items"]] == ["B-2"]

    def test_categories(self, client):
        _create_product(client, sku="A-1", category="Tools")
        _create_product(client, sku="A-2", category="Tools")
        _create_product(client, sku="B-1", category="Safety")
        response = client.get("/api/categories")
        assert response.json() == [
            {"name": "Safety", "product_count": 1},
            {"name": "Tools", "product_count": 2},
        ]


class TestStockMovements:

    def test_receipt(self, client):
        product = _create_product(client, quantity=10)
        response = _move(client, product["id"], "IN", 4, unit_cost="2.50", reference="PO-77")

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["replayed"] is False
        assert (body["previous_quantity"], body["new_quantity"]) == (10, 14)
        assert body["movement"]["total_cost"] == "10.00"
        assert body["movement"]["reference"] == "PO-77"
        assert client.get(f"/api/products/{product['id']}").json()["quantity"] == 14

    def test_insufficient_stock_reports_available_and_requested(self, client):
        product = _create_product(client, quantity=150)
        response = _move(client, product["id"], "OUT", 200)

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Insufficient stock",
            "code": "INSUFFICIENT_STOCK",
            "available": 150,
            "requested": 200,
        }
        assert client.get(f"/api/products/{product['id']}").json()["quantity"] == 150

    def test_adjustment(self, client):
        product = _create_product(client, quantity=150)
        body = _move(client, product["id"], "ADJUSTMENT", 75, reason="Stock count").json()
        assert body["new_quantity"] == 75
        assert body["movement"]["quantity"] == 75

    @pytest.mark.parametrize("movement_type,quantity", [("IN", 0), ("OUT", -3), ("ADJUSTMENT", -1)])
    def test_invalid_quantity(self, client, movement_type, quantity):
        product = _create_product(client, quantity=5)
        response = _move(client, product["id"], movement_type, quantity)
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_QUANTITY"

    def test_unknown_type_is_a_validation_error(self, client):
        product = _create_product(client, quantity=5)
        assert _move(client, product["id"], "TRANSFER", 1).status_code == 422

    def test_unknown_product(self, client):
        response = _move(client, 999, "IN", 1)
        assert response.status_code == 404
        assert response.json()["code"] == "PRODUCT_NOT_FOUND"

    def test_oversized_quantity(self, client):
        product = _create_product(client, quantity=5)
        response = _move(client, product["id"], "IN", 10 ** 20)
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_QUANTITY"
        assert client.get(f"/api/products/{product['id']}").json()["quantity"] == 5

    def test_receipt_past_stock_limit(self, client):
        product = _create_product(client, quantity=5)
        response = _move(client, product["id"], "IN", MAX_QUANTITY)
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_QUANTITY"

    def test_busy_product_answers_503(self, client, monkeypatch):
        product = _create_product(client, quantity=5)
        monkeypatch.setattr(settings, "STOCK_LOCK_TIMEOUT_SECONDS", 0.1)

        with product_locks.hold(product["id"]):
            response = _move(client, product["id"], "OUT", 1)

        assert response.status_code == 503
        assert response.json()["code"] == "CONCURRENCY_TIMEOUT"
        assert client.get(f"/api/products/{product['id']}").json()["quantity"] == 5

    def test_failed_commit_answers_500(self, client, monkeypatch):
        product = _create_product(client, quantity=5)

        def _broken_commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "commit", _broken_commit)
        response = _move(client, product["id"], "OUT", 1)
        monkeypatch.undo()

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Failed to record stock movement",
            "code": "PERSISTENCE_FAILURE",
        }
        assert client.get(f"/api/products/{product['id']}").json()["quantity"] == 5

    def test_idempotent_retry(self, client):
        product = _create_product(client, quantity=10)
        first = _move(client, product["id"], "OUT", 3, idempotency_key="order-5-line-1")
        retry = _move(client, product["id"], "OUT", 3, idempotency_key="order-5-line-1")
        conflict = _move(client, product["id"], "OUT", 4, idempotency_key="order-5-line-1")

        assert first.status_code == 201
        assert retry.status_code == 200
        assert retry.json()["replayed"] is True
        assert retry.json()["movement"]["id"] == first.json()["movement"]["id"]
        assert conflict.status_code == 409
        assert client.get(f"/api/products/{product['id']}").json()["quantity"] == 7

    def test_history_listing_and_filters(self, client):
        drill = _create_product(client, sku="A-1", quantity=10)
        gloves = _create_product(client, sku="B-1", name="Gloves", quantity=20)
        _move(client, drill["id"], "OUT", 2)
        _move(client, gloves["id"], "OUT", 5)
        _move(client, drill["id"], "ADJUSTMENT", 6)

        everything = client.get("/api/stock-movements").json()
        assert everything["total"] == 5
        # newest first
        assert everything["items"][0]["type"] == "ADJUSTMENT"
        assert everything["items"][0]["product_sku"] == "A-1"

        drill_asc = client.get("/api/stock-movements",
                               params={"product_id": drill["id"], "order": "asc"}).json()
        assert [m["new_quantity"] for m in drill_asc["items"]] == [10, 8, 6]

        issues = client.get("/api/stock-movements", params={"type": "OUT"}).json()
        assert issues["total"] == 2

        paged = client.get("/api/stock-movements", params={"page": 2, "page_size": 2}).json()
        assert len(paged["items"]) == 2
        assert paged["page"] == 2
        assert paged["total_pages"] == 3

    def test_verify_chain(self, client):
        product = _create_product(client, quantity=10)
        _move(client, product["id"], "IN", 5)
        _move(client, product["id"], "OUT", 12)

        report = client.get(f"/api/stock-movements/products/{product['id']}/verify").json()
        assert report["consistent"] is True
        assert report["movement_count"] == 3
        assert report["opening_quantity"] == 0
        assert report["replayed_quantity"] == report["ledger_quantity"] == 3
        assert report["broken_movement_id"] is None

    def test_verify_unknown_product(self, client):
        assert client.get("/api/stock-movements/products/31337/verify").status_code == 404


class TestDashboardAndLogs:

    def test_dashboard_stats(self, client):
        _create_product(client, sku="A-1", price="10.00", quantity=3, category="Tools")
        _create_product(client, sku="A-2", price="2.50", quantity=20, category="Tools", min_stock_level=1)
        _create_product(client, sku="B-1", price="1.00", quantity=0, category="Safety")

        stats = client.get("/api/dashboard/stats").json()
        assert stats["total_products"] == 3
        assert stats["total_value"] == pytest.approx(80.0)
        assert stats["low_stock_count"] == 2
        assert stats["top_categories"][0]["category"] == "Tools"
        assert stats["top_categories"][0]["count"] == 2
        assert len(stats["recent_movements"]) == 2

    def test_actions_are_logged(self, client):
        product = _create_product(client, quantity=5)
        _move(client, product["id"], "OUT", 1, performed_by="anna")

        logs = client.get("/api/logs").json()
        actions = [entry["action"] for entry in logs["items"]]
        assert actions[:2] == ["STOCK_MOVEMENT", "PRODUCT_CREATE"]
        assert logs["items"][0]["actor"] == "anna"

        filtered = client.get("/api/logs", params={"action": "PRODUCT"}).json()
        assert filtered["total"] == 1
        by_actor = client.get("/api/logs", params={"actor": "anna"}).json()
        assert [entry["action"] for entry in by_actor["items"]] == ["STOCK_MOVEMENT"]
        future = client.get("/api/logs", params={"date_from": "2999-01-01"}).json()
        assert future["total"] == 0


class TestServiceEndpoints:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "OK"
        assert body["database"] == "connected"

    def test_unknown_route(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Route not found"}

    def test_large_responses_are_compressed(self, client):
        for i in range(12):
            _create_product(client, sku=f"GZ-{i}", description="Heavy duty item " * 5)

        response = client.get("/api/products", params={"page_size": 5}, headers={"Accept-Encoding": "gzip"})
        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        body = response.json()
        assert body["total"] == 12
        assert body["total_pages"] == 3

    def test_small_responses_are_not_compressed(self, client):
        response = client.get("/health", headers={"Accept-Encoding": "gzip"})
        assert "content-encoding" not in response.headers
