"""Tests for the FastAPI application."""

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import get_db
from main import app


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers(user_id, role="user"):
    return {"X-User-Id": user_id, "X-User-Role": role}


@pytest.fixture
def seller_headers(seller_id):
    return headers(seller_id, "seller")


@pytest.fixture
def buyer_headers(buyer_id):
    return headers(buyer_id)


@pytest.fixture
def admin_headers():
    return headers(str(ObjectId()), "admin")


@pytest.fixture
def product(client, seller_headers):
    response = client.post("/api/products", headers=seller_headers, json={
        "name": "Hoodie Champion",
        "description": "Buzo gris con capota",
        "price": 45000,
        "category": "Sudaderas",
        "size": "L",
        "condition": "Como nuevo",
        "brand": "Champion",
        "color": "Gris",
        "stock": 3,
    })
    assert response.status_code == 201
    return response.json()


def order_body(shipping_address, *lines):
    return {
        "items": [{"product": product_id, "quantity": quantity} for product_id, quantity in lines],
        "shipping_address": shipping_address,
        "payment_method": "nequi",
    }


class TestBasics:
    def test_root(self, client):
        assert client.get("/").status_code == 200

    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}

    def test_startup_creates_indexes(self, monkeypatch):
        database = mongomock.MongoClient().startup_db
        monkeypatch.setattr("main.get_db", lambda: database)

        with TestClient(app) as started:
            assert started.get("/health").status_code == 200

        assert "product_id_1_user_id_1" in database["review"].index_information()
        assert database["product"].index_information()["sku_1"]["unique"] is True

    def test_missing_database(self):
        app.dependency_overrides[get_db] = lambda: None
        try:
            response = TestClient(app).get("/api/products")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500

    def test_requires_identity(self, client, product, shipping_address):
        response = client.post("/api/orders", json=order_body(shipping_address, (product["id"], 1)))
        assert response.status_code == 401


class TestProductsApi:
    def test_create_and_get(self, client, product):
        response = client.get(f"/api/products/{product['id']}")
        assert response.status_code == 200
        assert response.json()["name"] == "Hoodie Champion"
        assert response.json()["discount_percentage"] == 0
        assert response.json()["available"] is True

    def test_buyer_cannot_list_products_for_sale(self, client, buyer_headers):
        response = client.post("/api/products", headers=buyer_headers, json={
            "name": "Gorra", "description": "Gorra plana", "price": 20000, "category": "Accesorios",
            "size": "Única", "brand": "New Era", "color": "Negro",
        })
        assert response.status_code == 403

    def test_invalid_category_is_400(self, client, seller_headers):
        response = client.post("/api/products", headers=seller_headers, json={
            "name": "Nevera", "description": "x", "price": 1, "category": "Hogar",
            "size": "M", "brand": "x", "color": "x",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_unknown_product_is_404(self, client):
        assert client.get(f"/api/products/{ObjectId()}").status_code == 404
        assert client.get("/api/products/not-an-id").status_code == 404

    def test_soft_delete(self, client, product, seller_headers):
        response = client.delete(f"/api/products/{product['id']}", headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["product"]["active"] is False
        assert client.get("/api/products").json()["total"] == 0


class TestOrdersApi:
    def test_order_flow(self, client, product, buyer_headers, admin_headers, seller_id, shipping_address):
        response = client.post("/api/orders", headers=buyer_headers,
                               json=order_body(shipping_address, (product["id"], 2)))
        assert response.status_code == 201
        order = response.json()
        assert order["status"] == "pending"
        assert order["items_price"] == 90000
        assert order["total_price"] == 117100
        assert order["user"]["username"] == "buyer"

        payment = {
            "id": "NEQ-1",
            "status": "COMPLETED",
            "update_time": "2024-05-01T10:00:00Z",
            "payer": {"email_address": "buyer@example.com"},
        }
        response = client.put(f"/api/orders/{order['id']}/pay", headers=buyer_headers, json=payment)
        assert response.status_code == 200
        assert response.json()["is_paid"] is True

        response = client.put(f"/api/orders/{order['id']}/deliver", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "delivered"

        seller = client.get(f"/api/users/{seller_id}").json()
        assert seller["stats"]["products_sold"] == 2
        assert seller["stats"]["total_earnings"] == 90000

    def test_insufficient_stock(self, client, product, buyer_headers, shipping_address):
        response = client.post("/api/orders", headers=buyer_headers,
                               json=order_body(shipping_address, (product["id"], 4)))
        assert response.status_code == 400
        body = response.json()
        assert body["error_type"] == "InsufficientStockError"
        assert body["available"] == 3
        assert body["requested"] == 4

    def test_empty_order(self, client, buyer_headers, shipping_address):
        response = client.post("/api/orders", headers=buyer_headers, json=order_body(shipping_address))
        assert response.status_code == 400
        assert response.json()["error_type"] == "EmptyOrderError"

    def test_zero_quantity_is_rejected(self, client, product, buyer_headers, shipping_address):
        response = client.post("/api/orders", headers=buyer_headers,
                               json=order_body(shipping_address, (product["id"], 0)))
        assert response.status_code == 400

    def test_cancel_restores_stock(self, client, product, buyer_headers, shipping_address):
        order = client.post("/api/orders", headers=buyer_headers,
                            json=order_body(shipping_address, (product["id"], 3))).json()
        assert client.get(f"/api/products/{product['id']}").json()["stock"] == 0

        for _ in range(2):
            response = client.put(f"/api/orders/{order['id']}/cancel", headers=buyer_headers)
            assert response.status_code == 200
            assert response.json()["status"] == "cancelled"

        assert client.get(f"/api/products/{product['id']}").json()["stock"] == 3

    def test_cancel_by_stranger_is_403(self, client, product, buyer_headers, shipping_address):
        order = client.post("/api/orders", headers=buyer_headers,
                            json=order_body(shipping_address, (product["id"], 1))).json()
        response = client.put(f"/api/orders/{order['id']}/cancel", headers=headers(str(ObjectId())))
        assert response.status_code == 403

    def test_deliver_requires_admin(self, client, product, buyer_headers, shipping_address):
        order = client.post("/api/orders", headers=buyer_headers,
                            json=order_body(shipping_address, (product["id"], 1))).json()
        response = client.put(f"/api/orders/{order['id']}/deliver", headers=buyer_headers)
        assert response.status_code == 403

    def test_unknown_order_is_404(self, client, admin_headers):
        assert client.put(f"/api/orders/{ObjectId()}/deliver", headers=admin_headers).status_code == 404

    def test_backwards_status_is_400(self, client, product, buyer_headers, admin_headers, shipping_address):
        order = client.post("/api/orders", headers=buyer_headers,
                            json=order_body(shipping_address, (product["id"], 1))).json()
        client.patch(f"/api/orders/{order['id']}/status", headers=admin_headers, json={"status": "shipped"})
        response = client.patch(f"/api/orders/{order['id']}/status", headers=admin_headers,
                                json={"status": "confirmed"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidStatusTransitionError"

    def test_my_orders(self, client, product, buyer_headers, shipping_address):
        client.post("/api/orders", headers=buyer_headers, json=order_body(shipping_address, (product["id"], 1)))
        response = client.get("/api/orders/mine", headers=buyer_headers)
        assert response.json()["count"] == 1


class TestInventoryApi:
    def test_low_stock_alerts(self, client, product, seller_headers):
        response = client.get("/api/inventory/alerts", headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["low_stock"]["count"] == 1

    def test_bulk_update(self, client, product, seller_headers):
        response = client.put("/api/inventory/stock", headers=seller_headers,
                              json=[{"product_id": product["id"], "new_stock": 10}])
        assert response.json()["summary"]["successful"] == 1
        assert client.get(f"/api/products/{product['id']}").json()["stock"] == 10


class TestReviewsApi:
    @pytest.fixture
    def delivered(self, client, product, buyer_headers, admin_headers, shipping_address):
        order = client.post("/api/orders", headers=buyer_headers,
                            json=order_body(shipping_address, (product["id"], 1))).json()
        client.put(f"/api/orders/{order['id']}/deliver", headers=admin_headers)
        return product["id"], order["id"]

    def review_body(self, product_id, order_id, rating=5):
        return {"product": product_id, "order": order_id, "rating": rating,
                "title": "Muy buena", "comment": "Tal cual la foto"}

    def test_review_flow(self, client, delivered, buyer_headers, admin_headers):
        product_id, order_id = delivered
        response = client.post("/api/reviews", headers=buyer_headers, json=self.review_body(product_id, order_id))
        assert response.status_code == 201
        review_id = response.json()["id"]

        response = client.patch(f"/api/reviews/{review_id}/moderate", headers=admin_headers,
                                json={"status": "approved"})
        assert response.status_code == 200

        product = client.get(f"/api/products/{product_id}").json()
        assert product["stats"]["average_rating"] == 5
        assert product["stats"]["review_count"] == 1

        stats = client.get(f"/api/reviews/product/{product_id}/stats").json()
        assert stats["total"] == 1

        for _ in range(2):
            response = client.post(f"/api/reviews/{review_id}/helpful", headers=admin_headers)
            assert response.json()["helpful_count"] == 1

    def test_duplicate_review_is_400(self, client, delivered, buyer_headers):
        product_id, order_id = delivered
        client.post("/api/reviews", headers=buyer_headers, json=self.review_body(product_id, order_id))
        response = client.post("/api/reviews", headers=buyer_headers, json=self.review_body(product_id, order_id))
        assert response.status_code == 400
        assert response.json()["error_type"] == "DuplicateReviewError"

    def test_review_without_purchase_is_400(self, client, product, buyer_headers):
        response = client.post("/api/reviews", headers=buyer_headers,
                               json=self.review_body(product["id"], str(ObjectId())))
        assert response.status_code == 400
        assert response.json()["error_type"] == "PurchaseRequiredError"

    def test_rating_out_of_range_is_400(self, client, delivered, buyer_headers):
        product_id, order_id = delivered
        response = client.post("/api/reviews", headers=buyer_headers,
                               json=self.review_body(product_id, order_id, rating=6))
        assert response.status_code == 400
