"""Pytest fixtures for the marketplace tests."""

import mongomock
import pytest
from bson import ObjectId

from catalog import Catalog
from database import create_document, ensure_indexes
from inventory import InventoryManager
from orders import OrderManager
from reviews import ReviewManager
from schemas import OrderCreate, Requester


@pytest.fixture
def db():
    """Fresh in-memory MongoDB database with the production indexes."""
    database = mongomock.MongoClient().db
    ensure_indexes(database)
    return database


@pytest.fixture
def catalog(db):
    return Catalog(db)


@pytest.fixture
def inventory(db):
    return InventoryManager(db)


@pytest.fixture
def orders(db):
    return OrderManager(db)


@pytest.fixture
def reviews(db):
    return ReviewManager(db)


@pytest.fixture
def seller_id(db):
    return create_document(db, "user", {
        "username": "vintage_seller",
        "email": "seller@example.com",
        "role": "seller",
        "stats": {"products_listed": 0, "products_sold": 0, "total_earnings": 0},
    })


@pytest.fixture
def buyer_id(db):
    return create_document(db, "user", {
        "username": "buyer",
        "email": "buyer@example.com",
        "role": "user",
        "stats": {"products_listed": 0, "products_sold": 0, "total_earnings": 0},
    })


@pytest.fixture
def buyer(buyer_id):
    return Requester(user_id=buyer_id, role="user")


@pytest.fixture
def admin():
    return Requester(user_id="admin-1", role="admin")


@pytest.fixture
def make_product(db, seller_id):
    """Insert a product and return its id as a string."""
    def _make(price=30000, stock=5, active=True, name="Chaqueta denim", **overrides):
        doc = {
            "name": name,
            "description": "Chaqueta de jean oversize",
            "price": price,
            "category": "Chaquetas",
            "size": "M",
            "condition": "Como nuevo",
            "brand": "Levi's",
            "color": "Azul",
            "images": [{"url": "https://img.example.com/jacket.jpg", "alt": None, "is_primary": True}],
            "stock": stock,
            "active": active,
            "seller_id": seller_id,
            "stats": {"views": 0, "favorites": 0, "sales": 0, "average_rating": 0, "review_count": 0},
        }
        doc.update(overrides)
        return create_document(db, "product", doc)

    return _make


@pytest.fixture
def shipping_address():
    return {
        "address": "Calle 45 # 12-30",
        "city": "Bogotá",
        "postal_code": "110111",
        "phone": "3001234567",
    }


@pytest.fixture
def order_payload(shipping_address):
    """Build an OrderCreate from (product_id, quantity) pairs."""
    def _payload(*lines, payment_method="card"):
        return OrderCreate(
            items=[{"product": product_id, "quantity": quantity} for product_id, quantity in lines],
            shipping_address=shipping_address,
            payment_method=payment_method,
        )

    return _payload


@pytest.fixture
def stock_of(db):
    """Current stock of a product."""
    def _stock(product_id):
        return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]

    return _stock
