import os
import tempfile
from datetime import timedelta

# must be set before the app modules read their configuration
os.environ["DATABASE_URL"] = ""
os.environ["UPLOADS_DIR"] = tempfile.mkdtemp(prefix="storefront-uploads-")
os.environ["SECRET_KEY"] = "test-secret"

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from auth import create_token
from main import app
from schemas import Product as ProductSchema

SHIPPING = {"address": "12 MG Road", "city": "Pune", "postal_code": "411001", "country": "India"}


@pytest.fixture
def db():
    mock_db = mongomock.MongoClient()["storefront_test"]
    database.ensure_indexes(mock_db)
    return mock_db


@pytest.fixture
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name="Alice", email="alice@example.com", role="user"):
        user_id = database.create_document(db, "user", {
            "name": name,
            "email": email,
            "password_hash": "not-a-real-hash",
            "role": role,
            "is_active": True,
        })
        return user_id, {"Authorization": f"Bearer {create_token(user_id)}"}
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin_user(make_user):
    return make_user("Admin", "admin@example.com", "admin")


@pytest.fixture
def make_product(db):
    def _make(**overrides):
        data = {
            "name": "Widget",
            "description": "A sturdy widget",
            "price": 100.0,
            "category": "gadgets",
            "brand": "Acme",
            "image": "https://cdn.example.com/widget.png",
            "count_in_stock": 10,
        }
        data.update(overrides)
        return database.create_document(db, "product", ProductSchema(**data))
    return _make


@pytest.fixture
def seed_order(db):
    """Insert an order directly, bypassing checkout, `days_ago` days in the past."""
    def _seed(user_id, items, days_ago=1, **flags):
        created_at = database.utcnow() - timedelta(days=days_ago)
        items_price = sum(i["price"] * i["qty"] for i in items)
        doc = {
            "user_id": user_id,
            "order_items": [{"name": "Item", "image": None, **i} for i in items],
            "shipping_address": SHIPPING,
            "payment_method": "card",
            "payment_result": None,
            "items_price": items_price,
            "tax_price": 0.0,
            "shipping_price": 0.0,
            "total_price": flags.pop("total_price", items_price),
            "is_paid": False,
            "paid_at": None,
            "is_delivered": False,
            "delivered_at": None,
            "is_cancelled": False,
            "cancelled_at": None,
            "cancellation_reason": None,
            "delivery_date": created_at + timedelta(days=7),
            "created_at": created_at,
        }
        doc.update(flags)
        return database.create_document(db, "order", doc)
    return _seed
