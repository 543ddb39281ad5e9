from datetime import timedelta

import pytest
from bson.objectid import ObjectId

from database import utcnow
from reports import bucket_label, growth


@pytest.fixture
def sales(make_user, make_product, seed_order):
    alice_id, _ = make_user("Alice", "alice@example.com")
    make_user("Bob", "bob@example.com")
    a = make_product(name="Alpha", price=100.0, image="/uploads/alpha.png")
    b = make_product(name="Beta", price=50.0)
    gone = str(ObjectId())

    seed_order(alice_id, [{"product_id": a, "price": 100.0, "qty": 2}], days_ago=1, total_price=200.0, is_paid=True)
    seed_order(alice_id, [{"product_id": a, "price": 100.0, "qty": 1}, {"product_id": b, "price": 50.0, "qty": 1}],
               days_ago=2, total_price=150.0, is_paid=True, is_delivered=True)
    seed_order(alice_id, [{"product_id": gone, "price": 500.0, "qty": 1}], days_ago=3, total_price=500.0)
    seed_order(alice_id, [{"product_id": b, "price": 50.0, "qty": 10}], days_ago=5, total_price=500.0, is_cancelled=True)
    seed_order(alice_id, [{"product_id": a, "price": 100.0, "qty": 1}], days_ago=45, total_price=100.0)
    return {"alpha": a, "beta": b}


@pytest.fixture
def admin_headers(admin_user):
    return admin_user[1]


def test_growth():
    assert growth(150, 100) == 50.0
    assert growth(50, 100) == -50.0
    assert growth(10, 0) == 0.0


def test_bucket_label():
    assert bucket_label({"year": 2024, "month": 3, "day": 7}) == "2024-03-07"
    assert bucket_label({"year": 2024, "week": 5}) == "2024-W05"
    assert bucket_label({"year": 2024, "month": 11}) == "2024-11"


def test_reports_require_admin(client, user):
    _, headers = user
    assert client.get("/reports/overview", headers=headers).status_code == 403


def test_overview(client, sales, admin_headers):
    body = client.get("/reports/overview", params={"period": 30}, headers=admin_headers).json()
    assert body["current"] == {"revenue": 850.0, "orders": 3, "avg_order_value": 283.33}
    assert body["previous"] == {"revenue": 100.0, "orders": 1}
    assert body["growth"] == {"revenue": 750.0, "orders": 200.0}
    assert body["period"] == 30


def test_overview_without_orders(client, admin_headers):
    body = client.get("/reports/overview", headers=admin_headers).json()
    assert body["current"] == {"revenue": 0.0, "orders": 0, "avg_order_value": 0.0}
    assert body["growth"] == {"revenue": 0.0, "orders": 0.0}


def test_sales_by_day(client, sales, admin_headers):
    body = client.get("/reports/sales-by-period", params={"period": "daily", "days": 30}, headers=admin_headers).json()
    now = utcnow()
    expected_dates = [(now - timedelta(days=d)).strftime("%Y-%m-%d") for d in (3, 2, 1)]
    assert [row["date"] for row in body["data"]] == expected_dates
    assert [row["revenue"] for row in body["data"]] == [500.0, 150.0, 200.0]
    assert all(row["orders"] == 1 for row in body["data"])


def test_sales_by_month(client, sales, admin_headers):
    body = client.get("/reports/sales-by-period", params={"period": "monthly", "days": 30}, headers=admin_headers).json()
    assert sum(row["revenue"] for row in body["data"]) == 850.0
    assert sum(row["orders"] for row in body["data"]) == 3


def test_sales_by_week(client, sales, admin_headers):
    body = client.get("/reports/sales-by-period", params={"period": "weekly", "days": 30}, headers=admin_headers).json()
    now = utcnow()
    # $week counts Sunday-based weeks, like %U
    weeks = {(now - timedelta(days=d)).strftime("%Y-W%U") for d in (1, 2, 3)}
    labels = [row["date"] for row in body["data"]]
    assert labels == sorted(weeks)
    assert sum(row["revenue"] for row in body["data"]) == 850.0
    assert sum(row["orders"] for row in body["data"]) == 3


def test_sales_by_period_rejects_unknown_granularity(client, admin_headers):
    res = client.get("/reports/sales-by-period", params={"period": "hourly"}, headers=admin_headers)
    assert res.status_code == 400


def test_top_products(client, sales, admin_headers):
    body = client.get("/reports/top-products", headers=admin_headers).json()
    assert [p["product_name"] for p in body["products"]] == ["Alpha", "Beta"]
    alpha = body["products"][0]
    assert alpha == {
        "product_id": sales["alpha"],
        "product_name": "Alpha",
        "product_image": "/uploads/alpha.png",
        "total_quantity": 3,
        "total_revenue": 300.0,
        "order_count": 2,
        "avg_price": 100.0,
    }

    body = client.get("/reports/top-products", params={"limit": 1}, headers=admin_headers).json()
    assert [p["product_name"] for p in body["products"]] == ["Alpha"]


def test_customers(client, sales, admin_headers):
    body = client.get("/reports/customers", headers=admin_headers).json()
    assert body["total_customers"] == 2
    assert body["new_customers"] == 2
    assert body["active_customers"] == 1
    assert body["analytics"] == {
        "avg_orders_per_customer": 3.0,
        "avg_spent_per_customer": 850.0,
        "avg_order_value": 283.33,
    }


def test_order_status_distribution(client, sales, admin_headers):
    body = client.get("/reports/order-status", headers=admin_headers).json()
    assert body["distribution"] == [
        {"status": "Cancelled", "count": 1, "total_revenue": 500.0},
        {"status": "Delivered", "count": 1, "total_revenue": 150.0},
        {"status": "Paid", "count": 1, "total_revenue": 200.0},
        {"status": "Pending", "count": 1, "total_revenue": 500.0},
    ]


def test_export(client, sales, admin_headers):
    body = client.get("/reports/export", headers=admin_headers).json()
    assert body["total_orders"] == 4
    assert {o["user"]["email"] for o in body["orders"]} == {"alice@example.com"}
    assert body["orders"][0]["status"] == "Paid"


def test_export_only_supports_json(client, admin_headers):
    res = client.get("/reports/export", params={"format": "csv"}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json() == {"message": "Only JSON format supported currently"}
