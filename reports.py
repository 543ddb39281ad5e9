"""
Admin reports: read-only aggregations over the order collection.

Every report covers a trailing window of `period` days; cancelled orders
never count towards revenue.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import PyMongoError

from auth import require_admin
from database import get_db, oid, serialize, utcnow
from pricing import to_money
from schemas import status_label

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

STATUS_ORDER = ("Cancelled", "Delivered", "Paid", "Pending")

BUCKETS = {
    "daily": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}, "day": {"$dayOfMonth": "$created_at"}},
    "weekly": {"year": {"$year": "$created_at"}, "week": {"$week": "$created_at"}},
    "monthly": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
}


def _aggregate(db, collection: str, pipeline: list) -> list:
    try:
        return list(db[collection].aggregate(pipeline))
    except PyMongoError as e:
        logger.exception("Report query failed on %s", collection)
        raise HTTPException(status_code=500, detail=str(e))


def _since(days: int):
    return utcnow() - timedelta(days=days)


def _money(value) -> float:
    return float(to_money(value or 0))


def growth(current, previous) -> float:
    """Percentage change against the previous period; 0 when there was none."""
    if previous > 0:
        return round((current - previous) / previous * 100, 2)
    return 0.0


def bucket_label(key: dict) -> str:
    if "day" in key:
        return f"{key['year']:04d}-{key['month']:02d}-{key['day']:02d}"
    if "week" in key:
        return f"{key['year']:04d}-W{key['week']:02d}"
    return f"{key['year']:04d}-{key['month']:02d}"


def _revenue_window(db, start, end=None):
    created = {"$gte": start}
    if end is not None:
        created["$lt"] = end
    rows = _aggregate(db, "order", [
        {"$match": {"created_at": created, "is_cancelled": False}},
        {"$group": {"_id": None, "revenue": {"$sum": "$total_price"}, "orders": {"$sum": 1}}},
    ])
    if not rows:
        return 0.0, 0
    return _money(rows[0]["revenue"]), rows[0]["orders"]


@router.get("/overview")
def sales_overview(period: int = Query(30, ge=1), admin: dict = Depends(require_admin), db=Depends(get_db)):
    start = _since(period)
    prev_start = _since(period * 2)

    revenue, orders = _revenue_window(db, start)
    prev_revenue, prev_orders = _revenue_window(db, prev_start, start)

    return {
        "current": {
            "revenue": revenue,
            "orders": orders,
            "avg_order_value": _money(revenue / orders) if orders else 0.0,
        },
        "previous": {"revenue": prev_revenue, "orders": prev_orders},
        "growth": {"revenue": growth(revenue, prev_revenue), "orders": growth(orders, prev_orders)},
        "period": period,
    }


@router.get("/sales-by-period")
def sales_by_period(
    period: str = Query("daily", pattern="^(daily|weekly|monthly)$"),
    days: int = Query(30, ge=1),
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    rows = _aggregate(db, "order", [
        {"$match": {"created_at": {"$gte": _since(days)}, "is_cancelled": False}},
        {"$group": {
            "_id": BUCKETS[period],
            "revenue": {"$sum": "$total_price"},
            "orders": {"$sum": 1},
            "avg_order_value": {"$avg": "$total_price"},
        }},
    ])
    rows.sort(key=lambda r: tuple(r["_id"].get(k, 0) for k in ("year", "month", "week", "day")))
    data = [
        {
            "date": bucket_label(r["_id"]),
            "revenue": _money(r["revenue"]),
            "orders": r["orders"],
            "avg_order_value": _money(r["avg_order_value"]),
        }
        for r in rows
    ]
    return {"period": period, "days": days, "data": data}


@router.get("/top-products")
def top_products(
    period: int = Query(30, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    rows = _aggregate(db, "order", [
        {"$match": {"created_at": {"$gte": _since(period)}, "is_cancelled": False}},
        {"$unwind": "$order_items"},
        {"$group": {
            "_id": "$order_items.product_id",
            "total_quantity": {"$sum": "$order_items.qty"},
            "total_revenue": {"$sum": {"$multiply": ["$order_items.price", "$order_items.qty"]}},
            "order_count": {"$sum": 1},
        }},
        {"$sort": {"total_revenue": -1}},
    ])

    # products deleted since the sale drop out, as with an inner join
    ids = [oid(r["_id"]) for r in rows]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}}, {"name": 1, "image": 1})}

    result = []
    for r in rows:
        product = products.get(r["_id"])
        if product is None:
            continue
        result.append({
            "product_id": r["_id"],
            "product_name": product["name"],
            "product_image": product.get("image"),
            "total_quantity": r["total_quantity"],
            "total_revenue": _money(r["total_revenue"]),
            "order_count": r["order_count"],
            "avg_price": _money(r["total_revenue"] / r["total_quantity"]) if r["total_quantity"] else 0.0,
        })
        if len(result) == limit:
            break
    return {"period": period, "products": result}


@router.get("/customers")
def customer_analytics(period: int = Query(30, ge=1), admin: dict = Depends(require_admin), db=Depends(get_db)):
    start = _since(period)
    in_period = {"created_at": {"$gte": start}, "is_cancelled": False}
    try:
        total_customers = db["user"].count_documents({"role": "user"})
        new_customers = db["user"].count_documents({"role": "user", "created_at": {"$gte": start}})
        active_customers = len(db["order"].distinct("user_id", in_period))
    except PyMongoError as e:
        logger.exception("Customer report failed")
        raise HTTPException(status_code=500, detail=str(e))

    rows = _aggregate(db, "order", [
        {"$match": in_period},
        {"$group": {
            "_id": "$user_id",
            "total_orders": {"$sum": 1},
            "total_spent": {"$sum": "$total_price"},
            "avg_order_value": {"$avg": "$total_price"},
        }},
        {"$group": {
            "_id": None,
            "avg_orders_per_customer": {"$avg": "$total_orders"},
            "avg_spent_per_customer": {"$avg": "$total_spent"},
            "avg_order_value": {"$avg": "$avg_order_value"},
        }},
    ])
    analytics = {"avg_orders_per_customer": 0.0, "avg_spent_per_customer": 0.0, "avg_order_value": 0.0}
    if rows:
        analytics = {
            "avg_orders_per_customer": round(rows[0]["avg_orders_per_customer"], 2),
            "avg_spent_per_customer": _money(rows[0]["avg_spent_per_customer"]),
            "avg_order_value": _money(rows[0]["avg_order_value"]),
        }
    return {
        "total_customers": total_customers,
        "new_customers": new_customers,
        "active_customers": active_customers,
        "analytics": analytics,
        "period": period,
    }


@router.get("/order-status")
def order_status_distribution(period: int = Query(30, ge=1), admin: dict = Depends(require_admin), db=Depends(get_db)):
    rows = _aggregate(db, "order", [
        {"$match": {"created_at": {"$gte": _since(period)}}},
        {"$group": {
            "_id": {"is_paid": "$is_paid", "is_delivered": "$is_delivered", "is_cancelled": "$is_cancelled"},
            "count": {"$sum": 1},
            "total_revenue": {"$sum": "$total_price"},
        }},
    ])
    buckets = {label: {"status": label, "count": 0, "total_revenue": 0.0} for label in STATUS_ORDER}
    for r in rows:
        bucket = buckets[status_label(r["_id"])]
        bucket["count"] += r["count"]
        bucket["total_revenue"] = _money(bucket["total_revenue"] + r["total_revenue"])
    return {"period": period, "distribution": [buckets[label] for label in STATUS_ORDER]}


@router.get("/export")
def export_sales(
    format: str = "json",
    period: int = Query(30, ge=1),
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    if format != "json":
        raise HTTPException(status_code=400, detail="Only JSON format supported currently")
    start = _since(period)
    try:
        orders = list(db["order"].find({"created_at": {"$gte": start}}).sort("created_at", -1))
        user_ids = list({oid(o["user_id"]) for o in orders})
        users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})}
    except PyMongoError as e:
        logger.exception("Sales export failed")
        raise HTTPException(status_code=500, detail=str(e))

    exported = []
    for o in orders:
        owner = users.get(o["user_id"])
        data = serialize(o)
        data["status"] = status_label(data)
        data["user"] = {"name": owner["name"], "email": owner["email"]} if owner else None
        exported.append(data)
    return {
        "period": period,
        "start_date": start,
        "end_date": utcnow(),
        "total_orders": len(exported),
        "orders": exported,
    }
