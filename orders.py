"""
Order routes: checkout, order history, one-way status transitions.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from auth import get_current_user, require_admin, is_admin
from cart import mutate_cart
from database import get_db, create_document, oid, serialize, utcnow
from pricing import items_subtotal, order_prices, to_money
from schemas import (
    Order as OrderSchema,
    OrderItem as OrderItemSchema,
    PaymentResult,
    ShippingAddress,
    default_delivery_date,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderLine(BaseModel):
    product_id: str
    qty: int = Field(..., ge=1)


class CreateOrderRequest(BaseModel):
    order_items: List[OrderLine]
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)


class PayOrderRequest(BaseModel):
    payment_result: Optional[PaymentResult] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


def order_response(doc: dict, now: Optional[datetime] = None) -> dict:
    order = OrderSchema(**doc)
    data = serialize(dict(doc))
    data["status"] = order.status
    data["can_be_cancelled"] = order.can_be_cancelled(now)
    return data


def cancel_refusal(order: OrderSchema, now: datetime) -> Optional[str]:
    """Why an order cannot be cancelled at `now`, or None if it can."""
    if order.is_delivered:
        return "Cannot cancel a delivered order"
    if order.is_cancelled:
        return "Order is already cancelled"
    if not now < order.delivery_date:
        return "Cancellation window has closed"
    return None


def _load_order(db, order_id: str, user: dict) -> dict:
    doc = db["order"].find_one({"_id": oid(order_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    if doc["user_id"] != str(user["_id"]) and not is_admin(user):
        raise HTTPException(status_code=403, detail="Not authorized to access this order")
    return doc


def _reserve_stock(db, lines: "OrderedDict[str, int]", products: dict):
    """Decrement stock for every line, undoing earlier lines if one falls short."""
    reserved = []
    for product_id, qty in lines.items():
        result = db["product"].update_one(
            {"_id": oid(product_id), "count_in_stock": {"$gte": qty}},
            {"$inc": {"count_in_stock": -qty}},
        )
        if result.matched_count == 0:
            _release_stock(db, reserved)
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {products[product_id]['name']}")
        reserved.append((product_id, qty))


def _release_stock(db, lines):
    for product_id, qty in lines:
        db["product"].update_one({"_id": oid(product_id)}, {"$inc": {"count_in_stock": qty}})


# ---------- Checkout ----------

@router.post("", status_code=201)
def create_order(payload: CreateOrderRequest, user: dict = Depends(get_current_user), db=Depends(get_db)):
    if not payload.order_items:
        raise HTTPException(status_code=400, detail="No order items")

    # merge repeated products so stock is checked against the combined quantity
    lines: "OrderedDict[str, int]" = OrderedDict()
    for line in payload.order_items:
        lines[line.product_id] = lines.get(line.product_id, 0) + line.qty

    products = {}
    for product_id in lines:
        product = db["product"].find_one({"_id": oid(product_id), "is_active": True})
        if not product:
            raise HTTPException(status_code=404, detail=f"Product not found: {product_id}")
        products[product_id] = product

    # snapshot of current product data; client-side prices are never trusted
    order_items = [
        OrderItemSchema(
            name=products[pid]["name"],
            qty=qty,
            image=products[pid].get("image"),
            price=products[pid]["price"],
            product_id=pid,
        )
        for pid, qty in lines.items()
    ]

    _reserve_stock(db, lines, products)

    now = utcnow()
    order = OrderSchema(
        user_id=str(user["_id"]),
        order_items=order_items,
        shipping_address=payload.shipping_address,
        payment_method=payload.payment_method,
        delivery_date=default_delivery_date(now),
        created_at=now,
        **order_prices(items_subtotal(order_items)),
    )
    try:
        order_id = create_document(db, "order", order)
    except PyMongoError as e:
        _release_stock(db, lines.items())
        logger.exception("Error creating order")
        raise HTTPException(status_code=500, detail=f"Failed to create order: {e}")

    logger.info("Order %s created for user %s (total %.2f)", order_id, user["_id"], order.total_price)

    try:
        mutate_cart(db, str(user["_id"]), lambda c: c.clear())
    except HTTPException:
        logger.warning("Order %s stored but cart for user %s was not cleared", order_id, user["_id"])

    return order_response(db["order"].find_one({"_id": oid(order_id)}))


# ---------- Reads ----------

@router.get("/my")
def my_orders(user: dict = Depends(get_current_user), db=Depends(get_db)):
    docs = db["order"].find({"user_id": str(user["_id"])}).sort("created_at", -1)
    now = utcnow()
    return [order_response(d, now) for d in docs]


@router.get("")
def list_orders(admin: dict = Depends(require_admin), db=Depends(get_db)):
    now = utcnow()
    return [order_response(d, now) for d in db["order"].find().sort("created_at", -1)]


@router.get("/admin/detailed")
def detailed_orders(admin: dict = Depends(require_admin), db=Depends(get_db)):
    docs = list(db["order"].find().sort("created_at", -1))
    user_ids = {oid(d["user_id"]) for d in docs}
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": list(user_ids)}}, {"name": 1, "email": 1})}
    now = utcnow()
    result = []
    for doc in docs:
        owner = users.get(doc["user_id"])
        data = order_response(doc, now)
        data["user"] = {"id": doc["user_id"], "name": owner["name"], "email": owner["email"]} if owner else None
        result.append(data)
    return result


@router.get("/expenses/{user_id}")
def user_expenses(user_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    owner = db["user"].find_one({"_id": oid(user_id)})
    if not owner:
        raise HTTPException(status_code=404, detail="User not found")
    docs = list(db["order"].find({"user_id": user_id}).sort("created_at", -1))
    counted = [d for d in docs if not d.get("is_cancelled")]
    total_spent = to_money(sum(d["total_price"] for d in counted))
    return {
        "user": {"id": user_id, "name": owner["name"], "email": owner["email"]},
        "total_spent": float(total_spent),
        "order_count": len(counted),
        "avg_order_value": float(to_money(total_spent / len(counted))) if counted else 0.0,
        "orders": [
            {
                "id": str(d["_id"]),
                "created_at": d.get("created_at"),
                "total_price": d["total_price"],
                "status": OrderSchema(**d).status,
            }
            for d in docs
        ],
    }


@router.get("/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    return order_response(_load_order(db, order_id, user))


# ---------- Status transitions ----------

@router.put("/{order_id}/pay")
def pay_order(order_id: str, payload: Optional[PayOrderRequest] = None, user: dict = Depends(get_current_user), db=Depends(get_db)):
    doc = _load_order(db, order_id, user)
    now = utcnow()
    payment_result = payload.payment_result.model_dump() if payload and payload.payment_result else None
    result = db["order"].update_one(
        {"_id": doc["_id"], "is_paid": False, "is_cancelled": False},
        {"$set": {"is_paid": True, "paid_at": now, "payment_result": payment_result, "updated_at": now}},
    )
    if result.matched_count == 0:
        current = db["order"].find_one({"_id": doc["_id"]})
        detail = "Cannot pay for a cancelled order" if current.get("is_cancelled") else "Order is already paid"
        raise HTTPException(status_code=400, detail=detail)
    logger.info("Order %s marked paid", order_id)
    return order_response(db["order"].find_one({"_id": doc["_id"]}), now)


@router.put("/{order_id}/deliver")
def deliver_order(order_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    doc = _load_order(db, order_id, admin)
    now = utcnow()
    result = db["order"].update_one(
        {"_id": doc["_id"], "is_paid": True, "is_delivered": False, "is_cancelled": False},
        {"$set": {"is_delivered": True, "delivered_at": now, "updated_at": now}},
    )
    if result.matched_count == 0:
        current = db["order"].find_one({"_id": doc["_id"]})
        if current.get("is_cancelled"):
            detail = "Cannot deliver a cancelled order"
        elif current.get("is_delivered"):
            detail = "Order is already delivered"
        else:
            detail = "Order must be paid before delivery"
        raise HTTPException(status_code=400, detail=detail)
    logger.info("Order %s marked delivered", order_id)
    return order_response(db["order"].find_one({"_id": doc["_id"]}), now)


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelOrderRequest] = None, user: dict = Depends(get_current_user), db=Depends(get_db)):
    doc = _load_order(db, order_id, user)
    now = utcnow()
    refusal = cancel_refusal(OrderSchema(**doc), now)
    if refusal:
        raise HTTPException(status_code=400, detail=refusal)

    reason = (payload.reason if payload else None) or ("Cancelled by admin" if is_admin(user) else "Cancelled by customer")
    # guard repeated inside the write so a late request cannot slip past it
    result = db["order"].update_one(
        {"_id": doc["_id"], "is_delivered": False, "is_cancelled": False, "delivery_date": {"$gt": now}},
        {"$set": {"is_cancelled": True, "cancelled_at": now, "cancellation_reason": reason, "updated_at": now}},
    )
    if result.matched_count == 0:
        current = db["order"].find_one({"_id": doc["_id"]})
        raise HTTPException(status_code=400, detail=cancel_refusal(OrderSchema(**current), now) or "Order cannot be cancelled")

    _release_stock(db, [(item["product_id"], item["qty"]) for item in doc["order_items"]])
    logger.info("Order %s cancelled: %s", order_id, reason)
    return {
        "message": "Order cancelled successfully",
        "order": order_response(db["order"].find_one({"_id": doc["_id"]}), now),
    }
