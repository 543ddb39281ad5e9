"""
Admin routes: dashboard counters, recent orders, user management.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr

from auth import require_admin
from database import get_db, get_documents, oid, serialize, utcnow
from pricing import to_money
from schemas import status_label

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

ROLES = ("user", "admin")


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[str] = None


class UpdateRoleRequest(BaseModel):
    role: str


def _check_role(role: str):
    if role not in ROLES:
        raise HTTPException(status_code=400, detail="Role must be one of: " + ", ".join(ROLES))


def _find_user(db, user_id: str) -> dict:
    user = db["user"].find_one({"_id": oid(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _public_user(user: dict) -> dict:
    return {"id": str(user["_id"]), "name": user["name"], "email": user["email"], "role": user.get("role", "user")}


@router.get("/dashboard/stats")
def dashboard_stats(admin: dict = Depends(require_admin), db=Depends(get_db)):
    paid = db["order"].find({"is_paid": True}, {"total_price": 1})
    total_revenue = sum(o["total_price"] for o in paid)
    return {
        "total_users": db["user"].count_documents({}),
        "total_products": db["product"].count_documents({}),
        "total_orders": db["order"].count_documents({}),
        "total_revenue": float(to_money(total_revenue)),
        "recent_orders": db["order"].count_documents({"created_at": {"$gte": utcnow() - timedelta(days=30)}}),
        "pending_orders": db["order"].count_documents({"is_paid": True, "is_delivered": False, "is_cancelled": False}),
    }


@router.get("/orders/recent")
def recent_orders(limit: int = Query(5, ge=1, le=50), admin: dict = Depends(require_admin), db=Depends(get_db)):
    orders = list(db["order"].find().sort("created_at", -1).limit(limit))
    user_ids = list({oid(o["user_id"]) for o in orders})
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})}
    result = []
    for o in orders:
        owner = users.get(o["user_id"])
        data = serialize(o)
        data["status"] = status_label(data)
        data["user"] = {"name": owner["name"], "email": owner["email"]} if owner else None
        result.append(data)
    return result


@router.get("/users")
def list_users(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return [serialize(u) for u in get_documents(db, "user")]


@router.get("/users/{user_id}")
def get_user(user_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return _public_user(_find_user(db, user_id))


@router.put("/users/{user_id}")
def update_user(user_id: str, payload: UpdateUserRequest, admin: dict = Depends(require_admin), db=Depends(get_db)):
    user = _find_user(db, user_id)
    updates = {}
    if payload.name:
        updates["name"] = payload.name
    if payload.email and payload.email != user["email"]:
        if db["user"].find_one({"email": payload.email}):
            raise HTTPException(status_code=400, detail="Email already in use")
        updates["email"] = payload.email
    if payload.role:
        _check_role(payload.role)
        updates["role"] = payload.role
    if updates:
        updates["updated_at"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    return _public_user(db["user"].find_one({"_id": user["_id"]}))


@router.put("/users/{user_id}/role")
def update_user_role(user_id: str, payload: UpdateRoleRequest, admin: dict = Depends(require_admin), db=Depends(get_db)):
    _check_role(payload.role)
    user = _find_user(db, user_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": payload.role, "updated_at": utcnow()}})
    logger.info("User %s role set to %s by %s", user_id, payload.role, admin["_id"])
    return _public_user(db["user"].find_one({"_id": user["_id"]}))


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    user = _find_user(db, user_id)
    db["user"].delete_one({"_id": user["_id"]})
    db["cart"].delete_one({"user_id": user_id})
    logger.info("User %s removed by %s", user_id, admin["_id"])
    return {"message": "User removed"}
