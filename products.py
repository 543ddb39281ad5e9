"""
Product routes: listing, filtering, admin CRUD with image upload, reviews.
"""

import logging
import math
import re
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from auth import get_current_user, require_admin
from database import get_db, create_document, oid, serialize, utcnow
from schemas import Product as ProductSchema, Review as ReviewSchema
from uploads import save_image, delete_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])

SORTS = {
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "price-low": [("price", 1)],
    "price-high": [("price", -1)],
    "rating": [("rating", -1)],
    "name": [("name", 1)],
}

REQUIRED_FIELDS = ("name", "description", "price", "category", "brand", "count_in_stock")


def review_summary(reviews: List[dict]) -> Tuple[float, int]:
    """Average rating and count for a product's review list."""
    if not reviews:
        return 0.0, 0
    total = sum(r["rating"] for r in reviews)
    return total / len(reviews), len(reviews)


def build_product_query(keyword=None, category=None, brand=None, min_price=None, max_price=None, rating=None, active_only=True) -> dict:
    query = {"is_active": True} if active_only else {}
    if keyword:
        pattern = {"$regex": re.escape(keyword), "$options": "i"}
        query["$or"] = [
            {"name": pattern},
            {"description": pattern},
            {"category": pattern},
            {"brand": pattern},
        ]
    if category and category != "all":
        query["category"] = category
    if brand and brand != "all":
        query["brand"] = brand
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if rating is not None:
        query["rating"] = {"$gte": rating}
    return query


def paginate_products(db, query: dict, sort_by: str, page: int, limit: int) -> dict:
    sort = SORTS.get(sort_by, SORTS["newest"]) + [("_id", 1)]
    products = db["product"].find(query).sort(sort).skip((page - 1) * limit).limit(limit)
    total_count = db["product"].count_documents(query)
    total_pages = math.ceil(total_count / limit)
    return {
        "products": [serialize(p) for p in products],
        "total_count": total_count,
        "current_page": page,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def _parse_non_negative(value: str, cast, message: str):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=message)
    if not math.isfinite(number) or number < 0:
        raise HTTPException(status_code=400, detail=message)
    return number


def _parse_bool(value: str) -> bool:
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _parse_tags(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [t.strip() for t in value.split(",") if t.strip()]


def _find_product(db, product_id: str) -> dict:
    product = db["product"].find_one({"_id": oid(product_id)})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


# ---------- Public listing ----------

@router.get("")
def list_products(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    rating: Optional[float] = Query(None, ge=0, le=5),
    sort_by: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db=Depends(get_db),
):
    query = build_product_query(keyword, category, brand, min_price, max_price, rating)
    return paginate_products(db, query, sort_by, page, limit)


@router.get("/admin")
def list_products_admin(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    rating: Optional[float] = Query(None, ge=0, le=5),
    is_active: Optional[bool] = None,
    sort_by: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    query = build_product_query(keyword, category, brand, min_price, max_price, rating, active_only=False)
    if is_active is not None:
        query["is_active"] = is_active
    return paginate_products(db, query, sort_by, page, limit)


@router.get("/filters/options")
def filter_options(db=Depends(get_db)):
    active = {"is_active": True}
    price_stats = list(db["product"].aggregate([
        {"$match": active},
        {"$group": {"_id": None, "min_price": {"$min": "$price"}, "max_price": {"$max": "$price"}}},
    ]))
    price_range = {"min_price": 0, "max_price": 1000}
    if price_stats and price_stats[0]["min_price"] is not None:
        price_range = {"min_price": price_stats[0]["min_price"], "max_price": price_stats[0]["max_price"]}
    return {
        "categories": sorted(db["product"].distinct("category", active)),
        "brands": sorted(db["product"].distinct("brand", active)),
        "price_range": price_range,
    }


@router.get("/search/suggestions")
def search_suggestions(q: str = "", db=Depends(get_db)):
    if len(q.strip()) < 2:
        return {"suggestions": []}
    cursor = db["product"].find(
        {"is_active": True, "name": {"$regex": re.escape(q.strip()), "$options": "i"}},
        {"name": 1},
    ).limit(5)
    return {"suggestions": [p["name"] for p in cursor]}


@router.get("/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return serialize(_find_product(db, product_id))


# ---------- Admin CRUD ----------

@router.post("", status_code=201)
def create_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    count_in_stock: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    fields = {
        "name": name, "description": description, "price": price,
        "category": category, "brand": brand, "count_in_stock": count_in_stock,
    }
    if any(fields[f] is None or not str(fields[f]).strip() for f in REQUIRED_FIELDS):
        raise HTTPException(
            status_code=400,
            detail="Please provide all required fields: " + ", ".join(REQUIRED_FIELDS),
        )
    price_num = _parse_non_negative(price, float, "Price must be a valid positive number")
    stock_num = _parse_non_negative(count_in_stock, int, "Count in stock must be a valid non-negative number")

    product = ProductSchema(
        name=name.strip(),
        description=description.strip(),
        price=price_num,
        category=category.strip(),
        brand=brand.strip(),
        count_in_stock=stock_num,
        tags=_parse_tags(tags),
        image=save_image(image),
    )
    try:
        product_id = create_document(db, "product", product)
    except PyMongoError as e:
        delete_image(product.image)
        logger.exception("Error creating product")
        raise HTTPException(status_code=500, detail=f"Failed to create product: {e}")
    logger.info("Product %s created by %s", product_id, admin["_id"])
    return {
        "message": "Product created successfully",
        "product": serialize(db["product"].find_one({"_id": oid(product_id)})),
    }


@router.put("/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    count_in_stock: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    is_active: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    product = _find_product(db, product_id)

    updates = {}
    for field, value in (("name", name), ("description", description), ("category", category), ("brand", brand)):
        if value and value.strip():
            updates[field] = value.strip()
    if price:
        updates["price"] = _parse_non_negative(price, float, "Price must be a valid positive number")
    if count_in_stock is not None and count_in_stock != "":
        updates["count_in_stock"] = _parse_non_negative(count_in_stock, int, "Count in stock must be a valid non-negative number")
    if tags is not None:
        updates["tags"] = _parse_tags(tags)
    if is_active is not None:
        updates["is_active"] = _parse_bool(is_active)

    new_image = save_image(image)
    if new_image:
        updates["image"] = new_image

    updates["updated_at"] = utcnow()
    try:
        db["product"].update_one({"_id": product["_id"]}, {"$set": updates})
    except PyMongoError as e:
        delete_image(new_image)
        logger.exception("Error updating product %s", product_id)
        raise HTTPException(status_code=500, detail=f"Failed to update product: {e}")
    if new_image:
        delete_image(product.get("image"))
    return {
        "message": "Product updated successfully",
        "product": serialize(db["product"].find_one({"_id": product["_id"]})),
    }


@router.delete("/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    product = _find_product(db, product_id)
    delete_image(product.get("image"))
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by %s", product_id, admin["_id"])
    return {"message": "Product deleted successfully"}


@router.put("/{product_id}/archive")
def archive_product(product_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    product = _find_product(db, product_id)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    return {"message": "Product archived successfully"}


@router.put("/{product_id}/restore")
def restore_product(product_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    product = _find_product(db, product_id)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"is_active": True, "updated_at": utcnow()}})
    return {"message": "Product restored successfully"}


# ---------- Reviews ----------

class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


@router.post("/{product_id}/reviews", status_code=201)
def add_review(product_id: str, payload: ReviewRequest, user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = _find_product(db, product_id)
    user_id = str(user["_id"])
    if any(r.get("user_id") == user_id for r in product.get("reviews", [])):
        raise HTTPException(status_code=400, detail="Product already reviewed")

    review = ReviewSchema(user_id=user_id, name=user["name"], rating=payload.rating, comment=payload.comment.strip(), created_at=utcnow())
    db["product"].update_one({"_id": product["_id"]}, {"$push": {"reviews": review.model_dump()}})

    # rating and num_reviews are only ever written from the stored review list
    reviews = db["product"].find_one({"_id": product["_id"]}, {"reviews": 1}).get("reviews", [])
    rating, num_reviews = review_summary(reviews)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"rating": rating, "num_reviews": num_reviews, "updated_at": utcnow()}},
    )
    return {"message": "Review added", "rating": rating, "num_reviews": num_reviews}
