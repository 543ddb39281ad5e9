"""
Cart routes: one cart document per user, totals rebuilt on every mutation.

Writes are guarded by the cart's version counter: a write that finds the
version moved on reloads the cart and replays the mutation.
"""

import logging
from typing import Callable, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from auth import get_current_user
from config import CART_WRITE_RETRIES
from database import get_db, create_document, oid, utcnow
from schemas import Cart as CartSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


def load_cart(db, user_id: str) -> Tuple[CartSchema, bool]:
    doc = db["cart"].find_one({"user_id": user_id})
    if not doc:
        return CartSchema(user_id=user_id), False
    return CartSchema(**doc), True


def save_cart(db, cart: CartSchema, exists: bool) -> bool:
    """Persist the cart if nobody else wrote it since it was loaded."""
    data = cart.model_dump(exclude={"version"})
    if not exists:
        try:
            create_document(db, "cart", {**data, "version": 1})
        except DuplicateKeyError:
            return False
        cart.version = 1
        return True

    data["updated_at"] = utcnow()
    result = db["cart"].update_one(
        {"user_id": cart.user_id, "version": cart.version},
        {"$set": data, "$inc": {"version": 1}},
    )
    if result.matched_count == 0:
        return False
    cart.version += 1
    return True


def mutate_cart(db, user_id: str, mutation: Callable[[CartSchema], None]) -> CartSchema:
    for attempt in range(1, CART_WRITE_RETRIES + 1):
        cart, exists = load_cart(db, user_id)
        mutation(cart)
        if save_cart(db, cart, exists):
            return cart
        logger.warning("Cart for user %s changed during write (attempt %d)", user_id, attempt)
    raise HTTPException(status_code=409, detail="Cart was modified concurrently, please retry")


def cart_response(cart: CartSchema, message: str) -> dict:
    return {"success": True, "message": message, "cart": cart.model_dump()}


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(..., ge=1)


@router.get("")
def get_cart(user: dict = Depends(get_current_user), db=Depends(get_db)):
    cart, _ = load_cart(db, str(user["_id"]))
    return cart.model_dump()


@router.post("")
def add_to_cart(payload: AddToCartRequest, user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = db["product"].find_one({"_id": oid(payload.product_id), "is_active": True})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    def add(cart):
        cart.add_item(
            product_id=payload.product_id,
            name=product["name"],
            price=product["price"],
            image=product.get("image"),
            quantity=payload.quantity,
        )

    cart = mutate_cart(db, str(user["_id"]), add)
    return cart_response(cart, "Item added to cart successfully")


@router.put("/{item_id}")
def update_cart_item(item_id: str, payload: UpdateCartItemRequest, user: dict = Depends(get_current_user), db=Depends(get_db)):
    def update(cart):
        try:
            cart.update_item(item_id, payload.quantity)
        except KeyError:
            raise HTTPException(status_code=404, detail="Cart item not found")

    cart = mutate_cart(db, str(user["_id"]), update)
    return cart_response(cart, "Cart updated successfully")


@router.delete("/{item_id}")
def remove_cart_item(item_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    cart = mutate_cart(db, str(user["_id"]), lambda c: c.remove_item(item_id))
    return cart_response(cart, "Item removed from cart successfully")


@router.delete("")
def clear_cart(user: dict = Depends(get_current_user), db=Depends(get_db)):
    cart = mutate_cart(db, str(user["_id"]), lambda c: c.clear())
    return cart_response(cart, "Cart cleared successfully")
