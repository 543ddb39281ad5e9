"""
Database Schemas for the Storefront API

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase of the class name.

- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel, Field, EmailStr

from config import DELIVERY_WINDOW_DAYS
from database import utcnow
from pricing import cart_totals


class User(BaseModel):
    """Users collection schema"""
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    is_active: bool = Field(True, description="Whether user is active")
    role: str = Field("user", description="Role: user or admin")


class Review(BaseModel):
    user_id: str
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: Optional[datetime] = None


class Dimensions(BaseModel):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class Product(BaseModel):
    """Products collection schema"""
    name: str = Field(..., description="Product name")
    description: str = Field(..., description="Product description")
    price: float = Field(..., ge=0, description="Unit price")
    category: str = Field(..., description="Product category")
    brand: str = Field(..., description="Brand name")
    image: Optional[str] = Field(None, description="Primary image path or URL")
    images: List[str] = Field(default_factory=list)
    count_in_stock: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5, description="Average of review ratings")
    num_reviews: int = Field(0, ge=0, description="Number of reviews")
    is_active: bool = Field(True, description="False once soft-deleted")
    reviews: List[Review] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    specifications: Dict[str, str] = Field(default_factory=dict)
    weight: Optional[float] = Field(None, ge=0)
    dimensions: Optional[Dimensions] = None


class CartItem(BaseModel):
    item_id: str = Field(default_factory=lambda: str(ObjectId()))
    product_id: str = Field(..., description="ID of the product")
    name: str = Field(..., description="Snapshot of product name")
    price: float = Field(..., ge=0, description="Snapshot of product price")
    image: Optional[str] = None
    quantity: int = Field(1, ge=1, description="Quantity of the product")


class Cart(BaseModel):
    """
    Carts collection schema, one document per user.

    total_items and total_price are always rebuilt from items; version is
    bumped on every write and used to detect concurrent modifications.
    """
    user_id: str = Field(..., description="Owner user id")
    items: List[CartItem] = Field(default_factory=list, description="List of cart items")
    total_items: int = 0
    total_price: float = 0.0
    version: int = 0

    def recompute(self):
        self.total_items, self.total_price = cart_totals(self.items)

    def find_item(self, item_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def add_item(self, product_id: str, name: str, price: float, image: Optional[str], quantity: int = 1) -> CartItem:
        existing = next((i for i in self.items if i.product_id == product_id), None)
        if existing is not None:
            existing.quantity += quantity
            item = existing
        else:
            item = CartItem(product_id=product_id, name=name, price=price, image=image, quantity=quantity)
            self.items.append(item)
        self.recompute()
        return item

    def update_item(self, item_id: str, quantity: int) -> CartItem:
        item = self.find_item(item_id)
        if item is None:
            raise KeyError(item_id)
        item.quantity = quantity
        self.recompute()
        return item

    def remove_item(self, item_id: str):
        self.items = [i for i in self.items if i.item_id != item_id]
        self.recompute()

    def clear(self):
        self.items = []
        self.recompute()


class ShippingAddress(BaseModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class OrderItem(BaseModel):
    name: str
    qty: int = Field(..., ge=1)
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    product_id: str


def default_delivery_date(created_at: Optional[datetime] = None) -> datetime:
    return (created_at or utcnow()) + timedelta(days=DELIVERY_WINDOW_DAYS)


class Order(BaseModel):
    """
    Orders collection schema.

    order_items is a snapshot taken at checkout and never rewritten. The
    paid/delivered/cancelled flags only ever go from False to True.
    """
    user_id: str
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    payment_result: Optional[PaymentResult] = None
    items_price: float = 0.0
    tax_price: float = 0.0
    shipping_price: float = 0.0
    total_price: float = 0.0
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    is_cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    delivery_date: datetime = Field(default_factory=default_delivery_date)
    created_at: Optional[datetime] = None

    def can_be_cancelled(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return not self.is_delivered and not self.is_cancelled and now < self.delivery_date

    @property
    def status(self) -> str:
        return status_label(self.model_dump())


def status_label(order: dict) -> str:
    """First matching flag wins: Cancelled, Delivered, Paid, else Pending."""
    if order.get("is_cancelled"):
        return "Cancelled"
    if order.get("is_delivered"):
        return "Delivered"
    if order.get("is_paid"):
        return "Paid"
    return "Pending"
