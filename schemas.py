"""
Database Schemas for the Common Place Store marketplace

Each Pydantic model below maps to a MongoDB collection. The collection name is the
lowercase of the class name (e.g., Product -> "product").

These schemas are used for validation in API endpoints and to document the data model.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, EmailStr, ConfigDict
from typing import List, Optional, Literal
from datetime import datetime


Category = Literal["Camisetas", "Pantalones", "Chaquetas", "Zapatos", "Accesorios", "Sudaderas"]
Size = Literal["XS", "S", "M", "L", "XL", "XXL", "Única"]
Condition = Literal["Nuevo", "Como nuevo", "Buen estado", "Desgastado"]
Role = Literal["user", "seller", "admin"]
PaymentMethod = Literal["card", "paypal", "nequi", "daviplata", "cash", "transfer"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
ReviewStatus = Literal["pending", "approved", "rejected"]

SubRating = Optional[int]


# --- Users ---

class UserStats(BaseModel):
    products_listed: int = 0
    products_sold: int = 0
    total_earnings: float = 0


class User(BaseModel):
    """
    Marketplace account (buyer, seller or admin)
    Collection name: "user"
    """
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    role: Role = "user"
    stats: UserStats = Field(default_factory=UserStats)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Catalog ---

class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class ProductStats(BaseModel):
    views: int = 0
    favorites: int = 0
    sales: int = 0
    average_rating: float = 0
    review_count: int = 0


class Product(BaseModel):
    """
    Second-hand streetwear item
    Collection name: "product"
    """
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., max_length=1000)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Category
    size: Size
    condition: Condition = "Buen estado"
    brand: str
    color: str
    material: Optional[str] = None
    images: List[ProductImage] = []
    tags: List[str] = []
    stock: int = Field(1, ge=0)
    sku: Optional[str] = None
    active: bool = True
    seller_id: str
    stats: ProductStats = Field(default_factory=ProductStats)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., max_length=1000)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Category
    size: Size
    condition: Condition = "Buen estado"
    brand: str
    color: str
    material: Optional[str] = None
    images: List[ProductImage] = []
    tags: List[str] = []
    stock: int = Field(1, ge=0)
    sku: Optional[str] = None


class ProductUpdate(BaseModel):
    """Editable catalog fields. Stock is owned by the inventory manager."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    size: Optional[Size] = None
    condition: Optional[Condition] = None
    brand: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    images: Optional[List[ProductImage]] = None
    tags: Optional[List[str]] = None


class StockUpdate(BaseModel):
    product_id: str
    new_stock: int


# --- Orders ---

class ShippingAddress(BaseModel):
    address: str
    city: str
    postal_code: str
    country: str = "Colombia"
    phone: Optional[str] = None
    instructions: Optional[str] = Field(None, max_length=500)


class OrderItemIn(BaseModel):
    """Line item as submitted by the client; descriptive fields are re-read from the catalog."""
    product: str
    quantity: int = Field(1, ge=1)
    price: Optional[float] = Field(None, ge=0)
    name: Optional[str] = None
    image: Optional[str] = None
    size: Optional[str] = None
    condition: Optional[str] = None


class OrderCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: List[OrderItemIn]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "card"
    notes: Optional[str] = Field(None, max_length=1000)


class OrderItem(BaseModel):
    product_id: str
    seller_id: str
    name: str
    image: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    size: str
    condition: str


class Payer(BaseModel):
    email_address: Optional[str] = None


class PaymentResult(BaseModel):
    """Payment gateway confirmation, stored verbatim on the order"""
    id: str
    status: str
    update_time: Optional[str] = None
    payer: Payer = Field(default_factory=Payer)


class Order(BaseModel):
    """
    Checkout order
    Collection name: "order"
    """
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_result: Optional[PaymentResult] = None
    items_price: float = 0
    tax_price: float = 0
    shipping_price: float = 0
    total_price: float = 0
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    status: OrderStatus = "pending"
    stats_applied: bool = False
    stats_applied_items: List[str] = []
    stock_released: bool = False
    released_items: List[int] = []
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


# --- Reviews ---

class ReviewImage(BaseModel):
    url: str
    alt: Optional[str] = None


class ReviewCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product: str
    order: str
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[ReviewImage] = []
    size_accuracy: SubRating = Field(None, ge=1, le=5)
    quality: SubRating = Field(None, ge=1, le=5)
    shipping_speed: SubRating = Field(None, ge=1, le=5)
    seller_communication: SubRating = Field(None, ge=1, le=5)


class ReviewUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=1, max_length=1000)
    images: Optional[List[ReviewImage]] = None
    size_accuracy: SubRating = Field(None, ge=1, le=5)
    quality: SubRating = Field(None, ge=1, le=5)
    shipping_speed: SubRating = Field(None, ge=1, le=5)
    seller_communication: SubRating = Field(None, ge=1, le=5)


class Review(BaseModel):
    """
    Buyer review of a purchased product
    Collection name: "review"
    """
    product_id: str
    user_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str
    comment: str
    images: List[ReviewImage] = []
    size_accuracy: SubRating = Field(None, ge=1, le=5)
    quality: SubRating = Field(None, ge=1, le=5)
    shipping_speed: SubRating = Field(None, ge=1, le=5)
    seller_communication: SubRating = Field(None, ge=1, le=5)
    helpful: List[str] = []
    verified_purchase: bool = False
    status: ReviewStatus = "pending"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReviewModeration(BaseModel):
    status: Literal["approved", "rejected"]


# --- Request identity ---

class Requester(BaseModel):
    """Caller identity resolved by the authentication layer"""
    user_id: str
    role: Role = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
