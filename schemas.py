"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. Embedded value objects (sizes, colors, line items,
addresses) are plain sub-models.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Category = Literal["bangles", "earrings", "cosmetics", "necklaces", "rings", "alna", "combo"]
InventoryKind = Literal["flat", "size", "color"]
SizeLabel = Literal["S", "M", "L", "XL"]
OrderStatusValue = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
Role = Literal["user", "admin"]


class User(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    phone: str
    role: Role = "user"


class ProductImage(BaseModel):
    url: str
    public_id: Optional[str] = None


class SizeOption(BaseModel):
    size: str
    measurement: Optional[str] = None
    available: bool = True
    stock: int = Field(0, ge=0)


class ColorOption(BaseModel):
    name: str
    code: Optional[str] = None
    available: bool = True
    stock: int = Field(0, ge=0)


class Specifications(BaseModel):
    material: Optional[str] = None
    weight: Optional[str] = None
    dimensions: Optional[str] = None
    color: Optional[str] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Category
    images: List[ProductImage] = []
    colors: List[ColorOption] = []
    sizes: List[SizeOption] = []
    inventory_kind: Optional[InventoryKind] = Field(None, description="Which stock field is authoritative")
    in_stock: bool = True
    stock: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    num_reviews: int = 0
    featured: bool = False
    is_new_arrival: bool = False
    is_combo: bool = False
    tags: List[str] = []
    specifications: Optional[Specifications] = None
    is_active: bool = True


class CartItem(BaseModel):
    id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    selected_size: Optional[SizeLabel] = None
    selected_color: Optional[str] = None
    price: float = Field(..., ge=0)
    added_at: datetime


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []
    total_amount: float = 0
    total_items: int = 0


class OrderItem(BaseModel):
    product_id: str
    name: str
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None


class ShippingAddress(BaseModel):
    full_name: str
    address: str
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "Bangladesh"
    phone: str


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: float = Field(0, ge=0)
    tax_price: float = Field(0, ge=0)
    shipping_price: float = Field(0, ge=0)
    total_price: float = Field(0, ge=0)
    status: OrderStatusValue = "pending"
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None


class Address(BaseModel):
    user_id: str
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    district: str = Field(..., min_length=1)
    thana: str = Field(..., min_length=1)
    country: str = "Bangladesh"
    is_default: bool = False


class Review(BaseModel):
    user_id: str
    product_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)
    images: List[str] = []
    is_verified: bool = False
    is_active: bool = True
    helpful_count: int = Field(0, ge=0)
