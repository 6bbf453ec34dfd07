"""
Database Schemas for the Marketplace

Collections:
- User: Authentication, profile, role (buyer, seller, admin), wishlist and addresses
- Brand: Storefront owned by a seller
- Category: Two-level product categories
- Product / Variant: Catalog entries and their size/color refinements
- Cart: Server-side cart, one per user
- Order: Single-seller orders created from a cart snapshot
- Promotion: Admin-managed discount codes
- Review: Product ratings, one per buyer and product
- Conversation / Message: Buyer to brand chat history
- Livestream: Live shopping sessions
"""

import re
from datetime import datetime
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from database import to_naive_utc
from order_status import OrderStatus

Role = Literal["buyer", "seller", "admin"]
PaymentMethod = Literal["COD", "MOMO", "VNPAY", "BANK"]


# Users
class Address(BaseModel):
    id: str = Field(..., description="Address id, unique within the user")
    name: str = Field(..., min_length=1, description="Recipient name")
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1, description="Street and number")
    city: str = Field(..., min_length=1)
    district: str = Field(..., min_length=1)
    ward: str = Field(..., min_length=1)
    is_default: bool = False


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    hashed_password: str = Field(..., description="Password hash")
    role: Role = Field("buyer", description="User role")
    phone: str = Field("", description="Contact phone")
    address: str = Field("", description="Default shipping address")
    avatar: str = Field("", description="Profile image URL")
    brand_id: Optional[str] = Field(None, description="Brand owned by a seller")
    is_active: bool = Field(True, description="Is account active")
    reset_password_token_hash: Optional[str] = Field(None, description="sha256 of the pending reset token")
    reset_password_expire: Optional[datetime] = Field(None, description="Reset token expiry (UTC)")
    wishlist: List[str] = Field(default_factory=list, description="Saved product ids")
    addresses: List[Address] = Field(default_factory=list, description="Saved shipping addresses")


class Brand(BaseModel):
    name: str = Field(..., description="Unique brand name")
    country: str = Field("", description="Country of origin")
    description: str = Field("", description="Short description")
    logo_url: str = Field("", description="Logo image URL")
    seller_id: str = Field(..., description="Owning seller id")


# Catalog
def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9 -]", "", name.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


class Category(BaseModel):
    name: str = Field(..., max_length=50)
    slug: str = Field("", description="URL slug, generated from name when empty")
    description: str = Field("", max_length=500)
    image: str = ""
    parent_id: Optional[str] = Field(None, description="Parent category id")
    level: int = Field(0, description="0 for root categories, 1 for children")
    is_active: bool = True
    sort_order: int = 0

    @model_validator(mode="after")
    def fill_derived(self):
        if not self.slug:
            self.slug = slugify(self.name)
        self.level = 1 if self.parent_id else 0
        return self


class ProductImage(BaseModel):
    url: str
    alt: str = ""
    is_primary: bool = False


def normalize_images(raw: Any, alt: str = "") -> List[ProductImage]:
    """Resolve the loose image shapes (bare URL, object, or a list mixing
    both) into ProductImage records with exactly one primary image."""
    if raw is None or raw == "":
        return []
    if not isinstance(raw, list):
        raw = [raw]
    images: List[ProductImage] = []
    for item in raw:
        if isinstance(item, ProductImage):
            images.append(item.model_copy())
        elif isinstance(item, str):
            if item:
                images.append(ProductImage(url=item, alt=alt))
        elif isinstance(item, dict) and item.get("url"):
            images.append(ProductImage(
                url=item["url"],
                alt=item.get("alt") or alt,
                is_primary=bool(item.get("is_primary", item.get("isPrimary", False))),
            ))
        else:
            raise ValueError("Image must be a URL or an object with a url")
    if images:
        primary = next((i for i, img in enumerate(images) if img.is_primary), 0)
        for i, img in enumerate(images):
            img.is_primary = i == primary
    return images


def primary_image(images: List[Union[ProductImage, dict]]) -> str:
    for img in images:
        data = img.model_dump() if isinstance(img, ProductImage) else img
        if data.get("is_primary"):
            return data["url"]
    return ""


class Product(BaseModel):
    name: str = Field(..., max_length=100)
    description: str = Field(..., max_length=2000)
    price: float = Field(..., ge=0, description="Current price")
    original_price: Optional[float] = Field(None, ge=0, description="Pre-discount price for display")
    images: List[ProductImage] = Field(default_factory=list)
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    brand_id: Optional[str] = None
    seller_id: str = Field(..., description="Owning seller id")
    sku: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    stock: int = Field(0, ge=0)
    is_active: bool = True
    is_featured: bool = False
    views: int = Field(0, ge=0)

    @field_validator("images", mode="before")
    @classmethod
    def resolve_images(cls, value):
        return normalize_images(value)


class Variant(BaseModel):
    product_id: str
    sku: str
    size: str
    color: str
    price: float = Field(..., ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(..., ge=0)


# Cart
class VariantRef(BaseModel):
    variant_id: str
    size: Optional[str] = None
    color: Optional[str] = None


class CartItem(BaseModel):
    product_id: str
    name: str
    image: str = ""
    variant: Optional[VariantRef] = None
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0, description="Price snapshot taken when added")
    total: float = Field(..., ge=0, description="price * quantity")


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    subtotal: float = 0.0


# Orders
class OrderItem(BaseModel):
    product_id: str
    name: str
    image: str = ""
    variant: Optional[VariantRef] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price snapshot, independent of the catalog")


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    order_number: str
    user_id: str = Field(..., description="Buyer id")
    seller_id: str
    items: List[OrderItem]
    total_price: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING_PAYMENT
    payment_method: PaymentMethod
    shipping_address: str
    notes: Optional[str] = None
    seller_note: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_total(self):
        expected = round(sum(i.price * i.quantity for i in self.items), 2)
        if round(self.total_price, 2) != expected:
            raise ValueError("total_price must equal the sum of line items")
        return self


# Promotions
class Promotion(BaseModel):
    code: str = Field(..., min_length=1)
    description: str = ""
    discount_percent: float = Field(..., ge=0, le=100)
    start_date: datetime
    end_date: datetime
    active: bool = True

    @field_validator("start_date", "end_date")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @field_validator("code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("code must not be blank")
        return value

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


# Reviews
class Review(BaseModel):
    user_id: str = Field(..., description="Reviewer id")
    product_id: str = Field(..., description="Reviewed product id")
    order_id: Optional[str] = Field(None, description="Delivered order backing the review")
    rating: int = Field(..., ge=1, le=5, description="Rating 1-5")
    title: str = Field("", max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[str] = Field(default_factory=list)
    is_verified: bool = Field(False, description="Set when order_id checks out")
    is_active: bool = True
    helpful_users: List[str] = Field(default_factory=list)
    helpful_count: int = Field(0, ge=0)


# Chat
class Conversation(BaseModel):
    room_id: str
    members: List[str] = Field(..., min_length=2, max_length=2)


class Message(BaseModel):
    room_id: str
    sender_id: str
    text: str


# Livestreams
class Livestream(BaseModel):
    seller_id: str
    title: str
    description: str = ""
    status: Literal["upcoming", "live", "ended"] = "upcoming"
    products: List[str] = Field(default_factory=list)
    current_product: Optional[dict] = None
    views: int = 0
    likes: int = 0
    channel: str
