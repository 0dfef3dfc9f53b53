"""
Database Schemas for Pak Style (fashion marketplace)

Each Pydantic model maps to a MongoDB collection (lowercased class name).
Use these for validation and to keep collections consistent.
"""

from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

CUSTOM_ORDER_STATUSES = ("pending", "confirmed", "inProgress", "completed", "cancelled")
ORDER_STATUSES = ("Pending", "Shipped", "Canceled")

CustomOrderStatus = Literal["pending", "confirmed", "inProgress", "completed", "cancelled"]


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class SocialMedia(BaseModel):
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    twitter: Optional[str] = None


# Customers, designers and brand accounts
class User(BaseModel):
    name: str = Field(..., description="Full name")
    username: Optional[str] = None
    email: EmailStr = Field(..., description="Email address")
    user_type: Literal["customer", "designer", "brand", "admin"] = Field("customer")
    profile_picture: Optional[str] = None
    portfolio_images: List[str] = Field(default_factory=list)
    address: Optional[Address] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    status: Literal["active", "pending"] = Field("active", description="Brand accounts start pending")
    conversations: List[str] = Field(default_factory=list, description="Conversation ids")
    unread_messages: int = Field(0, ge=0, description="Cached unread count, may drift")


class Brand(BaseModel):
    name: str
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    description: Optional[str] = None
    logo: Optional[str] = None
    cover_image: Optional[str] = None
    social_media: Optional[SocialMedia] = None


class Designer(BaseModel):
    name: str
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    cover_image: Optional[str] = None
    portfolio: List[str] = Field(default_factory=list)
    social_media: Optional[SocialMedia] = None


class Product(BaseModel):
    name: str = Field(..., max_length=200)
    brand_id: Optional[str] = None
    brand_name: Optional[str] = None
    designer_id: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(..., ge=0)
    description: Optional[str] = Field(None, max_length=5000)
    search_count: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)


class OrderItem(BaseModel):
    product_id: str
    brand_id: Optional[str] = None
    quantity: int = Field(1, ge=1)
    color: Optional[str] = None
    size: Optional[str] = None


# Regular e-commerce orders
class Order(BaseModel):
    order_id: str
    user_id: str
    total_price: float
    order_date: datetime
    status: Literal["Pending", "Processing", "Shipped", "Canceled"]
    payment_method: Literal["cash_on_delivery", "credit_card"]
    payment_status: Literal["pending", "paid", "failed"] = Field("pending")
    shipping_address: Optional[Address] = None
    items: List[OrderItem] = Field(default_factory=list)


class Measurements(BaseModel):
    """Body measurements in inches; numeric strings are coerced."""
    chest: float = Field(..., allow_inf_nan=False)
    shoulder: float = Field(..., allow_inf_nan=False)
    waist: float = Field(..., allow_inf_nan=False)
    inseam: float = Field(..., allow_inf_nan=False)
    arm_length: float = Field(..., allow_inf_nan=False)
    leg_length: float = Field(..., allow_inf_nan=False)


class CustomOrderCreate(BaseModel):
    """Client payload for a tailoring order. Ids and status are assigned server side."""
    designer_id: str
    user_id: str
    brand_id: str
    product_id: str
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: EmailStr
    address: str = Field(..., min_length=1)
    garment_type: Literal["shalwarKameez", "kurtaPajama", "sherwani", "waistcoat"]
    occasion: Literal["casual", "eid", "wedding", "formal"]
    fabric: Literal["cotton", "linen", "silk", "khaddar"]
    color: str = Field(..., min_length=1)
    pattern: Literal["solid", "floral", "geometric", "striped"]
    fitting: Literal["regular", "slim", "loose"]
    measurements: Measurements
    special_instructions: Optional[str] = None
    delivery_preference: Literal["homeDelivery", "pickup"]
    payment_method: Literal["cod", "card", "mobileMoney"]
    rush_order: bool = False
    consultation_date: datetime


class CustomOrderUpdate(BaseModel):
    """Partial update; every field optional, same rules as creation."""
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, min_length=1)
    garment_type: Optional[Literal["shalwarKameez", "kurtaPajama", "sherwani", "waistcoat"]] = None
    occasion: Optional[Literal["casual", "eid", "wedding", "formal"]] = None
    fabric: Optional[Literal["cotton", "linen", "silk", "khaddar"]] = None
    color: Optional[str] = Field(None, min_length=1)
    pattern: Optional[Literal["solid", "floral", "geometric", "striped"]] = None
    fitting: Optional[Literal["regular", "slim", "loose"]] = None
    measurements: Optional[Measurements] = None
    special_instructions: Optional[str] = None
    delivery_preference: Optional[Literal["homeDelivery", "pickup"]] = None
    payment_method: Optional[Literal["cod", "card", "mobileMoney"]] = None
    rush_order: Optional[bool] = None
    consultation_date: Optional[datetime] = None
    status: Optional[CustomOrderStatus] = None


# Stored tailoring order
class CustomOrder(CustomOrderCreate):
    order_id: str = Field(..., description="CO-YYMM-NNNN, unique")
    period: str = Field(..., description="YYMM the sequence belongs to")
    sequence: int = Field(..., ge=1)
    status: CustomOrderStatus = Field("pending")


class ReadReceipt(BaseModel):
    user_id: str
    read_at: datetime


class Message(BaseModel):
    """
    Message within a conversation (embedded, append-only)
    """
    sender: str = Field(..., description="Sender user id")
    content: str = Field(..., min_length=1, max_length=5000)
    timestamp: datetime
    read: bool = Field(False, description="Only ever flips to True")
    read_by: List[ReadReceipt] = Field(default_factory=list)


class Conversation(BaseModel):
    """
    A 1:1 conversation between two users
    Collection: "conversation"
    """
    participants: List[str] = Field(..., min_length=2, max_length=2, description="Two user ids")
    messages: List[Message] = Field(default_factory=list)
    last_message: datetime
