"""
Database Schemas for the Storefront

Each top-level Pydantic model in the first section represents a collection in
MongoDB. Collection name is the lowercase of the class name. The second
section holds the request bodies accepted by the API.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
Category = Literal["smartphones", "laptops", "tablets", "accessories", "gaming", "audio", "wearables"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["wallet", "credit_card", "paypal", "bank_transfer"]
ShippingMethod = Literal["standard", "express", "overnight"]
AddressType = Literal["home", "work", "other"]


# ---------------------- Collections ----------------------

class Transaction(BaseModel):
    id: str
    type: Literal["credit", "debit"]
    amount: float = Field(..., gt=0)
    description: str
    order_id: Optional[str] = None
    created_at: datetime


class Wallet(BaseModel):
    balance: float = Field(0.0, ge=0)
    transactions: List[Transaction] = []


class Address(BaseModel):
    id: str
    type: AddressType = "home"
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    is_default: bool = False


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password_hash: str = Field(..., description="bcrypt hash")
    phone: Optional[str] = None
    role: Role = "user"
    avatar: str = ""
    wallet: Wallet = Field(default_factory=Wallet)
    addresses: List[Address] = []
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None
    last_login: Optional[datetime] = None
    is_active: bool = True


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class Dimensions(BaseModel):
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class Warranty(BaseModel):
    duration: float = Field(..., gt=0)
    type: Optional[str] = None


class Ratings(BaseModel):
    average: float = Field(0.0, ge=0, le=5)
    count: int = 0


class Product(BaseModel):
    title: str
    slug: str = Field(..., description="URL-safe identifier derived from the title")
    description: str
    short_description: Optional[str] = None
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    discount: float = Field(0, ge=0, le=100)
    images: List[ProductImage] = []
    category: Category
    brand: str
    model: Optional[str] = None
    specifications: Dict[str, str] = {}
    features: List[str] = []
    stock: int = Field(..., ge=0)
    sku: str
    weight: Optional[float] = None
    dimensions: Optional[Dimensions] = None
    warranty: Optional[Warranty] = None
    ratings: Ratings = Field(default_factory=Ratings)
    tags: List[str] = []
    is_active: bool = True
    is_featured: bool = False
    sales_count: int = 0
    view_count: int = 0
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: List[str] = []


class HelpfulVote(BaseModel):
    user_id: str
    created_at: datetime


class Report(BaseModel):
    user_id: str
    reason: str
    created_at: datetime


class AdminResponse(BaseModel):
    message: str
    responded_by: str
    responded_at: datetime


class Review(BaseModel):
    product_id: str
    user_id: str
    user_name: str
    order_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    title: str
    comment: str
    pros: List[str] = []
    cons: List[str] = []
    images: List[str] = []
    is_verified_purchase: bool = False
    helpful: List[HelpfulVote] = []
    reported: List[Report] = []
    is_approved: bool = True
    admin_response: Optional[AdminResponse] = None


class OrderItem(BaseModel):
    product_id: str
    title: str
    price: float
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    full_name: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    phone: Optional[str] = None


class StatusEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None


class PaymentDetails(BaseModel):
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    payment_gateway: Optional[str] = None


class Order(BaseModel):
    order_number: str
    user_id: str
    items: List[OrderItem]
    subtotal: float
    tax: float = 0.0
    shipping: float = 0.0
    discount: float = 0.0
    total: float
    currency: str = "USD"
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_method: PaymentMethod = "wallet"
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    shipping_address: ShippingAddress
    shipping_method: ShippingMethod = "standard"
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    status_history: List[StatusEntry] = []


# ---------------------- Requests ----------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = None
    avatar: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class AddFundsRequest(BaseModel):
    amount: float = Field(..., gt=0)
    description: str = Field("Added funds", min_length=1, max_length=200)


class AddressIn(BaseModel):
    type: AddressType = "home"
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    is_default: bool = False


class ProductIn(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10)
    short_description: Optional[str] = Field(None, max_length=200)
    price: float = Field(..., gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    discount: Optional[float] = Field(None, ge=0, le=100)
    category: Category
    brand: str = Field(..., min_length=2, max_length=50)
    model: Optional[str] = None
    stock: int = Field(..., ge=0)
    sku: Optional[str] = None
    images: List[ProductImage] = []
    specifications: Dict[str, str] = {}
    features: List[str] = []
    tags: List[str] = []
    weight: Optional[float] = Field(None, gt=0)
    dimensions: Optional[Dimensions] = None
    warranty: Optional[Warranty] = None
    is_featured: bool = False
    seo_title: Optional[str] = Field(None, max_length=60)
    seo_description: Optional[str] = Field(None, max_length=160)
    seo_keywords: List[str] = []


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=3, max_length=100)
    comment: str = Field(..., min_length=10, max_length=1000)
    pros: List[str] = []
    cons: List[str] = []
    images: List[str] = []
    order_id: Optional[str] = None


class ReportRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class ModerationRequest(BaseModel):
    is_approved: bool


class AdminResponseRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)


class OrderItemIn(BaseModel):
    product: str = Field(..., min_length=1, description="Product id")
    quantity: int = Field(..., ge=1)


class OrderIn(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "wallet"
    shipping_method: ShippingMethod = "standard"
    notes: Optional[str] = Field(None, max_length=500)


class StatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=500)
    tracking_number: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
    estimated_delivery: Optional[datetime] = None


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)
