"""
Pydantic schemas for API request/response models.

JSON field names are camelCase; Python attributes stay snake_case.
Request fields are mostly optional so that missing values reach the service
layer, which reports them with domain messages.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Amounts are stored as Decimal and rendered as JSON numbers
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

T = TypeVar("T")


class ApiModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ApiResponse(ApiModel, Generic[T]):
    """Success envelope shared by every route."""

    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class ErrorResponse(ApiModel):
    """Error envelope, built by the exception handlers in api.main."""

    success: bool = False
    error: str
    code: str
    details: Optional[List[Dict[str, Any]]] = None


# Catalog


class ProductRequest(ApiModel):
    """Request schema for creating or replacing a product."""

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Decimal] = None
    quantity: Optional[int] = None
    available: bool = True
    images: List[str] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "title": "Fresh Broiler Chicken",
                    "description": "Freshly processed broiler chicken",
                    "category": "broiler",
                    "price": 1200,
                    "quantity": 50,
                    "available": True,
                    "images": [],
                }
            ]
        }
    )


class ProductResponse(ApiModel):
    id: str
    title: str
    description: str
    category: str
    price: Amount
    quantity: int
    available: bool
    images: List[str]
    created_at: datetime
    updated_at: datetime


# Orders


class OrderItemRequest(ApiModel):
    """One line of a checkout request."""

    product_id: Optional[str] = None
    quantity: Optional[int] = 1


class CreateOrderRequest(ApiModel):
    """Request schema for creating an order."""

    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    delivery_notes: Optional[str] = None
    items: Optional[List[OrderItemRequest]] = None
    subtotal: Optional[Decimal] = None
    delivery_fee: Optional[Decimal] = None
    total: Optional[Decimal] = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "customerName": "Wanjiku Kamau",
                    "email": "wanjiku@example.com",
                    "phone": "+254712345678",
                    "location": "Kilimani, Nairobi",
                    "items": [{"productId": "3f0c...", "quantity": 1}],
                    "subtotal": 1200,
                    "deliveryFee": 200,
                    "total": 1400,
                }
            ]
        }
    )


class OrderItemResponse(ApiModel):
    product_id: str
    title: str
    quantity: int
    unit_price: Amount


class OrderResponse(ApiModel):
    id: str
    customer_name: str
    email: str
    phone: str
    location: str
    latitude: Optional[Amount] = None
    longitude: Optional[Amount] = None
    delivery_notes: Optional[str] = None
    items: List[OrderItemResponse]
    subtotal: Amount
    delivery_fee: Amount
    total: Amount
    status: str
    payment_verified: bool
    transaction_id: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UpdateStatusRequest(ApiModel):
    status: Optional[str] = Field(
        default=None, description="pending, confirmed, delivered or cancelled"
    )


# Payments


class CreatePaymentRequest(ApiModel):
    """Request schema for creating a payment."""

    order_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = Field(default=None, description="Currency code (defaults to KES)")


class PaymentCheckoutResponse(ApiModel):
    payment_id: str
    transaction_id: str
    checkout_url: str


class PaymentResponse(ApiModel):
    id: str
    order_id: str
    amount: Amount
    currency: str
    transaction_id: str
    status: str
    gateway_response: Optional[Dict[str, Any]] = None
    verified_at: Optional[datetime] = None
    created_at: datetime


class VerificationResponse(ApiModel):
    order: OrderResponse
    payment: Optional[PaymentResponse] = None
    already_verified: bool = False


class WebhookResponse(ApiModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="applied, failed, duplicate, already_verified or ignored")
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    order_id: Optional[str] = None
    message: Optional[str] = None


# Reporting


class DashboardStatsResponse(ApiModel):
    total_orders: int
    total_revenue: Amount
    pending_orders: int
    total_products: int
    today_revenue: Amount
    total_customers: int


# Auth


class LoginRequest(ApiModel):
    username: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(ApiModel):
    token: str
    token_type: str = "Bearer"
    expires_in: int
    expires_at: int


# Monitoring


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
