"""
Pydantic Schemas for Request/Response Validation

Covers the storefront (menu, orders, reviews, OTP login) and the
kitchen dashboard (pizzas, batches, batch caps, settings, stats).
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator, computed_field

from crustops.models import OrderStatus, OrderType
from crustops.services.status_flow import next_action, next_status, can_cancel


# =============================================================================
# ENUMS
# =============================================================================

class OverallRatingEnum(str, Enum):
    NEEDS_IMPROVEMENT = "Needs improvement"
    GOOD = "Good"
    AWESOME = "Awesome"
    MIND_BLOWING = "Mind-blowing!"


# Legacy numeric rating derived from the questionnaire answer
OVERALL_RATING_SCORES = {
    OverallRatingEnum.NEEDS_IMPROVEMENT.value: 2,
    OverallRatingEnum.GOOD.value: 3,
    OverallRatingEnum.AWESOME.value: 4,
    OverallRatingEnum.MIND_BLOWING.value: 5,
}
DEFAULT_RATING = 3

FAIR_PRICE_OTHER = "Other"

TIME_SLOT_PATTERN = r"^\d{1,2}:(00|30)$"


def _not_null(v):
    # Omitting a field leaves it unchanged; null would blank a required column
    if v is None:
        raise ValueError("may be omitted but not null")
    return v


def _validate_phone(v: str) -> str:
    cleaned = re.sub(r'[^\d]', '', v)
    if len(cleaned) < 10:
        raise ValueError('Phone number must have at least 10 digits')
    return v.strip()


# =============================================================================
# PIZZAS
# =============================================================================

class PizzaCreate(BaseModel):
    """Request schema for adding a pizza to the menu."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Truffle Shuffle"])
    description: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list, examples=[["veg", "white pie"]])
    image_url: Optional[str] = Field(None, max_length=500)
    active: bool = True
    sold_out: bool = False
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, examples=["24.00"])


class PizzaUpdate(BaseModel):
    """Partial update; only the fields sent are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1)
    tags: Optional[List[str]] = None
    image_url: Optional[str] = Field(None, max_length=500)
    active: Optional[bool] = None
    sold_out: Optional[bool] = None
    price: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)

    @field_validator("name", "description", "tags", "active", "sold_out", "price", mode="before")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class PizzaResponse(BaseModel):
    id: str
    name: str
    description: str
    tags: List[str]
    image_url: Optional[str]
    active: bool
    sold_out: bool
    price: Decimal

    class Config:
        from_attributes = True


class MenuPizzaResponse(PizzaResponse):
    """A pizza as shown on the storefront, with batch availability."""
    available: Optional[int] = None
    batch_id: Optional[str] = None
    batch_number: Optional[int] = None
    service_date: Optional[date] = None


# =============================================================================
# ORDERS
# =============================================================================

class OrderCreate(BaseModel):
    """Request schema for placing a pre-order."""
    user_id: Optional[str] = None
    batch_id: Optional[str] = None

    customer_name: str = Field(..., min_length=1, max_length=100, examples=["Jane Doe"])
    customer_email: str = Field(..., max_length=255, examples=["jane@example.com"])
    customer_phone: str = Field(..., min_length=10, max_length=20, examples=["555-123-4567"])

    pizza_id: str
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    type: OrderType = Field(default=OrderType.PICKUP, examples=["pickup"])
    date: date
    time_slot: str = Field(..., pattern=TIME_SLOT_PATTERN, examples=["16:30"])

    @field_validator('customer_phone')
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return _validate_phone(v)

    @field_validator('customer_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not re.match(r'^[\w\.+-]+@[\w\.-]+\.\w+$', v):
            raise ValueError('Invalid email format')
        return v


class OrderStatusUpdate(BaseModel):
    """Status is checked against the allow-list in the endpoint (400, not 422)."""
    status: Optional[str] = None


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: str
    user_id: Optional[str]
    batch_id: Optional[str]
    customer_name: str
    customer_email: str
    customer_phone: str
    pizza_id: str
    quantity: int
    type: OrderType
    date: date
    time_slot: str
    status: OrderStatus
    created_at: datetime

    class Config:
        from_attributes = True

    @computed_field
    @property
    def next_status(self) -> Optional[str]:
        suggested = next_status(self.status)
        return suggested.value if suggested else None

    @computed_field
    @property
    def next_action(self) -> Optional[str]:
        return next_action(self.status)

    @computed_field
    @property
    def can_cancel(self) -> bool:
        return can_cancel(self.status)


# =============================================================================
# REVIEWS
# =============================================================================

class ReviewCreate(BaseModel):
    """
    Review questionnaire submission.

    ``rating`` may be omitted; it is then derived from ``overall_rating``.
    Choosing "Other" for ``fair_price`` requires ``custom_price_amount`` and
    the stored value becomes "Other: <amount>".
    """
    order_id: str
    pizza_id: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: str = Field(default="", max_length=2000)
    author: str = Field(default="Anonymous", min_length=1, max_length=100)

    overall_rating: Optional[OverallRatingEnum] = None
    fair_price: Optional[str] = Field(None, max_length=50, examples=["$21–$23", "Other"])
    custom_price_amount: Optional[str] = Field(None, max_length=50)
    crust_flavor: Optional[str] = Field(None, max_length=100)
    crust_quality: Optional[str] = Field(None, max_length=100)
    toppings_balance: Optional[str] = Field(None, max_length=100)
    would_order_again: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def fill_derived_fields(self) -> "ReviewCreate":
        if self.fair_price == FAIR_PRICE_OTHER:
            amount = (self.custom_price_amount or "").strip()
            if not amount:
                raise ValueError("Please enter a custom price amount")
            self.fair_price = f"{FAIR_PRICE_OTHER}: {amount}"

        if self.rating is None:
            self.rating = OVERALL_RATING_SCORES.get(
                self.overall_rating.value if self.overall_rating else None,
                DEFAULT_RATING,
            )
        return self


class ReviewResponse(BaseModel):
    id: str
    order_id: str
    pizza_id: str
    rating: int
    comment: str
    author: str
    overall_rating: Optional[str]
    fair_price: Optional[str]
    custom_price_amount: Optional[str]
    crust_flavor: Optional[str]
    crust_quality: Optional[str]
    toppings_balance: Optional[str]
    would_order_again: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# SETTINGS
# =============================================================================

class SettingsUpdate(BaseModel):
    max_pies_per_day: Optional[int] = Field(None, ge=0)
    service_days: Optional[List[int]] = None
    service_start_hour: Optional[int] = Field(None, ge=0, le=23)
    service_end_hour: Optional[int] = Field(None, ge=1, le=24)

    @field_validator(
        "max_pies_per_day", "service_days", "service_start_hour", "service_end_hour", mode="before"
    )
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)

    @field_validator('service_days')
    @classmethod
    def validate_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        if any(day < 0 or day > 6 for day in v):
            raise ValueError('Service days must be between 0 (Sunday) and 6 (Saturday)')
        return sorted(set(v))


class SettingsResponse(BaseModel):
    max_pies_per_day: int
    service_days: List[int]
    service_start_hour: int
    service_end_hour: int

    class Config:
        from_attributes = True


# =============================================================================
# AUTH & USERS
# =============================================================================

class SendOtpRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=20)


class VerifyOtpRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=20)
    code: str = Field(..., min_length=1, max_length=10)


class MessageResponse(BaseModel):
    message: str


class UserResponse(BaseModel):
    id: str
    phone: str
    name: str
    email: Optional[str]
    avatar_url: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    user: UserResponse


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


# =============================================================================
# BATCHES
# =============================================================================

class BatchCreate(BaseModel):
    batch_number: int = Field(..., ge=1, examples=[12])
    service_date: date
    service_start_hour: int = Field(default=16, ge=0, le=23)
    service_end_hour: int = Field(default=20, ge=1, le=24)

    @model_validator(mode="after")
    def check_window(self) -> "BatchCreate":
        if self.service_start_hour >= self.service_end_hour:
            raise ValueError("service_start_hour must be before service_end_hour")
        return self


class BatchUpdate(BaseModel):
    """Partial update. The resulting window is validated in the endpoint."""
    batch_number: Optional[int] = Field(None, ge=1)
    service_date: Optional[date] = None
    service_start_hour: Optional[int] = Field(None, ge=0, le=23)
    service_end_hour: Optional[int] = Field(None, ge=1, le=24)

    @field_validator(
        "batch_number", "service_date", "service_start_hour", "service_end_hour", mode="before"
    )
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class BatchResponse(BaseModel):
    id: str
    batch_number: int
    service_date: date
    service_start_hour: int
    service_end_hour: int
    created_at: datetime

    class Config:
        from_attributes = True


class BatchPizzaCreate(BaseModel):
    pizza_id: str
    max_quantity: int = Field(..., ge=0, examples=[6])


class BatchPizzaUpdate(BaseModel):
    max_quantity: int = Field(..., ge=0)


class BatchPizzaResponse(BaseModel):
    id: str
    batch_id: str
    pizza_id: str
    max_quantity: int
    created_at: datetime

    class Config:
        from_attributes = True


class BatchPizzaDetailResponse(BatchPizzaResponse):
    """Batch pizza joined with the pizza and its remaining quantity."""
    pizza: PizzaResponse
    available: int


class AvailabilityResponse(BaseModel):
    available: int


class TimeSlotsResponse(BaseModel):
    batch_id: str
    time_slots: List[str]


# =============================================================================
# DASHBOARD / SYSTEM
# =============================================================================

class DashboardResponse(BaseModel):
    total_orders: int
    orders_by_status: dict[str, int]
    pies_today: int
    revenue: Decimal
    average_rating: Optional[float]
    review_count: int
    pending_reviews: int
    active_batch: Optional[BatchResponse]
    recent_orders: List[OrderResponse]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    notification_service: str
    timestamp: datetime
