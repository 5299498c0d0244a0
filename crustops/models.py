"""
SQLAlchemy Database Models

Storefront tables:
- Users (phone login)
- Pizzas (menu items)
- Batches + BatchPizzas (service windows with per-pizza caps)
- Orders, Reviews
- Shop settings singleton and OTP codes
"""

import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from crustops.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    """Order status workflow (linear, not enforced server-side)."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COOKING = "cooking"
    READY = "ready"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, enum.Enum):
    """Order type - Pickup or Delivery."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


# Statuses that make an order eligible (and required) for a review
REVIEWABLE_STATUSES = (OrderStatus.DELIVERED, OrderStatus.COMPLETED)


class User(Base):
    """Customer account keyed by phone number."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    phone = Column(String(20), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User {self.phone} - {self.name}>"


class Pizza(Base):
    """Menu item. Only active pizzas can be ordered."""
    __tablename__ = "pizzas"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    image_url = Column(String(500), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    sold_out = Column(Boolean, nullable=False, default=False)
    price = Column(Numeric(10, 2), nullable=False)

    def __repr__(self):
        return f"<Pizza {self.name} - ${self.price}>"


class Batch(Base):
    """
    A service window: one date, a start/end hour, and the pizzas on offer.
    """
    __tablename__ = "batches"

    id = Column(String(36), primary_key=True, default=_uuid)
    batch_number = Column(Integer, nullable=False, unique=True)
    service_date = Column(Date, nullable=False, index=True)
    service_start_hour = Column(Integer, nullable=False, default=16)
    service_end_hour = Column(Integer, nullable=False, default=20)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Batch #{self.batch_number} - {self.service_date}>"


class BatchPizza(Base):
    """Pizza offered in a batch, with the maximum quantity that may be sold."""
    __tablename__ = "batch_pizzas"
    __table_args__ = (
        UniqueConstraint("batch_id", "pizza_id", name="uq_batch_pizzas_batch_pizza"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    batch_id = Column(String(36), ForeignKey("batches.id"), nullable=False, index=True)
    pizza_id = Column(String(36), ForeignKey("pizzas.id"), nullable=False)
    max_quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    pizza = relationship("Pizza", lazy="joined")

    def __repr__(self):
        return f"<BatchPizza batch={self.batch_id} pizza={self.pizza_id} max={self.max_quantity}>"


class Order(Base):
    """
    A single-pizza pre-order for a date and time slot.

    Orders with a batch_id draw from that batch's per-pizza cap; orders
    without one fall back to the daily pie limit in the settings row.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    batch_id = Column(String(36), ForeignKey("batches.id"), nullable=True, index=True)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(20), nullable=False, index=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    pizza_id = Column(String(36), ForeignKey("pizzas.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    type = Column(
        Enum(OrderType, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
    )
    date = Column(Date, nullable=False, index=True)
    time_slot = Column(String(5), nullable=False)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Order {self.id} - {self.customer_name} - {self.status.value}>"


class Review(Base):
    """
    Structured review of a delivered/completed order.

    ``rating`` and ``comment`` are the legacy fields; the questionnaire
    answers are stored verbatim as the option labels the customer picked.
    """
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, unique=True)
    pizza_id = Column(String(36), ForeignKey("pizzas.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False, default="")
    author = Column(String(100), nullable=False)

    overall_rating = Column(String(50), nullable=True)
    fair_price = Column(String(50), nullable=True)
    custom_price_amount = Column(String(50), nullable=True)
    crust_flavor = Column(String(100), nullable=True)
    crust_quality = Column(String(100), nullable=True)
    toppings_balance = Column(String(100), nullable=True)
    would_order_again = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Review order={self.order_id} rating={self.rating}>"


class ShopSettings(Base):
    """Singleton row (id=1) holding the daily cap and service schedule."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, default=1)
    max_pies_per_day = Column(Integer, nullable=False, default=15)
    service_days = Column(JSON, nullable=False, default=lambda: [4, 5, 6])  # 0=Sun ... 6=Sat
    service_start_hour = Column(Integer, nullable=False, default=16)
    service_end_hour = Column(Integer, nullable=False, default=20)


class OtpCode(Base):
    """Short-lived login code. expires_at is naive UTC."""
    __tablename__ = "otp_codes"

    id = Column(String(36), primary_key=True, default=_uuid)
    phone = Column(String(20), nullable=False, index=True)
    code = Column(String(10), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
