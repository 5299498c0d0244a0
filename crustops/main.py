"""
FastAPI Application Entry Point

CrustOps Pizza Lab - small-batch pizza pre-orders.
Customers order from the current batch menu; the kitchen manages pizzas,
batches, per-pizza caps and order status from the dashboard endpoints.

Endpoints:
    - GET  /api/pizzas: Storefront menu with batch availability
    - POST /api/orders: Place a pre-order (atomic batch allocation)
    - PATCH /api/orders/{id}/status: Kitchen status update + customer SMS
    - POST /api/reviews: Structured review of a delivered order
    - POST /api/auth/send-otp, /api/auth/verify-otp: Phone login
    - /api/batches/...: Batch and batch-pizza management
    - GET  /api/dashboard-data: Kitchen dashboard statistics
    - GET  /health: System health check
"""

import asyncio
import logging
import secrets
import sys
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Header, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, FileResponse
from fastapi.middleware.cors import CORSMiddleware
from filelock import Timeout
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete
import redis

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from crustops.core.config import get_settings, setup_logging
from crustops.database import async_session_maker, get_db, init_db, engine
from crustops.models import (
    Batch,
    BatchPizza,
    Order,
    OrderStatus,
    Pizza,
    Review,
    ShopSettings,
    User,
    REVIEWABLE_STATUSES,
)
from crustops.schemas import (
    AuthResponse,
    AvailabilityResponse,
    BatchCreate,
    BatchPizzaCreate,
    BatchPizzaDetailResponse,
    BatchPizzaResponse,
    BatchPizzaUpdate,
    BatchResponse,
    BatchUpdate,
    DashboardResponse,
    ErrorResponse,
    HealthResponse,
    MenuPizzaResponse,
    MessageResponse,
    OrderCreate,
    OrderResponse,
    OrderStatusUpdate,
    PizzaCreate,
    PizzaResponse,
    PizzaUpdate,
    ReviewCreate,
    ReviewResponse,
    SendOtpRequest,
    SettingsResponse,
    SettingsUpdate,
    TimeSlotsResponse,
    UserResponse,
    UserUpdate,
    VerifyOtpRequest,
)
from crustops.services.availability import (
    DailyLimitReached,
    InsufficientStock,
    allocate,
    allocate_daily,
    get_available_quantity,
    get_batch_availability,
    get_batch_pizza,
    resolve_active_batch,
    time_slots,
    utc_today,
)
from crustops.services.excel_manager import ExcelManager
from crustops.services.notifications import get_notification_service
from crustops.services.otp import issue_code, purge_expired_codes, verify_and_login
from crustops.services.status_flow import ALLOWED_STATUSES, is_valid_status, status_message
from crustops.tasks import (
    export_order_to_excel,
    send_order_confirmation,
    send_sms_notification,
)

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🍕 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    async with async_session_maker() as db:
        purged = await purge_expired_codes(db)
    logger.info(f"✅ Database initialized ({purged} expired login codes purged)")

    notification_service = get_notification_service()
    logger.info(f"✅ Notification Service: {notification_service.provider_name}")

    if settings.admin_api_key is None:
        logger.warning("⚠️ ADMIN_API_KEY not set - admin endpoints are open")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Small-batch pizza pre-orders: batch menus with per-pizza caps, "
        "phone login, reviews and a kitchen dashboard."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def require_admin(
    x_admin_key: Optional[str] = Header(None, alias="x-admin-key"),
) -> None:
    """Guard for kitchen endpoints. Open when no admin key is configured."""
    expected = get_settings().admin_api_key
    if not expected:
        return
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Admin key required")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

async def get_or_404(db: AsyncSession, model, object_id: str, label: str):
    instance = await db.get(model, object_id)
    if instance is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return instance


async def get_shop_settings(db: AsyncSession, for_update: bool = False) -> ShopSettings:
    """Load the settings singleton, creating it with defaults on first use."""
    query = select(ShopSettings).where(ShopSettings.id == 1)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    shop = result.scalar_one_or_none()

    if shop is None:
        shop = ShopSettings(
            id=1,
            max_pies_per_day=settings.default_max_pies_per_day,
            service_days=settings.default_service_days_list,
            service_start_hour=settings.default_service_start_hour,
            service_end_hour=settings.default_service_end_hour,
        )
        db.add(shop)
        await db.flush()
        logger.info("Default shop settings created")
    return shop


async def get_pending_review_orders(db: AsyncSession, user_id: str) -> list[Order]:
    """Delivered/completed orders of a user that have no review yet."""
    result = await db.execute(
        select(Order)
        .outerjoin(Review, Review.order_id == Order.id)
        .where(
            Order.user_id == user_id,
            Order.status.in_(REVIEWABLE_STATUSES),
            Review.id.is_(None),
        )
        .order_by(Order.created_at)
    )
    return list(result.scalars().all())


def js_weekday(day: date) -> int:
    """Weekday numbered 0=Sunday ... 6=Saturday, as stored in service_days."""
    return (day.weekday() + 1) % 7


def queue_sms(to_phone: str, message: str) -> bool:
    """Hand an SMS to the worker. Failures are logged, never raised."""
    try:
        send_sms_notification.delay(to_phone, message)
        return True
    except Exception as e:
        logger.error(f"Failed to queue SMS to {to_phone}: {e}")
        return False


def queue_order_followups(order: Order, pizza: Pizza, batch: Optional[Batch]) -> None:
    """Queue the confirmation message and the ledger export for a new order."""
    try:
        send_order_confirmation.delay({
            "order_id": order.id,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "customer_email": order.customer_email or None,
            "pizza_name": pizza.name,
            "quantity": order.quantity,
            "order_type": order.type.value,
            "date": order.date.isoformat(),
            "time_slot": order.time_slot,
        })
        export_order_to_excel.delay({
            "order_id": order.id,
            "batch_number": batch.batch_number if batch else None,
            "date": order.date.isoformat(),
            "time_slot": order.time_slot,
            "order_type": order.type.value,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "customer_email": order.customer_email,
            "pizza_name": pizza.name,
            "quantity": order.quantity,
            "unit_price": str(pizza.price),
            "order_status": order.status.value,
            "created_at": order.created_at.isoformat() if order.created_at else None,
        })
    except Exception as e:
        logger.error(f"Failed to queue follow-ups for order {order.id}: {e}")


def sold_out_message(available: int) -> str:
    noun = "pizza" if available == 1 else "pizzas"
    return f"Sorry! Only {available} {noun} available for this batch."


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "menu": "/api/pizzas",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(func.count(Pizza.id)))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        await run_in_threadpool(r.ping)
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    notification_service = get_notification_service()
    notification_status = "healthy" if await notification_service.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        notification_service=notification_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# PIZZA ENDPOINTS
# =============================================================================

@app.get(
    "/api/pizzas",
    response_model=list[MenuPizzaResponse],
    tags=["Pizzas"],
    summary="Storefront Menu",
)
async def get_menu(db: AsyncSession = Depends(get_db)) -> list[MenuPizzaResponse]:
    """
    Active pizzas offered in the active batch, with remaining quantity.

    Without an upcoming batch every active pizza is returned as sold out.
    """
    batch = await resolve_active_batch(db)

    if batch is None:
        result = await db.execute(
            select(Pizza).where(Pizza.active.is_(True)).order_by(Pizza.name)
        )
        return [
            MenuPizzaResponse.model_validate(pizza).model_copy(update={"sold_out": True})
            for pizza in result.scalars().all()
        ]

    availability = await get_batch_availability(db, batch.id)
    result = await db.execute(
        select(Pizza)
        .join(BatchPizza, BatchPizza.pizza_id == Pizza.id)
        .where(BatchPizza.batch_id == batch.id, Pizza.active.is_(True))
        .order_by(Pizza.name)
    )

    menu = []
    for pizza in result.scalars().all():
        available = availability.get(pizza.id, 0)
        menu.append(
            MenuPizzaResponse.model_validate(pizza).model_copy(update={
                "sold_out": available <= 0,
                "available": available,
                "batch_id": batch.id,
                "batch_number": batch.batch_number,
                "service_date": batch.service_date,
            })
        )
    return menu


@app.get(
    "/api/pizzas/all",
    response_model=list[PizzaResponse],
    tags=["Pizzas"],
)
async def list_all_pizzas(db: AsyncSession = Depends(get_db)) -> list[PizzaResponse]:
    """Every pizza, including inactive ones."""
    result = await db.execute(select(Pizza).order_by(Pizza.name))
    return [PizzaResponse.model_validate(p) for p in result.scalars().all()]


@app.post(
    "/api/pizzas",
    response_model=PizzaResponse,
    status_code=201,
    tags=["Pizzas"],
    dependencies=[Depends(require_admin)],
)
async def create_pizza(
    pizza_data: PizzaCreate,
    db: AsyncSession = Depends(get_db),
) -> PizzaResponse:
    pizza = Pizza(**pizza_data.model_dump())
    db.add(pizza)
    await db.commit()
    await db.refresh(pizza)

    logger.info(f"Pizza created: {pizza.name}")
    return PizzaResponse.model_validate(pizza)


@app.patch(
    "/api/pizzas/{pizza_id}",
    response_model=PizzaResponse,
    tags=["Pizzas"],
    dependencies=[Depends(require_admin)],
)
async def update_pizza(
    pizza_id: str,
    updates: PizzaUpdate,
    db: AsyncSession = Depends(get_db),
) -> PizzaResponse:
    pizza = await get_or_404(db, Pizza, pizza_id, "Pizza")

    for field, value in updates.model_dump(exclude_unset=True).items():
        setattr(pizza, field, value)

    await db.commit()
    await db.refresh(pizza)
    return PizzaResponse.model_validate(pizza)


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.get(
    "/api/orders",
    response_model=list[OrderResponse],
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    user_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    batch_id: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[OrderResponse]:
    """Orders, newest first, optionally for one user, status or batch."""
    query = select(Order).order_by(Order.created_at.desc())

    conditions = []
    if user_id:
        conditions.append(Order.user_id == user_id)
    if batch_id:
        conditions.append(Order.batch_id == batch_id)
    if status:
        if not is_valid_status(status.lower()):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Options: {ALLOWED_STATUSES}"
            )
        conditions.append(Order.status == OrderStatus(status.lower()))

    if conditions:
        query = query.where(*conditions)

    result = await db.execute(query.offset(skip).limit(limit))
    return [OrderResponse.model_validate(order) for order in result.scalars().all()]


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    """Get a specific order by ID."""
    order = await get_or_404(db, Order, order_id, "Order")
    return OrderResponse.model_validate(order)


@app.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place Pre-Order",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    """
    Place a pre-order.

    With a batch, the pizza's batch cap is checked and claimed in the same
    transaction that inserts the order. Without one, the daily pie limit
    from the settings row applies.
    """
    logger.info(
        f"Creating order for {order_data.customer_name}: "
        f"{order_data.quantity} x {order_data.pizza_id} (batch={order_data.batch_id})"
    )

    try:
        if order_data.user_id:
            pending = await get_pending_review_orders(db, order_data.user_id)
            if pending:
                raise HTTPException(
                    status_code=400,
                    detail=(
                        "Please review your previous order before placing a new one. "
                        "You can find the review link in your order history."
                    ),
                )

        pizza = await get_or_404(db, Pizza, order_data.pizza_id, "Pizza")
        if not pizza.active:
            raise HTTPException(status_code=400, detail="This pizza is not currently available.")

        batch = None
        if order_data.batch_id:
            batch = await get_or_404(db, Batch, order_data.batch_id, "Batch")

            if order_data.date != batch.service_date:
                raise HTTPException(
                    status_code=400,
                    detail="Order date does not match batch service date.",
                )
            if order_data.time_slot not in time_slots(batch.service_start_hour, batch.service_end_hour):
                raise HTTPException(
                    status_code=400,
                    detail="Time slot is outside the batch service window.",
                )

            try:
                await allocate(db, batch.id, pizza.id, order_data.quantity)
            except InsufficientStock as e:
                await db.rollback()
                raise HTTPException(status_code=400, detail=sold_out_message(e.available))
        else:
            if pizza.sold_out:
                raise HTTPException(status_code=400, detail="This pizza is currently sold out.")

            shop = await get_shop_settings(db, for_update=True)
            if js_weekday(order_data.date) not in shop.service_days:
                await db.rollback()
                raise HTTPException(status_code=400, detail="We are not serving on that day.")
            if order_data.time_slot not in time_slots(shop.service_start_hour, shop.service_end_hour):
                await db.rollback()
                raise HTTPException(status_code=400, detail="Time slot is outside service hours.")

            try:
                await allocate_daily(db, order_data.date, order_data.quantity, shop.max_pies_per_day)
            except DailyLimitReached:
                await db.rollback()
                raise HTTPException(
                    status_code=400,
                    detail="Sorry! We just sold out for that date while you were ordering.",
                )

        new_order = Order(**order_data.model_dump(), status=OrderStatus.CONFIRMED)
        db.add(new_order)
        await db.commit()
        await db.refresh(new_order)

        logger.info(f"Order {new_order.id} created successfully")

        queue_order_followups(new_order, pizza, batch)

        return OrderResponse.model_validate(new_order)

    except HTTPException:
        raise
    except Exception as e:
        await db.rollback()
        logger.exception(f"Error creating order: {e}")
        raise HTTPException(status_code=500, detail="Failed to create order")


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    tags=["Orders"],
    summary="Update Order Status",
    dependencies=[Depends(require_admin)],
)
async def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    """
    Set any allow-listed status and text the customer about it.

    An SMS that cannot be queued is logged and does not fail the update.
    """
    if not is_valid_status(payload.status):
        raise HTTPException(status_code=400, detail="Invalid status")

    order = await get_or_404(db, Order, order_id, "Order")

    previous = order.status
    order.status = OrderStatus(payload.status)
    await db.commit()
    await db.refresh(order)

    logger.info(f"Order {order.id}: {previous.value} -> {order.status.value}")

    message = status_message(order.status, settings.brand_signature)
    if message:
        queue_sms(order.customer_phone, message)

    return OrderResponse.model_validate(order)


# =============================================================================
# REVIEW ENDPOINTS
# =============================================================================

@app.get(
    "/api/reviews",
    response_model=list[ReviewResponse],
    tags=["Reviews"],
)
async def list_reviews(
    order_id: Optional[str] = Query(None),
    pizza_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[ReviewResponse]:
    """All reviews, or those for one order / one pizza."""
    query = select(Review).order_by(Review.created_at.desc())
    if order_id:
        query = query.where(Review.order_id == order_id)
    elif pizza_id:
        query = query.where(Review.pizza_id == pizza_id)

    result = await db.execute(query)
    return [ReviewResponse.model_validate(r) for r in result.scalars().all()]


@app.get(
    "/api/reviews/pending",
    response_model=list[OrderResponse],
    tags=["Reviews"],
)
async def list_pending_reviews(
    user_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[OrderResponse]:
    """Orders the user still has to review."""
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")

    orders = await get_pending_review_orders(db, user_id)
    return [OrderResponse.model_validate(o) for o in orders]


@app.post(
    "/api/reviews",
    response_model=ReviewResponse,
    status_code=201,
    tags=["Reviews"],
)
async def create_review(
    review_data: ReviewCreate,
    db: AsyncSession = Depends(get_db),
) -> ReviewResponse:
    """Submit the review questionnaire for a delivered or completed order."""
    existing = await db.execute(select(Review.id).where(Review.order_id == review_data.order_id))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Review already submitted for this order")

    order = await get_or_404(db, Order, review_data.order_id, "Order")
    if order.status not in REVIEWABLE_STATUSES:
        raise HTTPException(status_code=400, detail="Can only review delivered or completed orders")

    if review_data.pizza_id and review_data.pizza_id != order.pizza_id:
        raise HTTPException(status_code=400, detail="Review pizza does not match the order")

    fields = review_data.model_dump(mode="json")
    fields["pizza_id"] = order.pizza_id
    review = Review(**fields)
    db.add(review)

    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent submission for the same order
        await db.rollback()
        raise HTTPException(status_code=400, detail="Review already submitted for this order")

    await db.refresh(review)
    logger.info(f"Review for order {order.id}: rating {review.rating}")
    return ReviewResponse.model_validate(review)


# =============================================================================
# SETTINGS ENDPOINTS
# =============================================================================

@app.get(
    "/api/settings",
    response_model=SettingsResponse,
    tags=["Settings"],
)
async def read_settings(db: AsyncSession = Depends(get_db)) -> SettingsResponse:
    shop = await get_shop_settings(db)
    await db.commit()
    return SettingsResponse.model_validate(shop)


@app.patch(
    "/api/settings",
    response_model=SettingsResponse,
    tags=["Settings"],
    dependencies=[Depends(require_admin)],
)
async def update_settings(
    updates: SettingsUpdate,
    db: AsyncSession = Depends(get_db),
) -> SettingsResponse:
    shop = await get_shop_settings(db, for_update=True)

    changes = updates.model_dump(exclude_unset=True)
    start = changes.get("service_start_hour", shop.service_start_hour)
    end = changes.get("service_end_hour", shop.service_end_hour)
    if start >= end:
        await db.rollback()
        raise HTTPException(status_code=400, detail="service_start_hour must be before service_end_hour")

    for field, value in changes.items():
        setattr(shop, field, value)

    await db.commit()
    await db.refresh(shop)
    logger.info(f"Settings updated: {changes}")
    return SettingsResponse.model_validate(shop)


# =============================================================================
# AUTH & USER ENDPOINTS
# =============================================================================

@app.post(
    "/api/auth/send-otp",
    response_model=MessageResponse,
    tags=["Auth"],
)
async def send_otp(
    payload: SendOtpRequest,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Issue a login code and send it by SMS (logged to console in development)."""
    phone = payload.phone.strip()
    if not phone:
        raise HTTPException(status_code=400, detail="Phone number is required")

    otp = await issue_code(db, phone)

    if settings.is_development:
        logger.info(f"OTP for {phone}: {otp.code}")

    queue_sms(
        phone,
        f"Your {settings.app_name} login code is {otp.code}. "
        f"It expires in {settings.otp_ttl_minutes} minutes.",
    )
    return MessageResponse(message="OTP sent successfully")


@app.post(
    "/api/auth/verify-otp",
    response_model=AuthResponse,
    tags=["Auth"],
)
async def verify_otp(
    payload: VerifyOtpRequest,
    db: AsyncSession = Depends(get_db),
) -> AuthResponse:
    """Exchange a valid code for the user, creating the account on first login."""
    user = await verify_and_login(db, payload.phone.strip(), payload.code.strip())
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired code")

    return AuthResponse(user=UserResponse.model_validate(user))


@app.get(
    "/api/auth/me",
    response_model=UserResponse,
    tags=["Auth"],
)
async def current_user(
    user_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await get_or_404(db, User, user_id, "User")
    return UserResponse.model_validate(user)


@app.patch(
    "/api/users/{user_id}",
    response_model=UserResponse,
    tags=["Auth"],
)
async def update_user(
    user_id: str,
    updates: UserUpdate,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await get_or_404(db, User, user_id, "User")

    for field, value in updates.model_dump(exclude_unset=True).items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    return UserResponse.model_validate(user)


# =============================================================================
# BATCH ENDPOINTS
# =============================================================================

@app.get(
    "/api/batches",
    response_model=list[BatchResponse],
    tags=["Batches"],
)
async def list_batches(db: AsyncSession = Depends(get_db)) -> list[BatchResponse]:
    result = await db.execute(select(Batch).order_by(Batch.batch_number))
    return [BatchResponse.model_validate(b) for b in result.scalars().all()]


@app.get(
    "/api/batches/next",
    response_model=BatchResponse,
    tags=["Batches"],
    summary="Next Available Batch",
)
async def next_batch(db: AsyncSession = Depends(get_db)) -> BatchResponse:
    """Today's batch, else the earliest upcoming one."""
    batch = await resolve_active_batch(db)
    if batch is None:
        raise HTTPException(status_code=404, detail="No upcoming batches found")
    return BatchResponse.model_validate(batch)


@app.get(
    "/api/batches/{batch_id}",
    response_model=BatchResponse,
    tags=["Batches"],
)
async def get_batch(batch_id: str, db: AsyncSession = Depends(get_db)) -> BatchResponse:
    batch = await get_or_404(db, Batch, batch_id, "Batch")
    return BatchResponse.model_validate(batch)


@app.post(
    "/api/batches",
    response_model=BatchResponse,
    status_code=201,
    tags=["Batches"],
    dependencies=[Depends(require_admin)],
)
async def create_batch(
    batch_data: BatchCreate,
    db: AsyncSession = Depends(get_db),
) -> BatchResponse:
    existing = await db.execute(
        select(Batch.id).where(Batch.batch_number == batch_data.batch_number)
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail=f"Batch #{batch_data.batch_number} already exists")

    batch = Batch(**batch_data.model_dump())
    db.add(batch)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=f"Batch #{batch_data.batch_number} already exists")

    await db.refresh(batch)
    logger.info(f"Batch #{batch.batch_number} created for {batch.service_date}")
    return BatchResponse.model_validate(batch)


@app.patch(
    "/api/batches/{batch_id}",
    response_model=BatchResponse,
    tags=["Batches"],
    dependencies=[Depends(require_admin)],
)
async def update_batch(
    batch_id: str,
    updates: BatchUpdate,
    db: AsyncSession = Depends(get_db),
) -> BatchResponse:
    batch = await get_or_404(db, Batch, batch_id, "Batch")
    changes = updates.model_dump(exclude_unset=True)

    start = changes.get("service_start_hour", batch.service_start_hour)
    end = changes.get("service_end_hour", batch.service_end_hour)
    if start >= end:
        raise HTTPException(status_code=400, detail="service_start_hour must be before service_end_hour")

    for field, value in changes.items():
        setattr(batch, field, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Batch number already in use")

    await db.refresh(batch)
    return BatchResponse.model_validate(batch)


@app.delete(
    "/api/batches/{batch_id}",
    status_code=204,
    tags=["Batches"],
    dependencies=[Depends(require_admin)],
)
async def delete_batch(batch_id: str, db: AsyncSession = Depends(get_db)) -> Response:
    """Delete a batch and its pizza caps. Batches with orders are kept."""
    batch = await get_or_404(db, Batch, batch_id, "Batch")

    order_count = await db.execute(select(func.count(Order.id)).where(Order.batch_id == batch.id))
    if (order_count.scalar() or 0) > 0:
        raise HTTPException(status_code=409, detail="Batch has orders and cannot be deleted")

    await db.execute(delete(BatchPizza).where(BatchPizza.batch_id == batch.id))
    await db.delete(batch)
    await db.commit()

    logger.info(f"Batch #{batch.batch_number} deleted")
    return Response(status_code=204)


@app.get(
    "/api/batches/{batch_id}/pizzas",
    response_model=list[BatchPizzaDetailResponse],
    tags=["Batches"],
)
async def list_batch_pizzas(
    batch_id: str,
    db: AsyncSession = Depends(get_db),
) -> list[BatchPizzaDetailResponse]:
    """Pizzas offered in a batch with their caps and remaining quantity."""
    batch = await get_or_404(db, Batch, batch_id, "Batch")

    availability = await get_batch_availability(db, batch.id)
    result = await db.execute(
        select(BatchPizza).where(BatchPizza.batch_id == batch.id).order_by(BatchPizza.created_at)
    )

    return [
        BatchPizzaDetailResponse(
            id=bp.id,
            batch_id=bp.batch_id,
            pizza_id=bp.pizza_id,
            max_quantity=bp.max_quantity,
            created_at=bp.created_at,
            pizza=PizzaResponse.model_validate(bp.pizza),
            available=availability.get(bp.pizza_id, 0),
        )
        for bp in result.unique().scalars().all()
    ]


@app.post(
    "/api/batches/{batch_id}/pizzas",
    response_model=BatchPizzaResponse,
    status_code=201,
    tags=["Batches"],
    dependencies=[Depends(require_admin)],
)
async def add_batch_pizza(
    batch_id: str,
    payload: BatchPizzaCreate,
    db: AsyncSession = Depends(get_db),
) -> BatchPizzaResponse:
    batch = await get_or_404(db, Batch, batch_id, "Batch")
    await get_or_404(db, Pizza, payload.pizza_id, "Pizza")

    if await get_batch_pizza(db, batch.id, payload.pizza_id) is not None:
        raise HTTPException(status_code=409, detail="Pizza is already in this batch")

    batch_pizza = BatchPizza(
        batch_id=batch.id,
        pizza_id=payload.pizza_id,
        max_quantity=payload.max_quantity,
    )
    db.add(batch_pizza)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Pizza is already in this batch")

    await db.refresh(batch_pizza)
    logger.info(f"Batch #{batch.batch_number}: pizza {payload.pizza_id} capped at {payload.max_quantity}")
    return BatchPizzaResponse.model_validate(batch_pizza)


@app.patch(
    "/api/batches/{batch_id}/pizzas/{pizza_id}",
    response_model=BatchPizzaResponse,
    tags=["Batches"],
    dependencies=[Depends(require_admin)],
)
async def update_batch_pizza(
    batch_id: str,
    pizza_id: str,
    payload: BatchPizzaUpdate,
    db: AsyncSession = Depends(get_db),
) -> BatchPizzaResponse:
    batch_pizza = await get_batch_pizza(db, batch_id, pizza_id)
    if batch_pizza is None:
        raise HTTPException(status_code=404, detail="Batch pizza not found")

    batch_pizza.max_quantity = payload.max_quantity
    await db.commit()
    await db.refresh(batch_pizza)
    return BatchPizzaResponse.model_validate(batch_pizza)


@app.delete(
    "/api/batches/{batch_id}/pizzas/{pizza_id}",
    status_code=204,
    tags=["Batches"],
    dependencies=[Depends(require_admin)],
)
async def remove_batch_pizza(
    batch_id: str,
    pizza_id: str,
    db: AsyncSession = Depends(get_db),
) -> Response:
    batch_pizza = await get_batch_pizza(db, batch_id, pizza_id)
    if batch_pizza is None:
        raise HTTPException(status_code=404, detail="Batch pizza not found")

    await db.delete(batch_pizza)
    await db.commit()
    return Response(status_code=204)


@app.get(
    "/api/batches/{batch_id}/availability/{pizza_id}",
    response_model=AvailabilityResponse,
    tags=["Batches"],
)
async def batch_availability(
    batch_id: str,
    pizza_id: str,
    db: AsyncSession = Depends(get_db),
) -> AvailabilityResponse:
    available = await get_available_quantity(db, batch_id, pizza_id)
    return AvailabilityResponse(available=available)


@app.get(
    "/api/batches/{batch_id}/time-slots",
    response_model=TimeSlotsResponse,
    tags=["Batches"],
)
async def batch_time_slots(batch_id: str, db: AsyncSession = Depends(get_db)) -> TimeSlotsResponse:
    batch = await get_or_404(db, Batch, batch_id, "Batch")
    return TimeSlotsResponse(
        batch_id=batch.id,
        time_slots=time_slots(batch.service_start_hour, batch.service_end_hour),
    )


@app.get(
    "/api/batches/{batch_id}/export",
    response_class=FileResponse,
    tags=["Batches"],
    summary="Download Batch Prep Sheet",
    dependencies=[Depends(require_admin)],
)
async def export_batch(batch_id: str, db: AsyncSession = Depends(get_db)) -> FileResponse:
    """Write the batch prep sheet (orders by slot + stock) and return it."""
    batch = await get_or_404(db, Batch, batch_id, "Batch")

    orders_result = await db.execute(
        select(Order, Pizza.name)
        .join(Pizza, Pizza.id == Order.pizza_id)
        .where(Order.batch_id == batch.id, Order.status != OrderStatus.CANCELLED)
    )
    orders = [
        {
            "time_slot": order.time_slot,
            "pizza_name": pizza_name,
            "quantity": order.quantity,
            "order_type": order.type.value,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "order_status": order.status.value,
            "order_id": order.id,
        }
        for order, pizza_name in orders_result.all()
    ]

    availability = await get_batch_availability(db, batch.id)
    caps_result = await db.execute(select(BatchPizza).where(BatchPizza.batch_id == batch.id))
    stock = [
        {
            "pizza_name": bp.pizza.name,
            "max_quantity": bp.max_quantity,
            "ordered": bp.max_quantity - availability.get(bp.pizza_id, 0),
            "available": availability.get(bp.pizza_id, 0),
        }
        for bp in caps_result.unique().scalars().all()
    ]

    try:
        path = await run_in_threadpool(ExcelManager.write_batch_sheet, batch.batch_number, orders, stock)
    except Timeout:
        raise HTTPException(status_code=503, detail="Prep sheet is being written, try again shortly")

    return FileResponse(
        path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=path.name,
    )


@app.get("/api/ledger", tags=["Batches"], dependencies=[Depends(require_admin)])
async def order_ledger() -> dict:
    """Rows the export worker has appended to the order spreadsheet so far."""
    rows = await run_in_threadpool(ExcelManager.get_all_orders)
    return {"count": len(rows), "orders": rows}


# =============================================================================
# DASHBOARD ENDPOINTS
# =============================================================================

@app.get(
    "/api/dashboard-data",
    response_model=DashboardResponse,
    tags=["Dashboard"],
    dependencies=[Depends(require_admin)],
)
async def dashboard_data(
    db: AsyncSession = Depends(get_db),
) -> DashboardResponse:
    """Get aggregated dashboard statistics."""

    # Counts per status
    orders_by_status = {status: 0 for status in ALLOWED_STATUSES}
    status_result = await db.execute(
        select(Order.status, func.count(Order.id)).group_by(Order.status)
    )
    for status, count in status_result.all():
        orders_by_status[OrderStatus(status).value] = count
    total_orders = sum(orders_by_status.values())

    # Pies for today's service
    pies_result = await db.execute(
        select(func.coalesce(func.sum(Order.quantity), 0)).where(
            Order.date == utc_today(),
            Order.status != OrderStatus.CANCELLED,
        )
    )
    pies_today = int(pies_result.scalar() or 0)

    # Revenue
    revenue_result = await db.execute(
        select(func.sum(Order.quantity * Pizza.price))
        .join(Pizza, Pizza.id == Order.pizza_id)
        .where(Order.status != OrderStatus.CANCELLED)
    )
    revenue = Decimal(str(revenue_result.scalar() or 0)).quantize(Decimal("0.01"))

    # Reviews
    rating_result = await db.execute(select(func.avg(Review.rating), func.count(Review.id)))
    avg_rating, review_count = rating_result.one()

    pending_result = await db.execute(
        select(func.count(Order.id))
        .outerjoin(Review, Review.order_id == Order.id)
        .where(Order.status.in_(REVIEWABLE_STATUSES), Review.id.is_(None))
    )
    pending_reviews = pending_result.scalar() or 0

    # Recent orders
    recent_result = await db.execute(
        select(Order).order_by(Order.created_at.desc()).limit(settings.recent_orders_limit)
    )
    recent_orders = recent_result.scalars().all()

    active_batch = await resolve_active_batch(db)

    return DashboardResponse(
        total_orders=total_orders,
        orders_by_status=orders_by_status,
        pies_today=pies_today,
        revenue=revenue,
        average_rating=round(float(avg_rating), 2) if avg_rating is not None else None,
        review_count=review_count or 0,
        pending_reviews=pending_reviews,
        active_batch=BatchResponse.model_validate(active_batch) if active_batch else None,
        recent_orders=[OrderResponse.model_validate(o) for o in recent_orders],
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("crustops.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
