"""
Batch Availability & Allocation

Remaining stock for a pizza in a batch is its cap minus the quantity of
every non-cancelled order already placed against that batch. Allocation
runs inside the order-creation transaction and locks the batch-pizza row
(``SELECT ... FOR UPDATE``) before re-reading the ordered quantity, so two
requests racing for the last pies are serialized by the database and only
one of them can succeed.

Orders placed without a batch fall back to the daily pie limit from the
settings row; that path locks the settings row instead.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crustops.models import Batch, BatchPizza, Order, OrderStatus

logger = logging.getLogger(__name__)


class InsufficientStock(Exception):
    """Requested quantity exceeds what is left for the pizza in the batch."""

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(f"Only {available} available, {requested} requested")


class DailyLimitReached(Exception):
    """The daily pie limit would be exceeded (orders without a batch)."""

    def __init__(self, ordered: int, limit: int):
        self.ordered = ordered
        self.limit = limit
        super().__init__(f"{ordered} of {limit} pies already ordered")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def time_slots(start_hour: int, end_hour: int) -> list[str]:
    """
    Half-hour pickup/delivery slots for a service window.

    >>> time_slots(16, 18)
    ['16:00', '16:30', '17:00', '17:30']
    """
    slots = []
    for hour in range(start_hour, end_hour):
        slots.append(f"{hour}:00")
        slots.append(f"{hour}:30")
    return slots


def _active_orders(*conditions):
    return (
        select(func.coalesce(func.sum(Order.quantity), 0))
        .where(Order.status != OrderStatus.CANCELLED, *conditions)
    )


async def get_batch_pizza(
    db: AsyncSession,
    batch_id: str,
    pizza_id: str,
    for_update: bool = False,
) -> Optional[BatchPizza]:
    """Fetch the batch/pizza link, optionally locking the row."""
    query = select(BatchPizza).where(
        BatchPizza.batch_id == batch_id,
        BatchPizza.pizza_id == pizza_id,
    )
    if for_update:
        # of= keeps the lock on batch_pizzas only; the joined pizza row stays free
        query = query.with_for_update(of=BatchPizza)
    result = await db.execute(query)
    return result.unique().scalar_one_or_none()


async def get_ordered_quantity(db: AsyncSession, batch_id: str, pizza_id: str) -> int:
    """Sum of non-cancelled order quantities for a pizza in a batch."""
    result = await db.execute(
        _active_orders(Order.batch_id == batch_id, Order.pizza_id == pizza_id)
    )
    return int(result.scalar() or 0)


async def get_available_quantity(db: AsyncSession, batch_id: str, pizza_id: str) -> int:
    """
    Remaining sellable quantity for a pizza in a batch.

    Returns 0 when the pizza is not offered in the batch, and never
    goes below 0 even if the cap was lowered after orders came in.
    """
    batch_pizza = await get_batch_pizza(db, batch_id, pizza_id)
    if batch_pizza is None:
        return 0

    ordered = await get_ordered_quantity(db, batch_id, pizza_id)
    return max(0, batch_pizza.max_quantity - ordered)


async def is_pizza_available_in_batch(
    db: AsyncSession,
    batch_id: str,
    pizza_id: str,
    quantity: int,
) -> bool:
    available = await get_available_quantity(db, batch_id, pizza_id)
    return available >= quantity


async def get_batch_availability(db: AsyncSession, batch_id: str) -> dict[str, int]:
    """Remaining quantity for every pizza offered in a batch, keyed by pizza id."""
    ordered_subq = (
        select(
            Order.pizza_id.label("pizza_id"),
            func.sum(Order.quantity).label("ordered"),
        )
        .where(Order.batch_id == batch_id, Order.status != OrderStatus.CANCELLED)
        .group_by(Order.pizza_id)
        .subquery()
    )
    result = await db.execute(
        select(
            BatchPizza.pizza_id,
            BatchPizza.max_quantity,
            func.coalesce(ordered_subq.c.ordered, 0),
        )
        .outerjoin(ordered_subq, ordered_subq.c.pizza_id == BatchPizza.pizza_id)
        .where(BatchPizza.batch_id == batch_id)
    )
    return {
        pizza_id: max(0, max_quantity - int(ordered))
        for pizza_id, max_quantity, ordered in result.all()
    }


async def allocate(
    db: AsyncSession,
    batch_id: str,
    pizza_id: str,
    quantity: int,
) -> int:
    """
    Reserve ``quantity`` pies of a pizza in a batch.

    Must be called inside the transaction that inserts the order. The
    batch-pizza row stays locked until that transaction commits or rolls
    back.

    Returns:
        Quantity left after this allocation

    Raises:
        InsufficientStock: pizza not in the batch, or not enough left
    """
    batch_pizza = await get_batch_pizza(db, batch_id, pizza_id, for_update=True)
    if batch_pizza is None:
        raise InsufficientStock(available=0, requested=quantity)

    ordered = await get_ordered_quantity(db, batch_id, pizza_id)
    available = max(0, batch_pizza.max_quantity - ordered)

    if available < quantity:
        logger.info(
            f"Allocation refused: batch={batch_id} pizza={pizza_id} "
            f"requested={quantity} available={available}"
        )
        raise InsufficientStock(available=available, requested=quantity)

    return available - quantity


async def get_daily_ordered_quantity(db: AsyncSession, day: date) -> int:
    """Pies ordered for a date across all orders, cancelled ones excluded."""
    result = await db.execute(_active_orders(Order.date == day))
    return int(result.scalar() or 0)


async def allocate_daily(
    db: AsyncSession,
    day: date,
    quantity: int,
    max_pies_per_day: int,
) -> int:
    """
    Check the daily pie limit for an order placed without a batch.

    The caller is expected to hold the settings row lock.

    Raises:
        DailyLimitReached: the new order would push the day over the limit
    """
    ordered = await get_daily_ordered_quantity(db, day)
    if ordered + quantity > max_pies_per_day:
        raise DailyLimitReached(ordered=ordered, limit=max_pies_per_day)
    return max_pies_per_day - ordered - quantity


async def resolve_active_batch(
    db: AsyncSession,
    today: Optional[date] = None,
) -> Optional[Batch]:
    """
    The batch customers are currently ordering from.

    Today's batch if there is one, else the earliest upcoming batch.
    """
    today = today or utc_today()

    result = await db.execute(
        select(Batch)
        .where(Batch.service_date >= today)
        .order_by(Batch.service_date, Batch.batch_number)
        .limit(1)
    )
    return result.scalar_one_or_none()
