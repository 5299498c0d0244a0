"""
Shared fixtures.

The environment is set before anything from crustops is imported so the
module-level engine binds to an in-memory SQLite database.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENV_MODE"] = "development"
os.environ.pop("ADMIN_API_KEY", None)

from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest

from crustops import main
from crustops.database import async_session_maker, engine, init_db
from crustops.models import Batch, BatchPizza, Pizza
from crustops.services.availability import utc_today


class RecordingTask:
    """Stands in for a Celery task; records ``.delay`` calls."""

    def __init__(self):
        self.calls = []

    def delay(self, *args):
        self.calls.append(args)


@pytest.fixture(autouse=True)
async def database():
    await init_db()
    yield
    # Disposing drops the single in-memory connection, and the data with it
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def queued(monkeypatch):
    """Captured background work, keyed by task name."""
    tasks = {
        "sms": RecordingTask(),
        "confirmation": RecordingTask(),
        "export": RecordingTask(),
    }
    monkeypatch.setattr(main, "send_sms_notification", tasks["sms"])
    monkeypatch.setattr(main, "send_order_confirmation", tasks["confirmation"])
    monkeypatch.setattr(main, "export_order_to_excel", tasks["export"])
    return tasks


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# =============================================================================
# DATA HELPERS
# =============================================================================

def next_weekday(js_days, start=None) -> date:
    """First date on or after ``start`` whose weekday (0=Sunday) is in ``js_days``."""
    day = start or utc_today()
    while (day.weekday() + 1) % 7 not in js_days:
        day += timedelta(days=1)
    return day


@pytest.fixture
async def make_pizza(db):
    async def _make(name="Truffle Shuffle", price="24.00", **fields):
        pizza = Pizza(
            name=name,
            description=fields.pop("description", f"{name} pie"),
            tags=fields.pop("tags", ["veg"]),
            price=Decimal(price),
            **fields,
        )
        db.add(pizza)
        await db.commit()
        return pizza
    return _make


@pytest.fixture
async def make_batch(db):
    async def _make(batch_number=1, days_ahead=2, caps=None, start=16, end=20):
        batch = Batch(
            batch_number=batch_number,
            service_date=utc_today() + timedelta(days=days_ahead),
            service_start_hour=start,
            service_end_hour=end,
        )
        db.add(batch)
        await db.flush()
        for pizza, max_quantity in (caps or {}).items():
            db.add(BatchPizza(batch_id=batch.id, pizza_id=pizza.id, max_quantity=max_quantity))
        await db.commit()
        return batch
    return _make


def order_payload(pizza, batch=None, quantity=1, **overrides) -> dict:
    payload = {
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "customer_phone": "555-123-4567",
        "pizza_id": pizza.id,
        "quantity": quantity,
        "type": "pickup",
        "date": (batch.service_date if batch else next_weekday({4, 5, 6})).isoformat(),
        "time_slot": "16:30",
    }
    if batch is not None:
        payload["batch_id"] = batch.id
    payload.update(overrides)
    return payload
