from datetime import timedelta

import openpyxl
import pytest

from conftest import order_payload
from crustops.core.config import get_settings
from crustops.services.availability import utc_today


def batch_body(number=7, days_ahead=3, **overrides):
    body = {
        "batch_number": number,
        "service_date": (utc_today() + timedelta(days=days_ahead)).isoformat(),
        "service_start_hour": 16,
        "service_end_hour": 20,
    }
    body.update(overrides)
    return body


async def test_create_and_get_batch(client):
    created = await client.post("/api/batches", json=batch_body())
    assert created.status_code == 201
    batch_id = created.json()["id"]

    fetched = await client.get(f"/api/batches/{batch_id}")
    assert fetched.status_code == 200
    assert fetched.json()["batch_number"] == 7


async def test_duplicate_batch_number(client):
    await client.post("/api/batches", json=batch_body(number=3))

    response = await client.post("/api/batches", json=batch_body(number=3, days_ahead=10))

    assert response.status_code == 409


async def test_batch_window_must_be_ordered(client):
    response = await client.post("/api/batches", json=batch_body(service_start_hour=20, service_end_hour=18))

    assert response.status_code == 422


async def test_list_batches_by_number(client, make_batch):
    await make_batch(batch_number=5, days_ahead=1)
    await make_batch(batch_number=2, days_ahead=8)

    response = await client.get("/api/batches")

    assert [b["batch_number"] for b in response.json()] == [2, 5]


async def test_next_batch(client, make_batch):
    await make_batch(batch_number=1, days_ahead=-3)
    upcoming = await make_batch(batch_number=2, days_ahead=5)

    response = await client.get("/api/batches/next")

    assert response.status_code == 200
    assert response.json()["id"] == upcoming.id


async def test_no_next_batch(client, make_batch):
    await make_batch(batch_number=1, days_ahead=-3)

    response = await client.get("/api/batches/next")

    assert response.status_code == 404
    assert response.json()["detail"] == "No upcoming batches found"


async def test_update_batch(client, make_batch):
    batch = await make_batch()

    response = await client.patch(f"/api/batches/{batch.id}", json={"service_end_hour": 22})
    assert response.status_code == 200
    assert response.json()["service_end_hour"] == 22

    slots = await client.get(f"/api/batches/{batch.id}/time-slots")
    assert slots.json()["time_slots"][-1] == "21:30"

    bad = await client.patch(f"/api/batches/{batch.id}", json={"service_start_hour": 23})
    assert bad.status_code == 400


async def test_update_batch_number_conflict(client, make_batch):
    await make_batch(batch_number=1)
    second = await make_batch(batch_number=2, days_ahead=9)

    response = await client.patch(f"/api/batches/{second.id}", json={"batch_number": 1})

    assert response.status_code == 409


async def test_delete_batch(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 4})

    response = await client.delete(f"/api/batches/{batch.id}")
    assert response.status_code == 204

    missing = await client.get(f"/api/batches/{batch.id}")
    assert missing.status_code == 404


async def test_delete_batch_with_orders(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 4})
    await client.post("/api/orders", json=order_payload(pizza, batch))

    response = await client.delete(f"/api/batches/{batch.id}")

    assert response.status_code == 409


async def test_time_slots(client, make_batch):
    batch = await make_batch(start=17, end=19)

    response = await client.get(f"/api/batches/{batch.id}/time-slots")

    assert response.json() == {"batch_id": batch.id, "time_slots": ["17:00", "17:30", "18:00", "18:30"]}


# =============================================================================
# BATCH PIZZAS
# =============================================================================

async def test_add_and_list_batch_pizzas(client, make_pizza, make_batch):
    truffle = await make_pizza("Truffle Shuffle")
    batch = await make_batch()

    added = await client.post(f"/api/batches/{batch.id}/pizzas", json={"pizza_id": truffle.id, "max_quantity": 6})
    assert added.status_code == 201
    assert added.json()["max_quantity"] == 6

    await client.post("/api/orders", json=order_payload(truffle, batch, quantity=2))

    listed = await client.get(f"/api/batches/{batch.id}/pizzas")
    (entry,) = listed.json()
    assert entry["pizza"]["name"] == "Truffle Shuffle"
    assert entry["max_quantity"] == 6
    assert entry["available"] == 4


async def test_add_pizza_twice(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})

    response = await client.post(f"/api/batches/{batch.id}/pizzas", json={"pizza_id": pizza.id, "max_quantity": 2})

    assert response.status_code == 409


@pytest.mark.parametrize("target", ["batch", "pizza"])
async def test_add_pizza_unknown_target(client, make_pizza, make_batch, target):
    pizza = await make_pizza()
    batch = await make_batch()
    batch_id = "missing" if target == "batch" else batch.id
    pizza_id = "missing" if target == "pizza" else pizza.id

    response = await client.post(f"/api/batches/{batch_id}/pizzas", json={"pizza_id": pizza_id, "max_quantity": 2})

    assert response.status_code == 404


async def test_raise_cap(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 1})
    await client.post("/api/orders", json=order_payload(pizza, batch))

    response = await client.patch(f"/api/batches/{batch.id}/pizzas/{pizza.id}", json={"max_quantity": 3})
    assert response.status_code == 200

    availability = await client.get(f"/api/batches/{batch.id}/availability/{pizza.id}")
    assert availability.json()["available"] == 2


async def test_remove_batch_pizza(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 5})

    response = await client.delete(f"/api/batches/{batch.id}/pizzas/{pizza.id}")
    assert response.status_code == 204

    again = await client.delete(f"/api/batches/{batch.id}/pizzas/{pizza.id}")
    assert again.status_code == 404

    availability = await client.get(f"/api/batches/{batch.id}/availability/{pizza.id}")
    assert availability.json()["available"] == 0


# =============================================================================
# EXPORT
# =============================================================================

async def test_export_prep_sheet(client, make_pizza, make_batch, monkeypatch, tmp_path):
    monkeypatch.setattr(get_settings(), "data_directory", str(tmp_path))
    truffle = await make_pizza("Truffle Shuffle")
    george = await make_pizza("George Crustanza")
    batch = await make_batch(batch_number=4, caps={truffle: 6, george: 3})

    await client.post("/api/orders", json=order_payload(truffle, batch, quantity=2, time_slot="18:00"))
    await client.post("/api/orders", json=order_payload(george, batch, quantity=1, time_slot="16:30"))

    response = await client.get(f"/api/batches/{batch.id}/export")

    assert response.status_code == 200
    assert (tmp_path / "batch_004_prep.xlsx").exists()

    workbook = openpyxl.load_workbook(tmp_path / "batch_004_prep.xlsx")
    assert workbook.sheetnames == ["orders", "stock"]

    orders = list(workbook["orders"].iter_rows(min_row=2, values_only=True))
    assert [row[0] for row in orders] == ["16:30", "18:00"]

    stock = {row[0]: row[1:] for row in workbook["stock"].iter_rows(min_row=2, values_only=True)}
    assert stock["Truffle Shuffle"] == (6, 2, 4)
    assert stock["George Crustanza"] == (3, 1, 2)


async def test_null_batch_fields_rejected(client, make_batch):
    batch = await make_batch(batch_number=4)

    number = await client.patch(f"/api/batches/{batch.id}", json={"batch_number": None})
    hours = await client.patch(f"/api/batches/{batch.id}", json={"service_end_hour": None})

    assert number.status_code == 422
    assert hours.status_code == 422
    unchanged = await client.get(f"/api/batches/{batch.id}")
    assert unchanged.json()["batch_number"] == 4
