import asyncio
from datetime import timedelta

import pytest

from conftest import next_weekday, order_payload


# =============================================================================
# BATCH ORDERS
# =============================================================================

async def test_create_batch_order(client, make_pizza, make_batch, queued):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})

    response = await client.post("/api/orders", json=order_payload(pizza, batch, quantity=2))

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "confirmed"
    assert data["batch_id"] == batch.id
    assert data["quantity"] == 2
    assert data["next_status"] == "cooking"
    assert data["next_action"] == "Start Cooking"
    assert data["can_cancel"] is True

    assert len(queued["confirmation"].calls) == 1
    assert len(queued["export"].calls) == 1
    (confirmation,) = queued["confirmation"].calls[0]
    assert confirmation["pizza_name"] == "Truffle Shuffle"
    (export,) = queued["export"].calls[0]
    assert export["batch_number"] == 1

    availability = await client.get(f"/api/batches/{batch.id}/availability/{pizza.id}")
    assert availability.json() == {"available": 4}


async def test_batch_sells_out(client, make_pizza, make_batch, queued):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 3})

    first = await client.post("/api/orders", json=order_payload(pizza, batch, quantity=2))
    assert first.status_code == 201

    second = await client.post("/api/orders", json=order_payload(pizza, batch, quantity=2))
    assert second.status_code == 400
    assert second.json()["detail"] == "Sorry! Only 1 pizza available for this batch."

    third = await client.post("/api/orders", json=order_payload(pizza, batch, quantity=1))
    assert third.status_code == 201

    last = await client.post("/api/orders", json=order_payload(pizza, batch, quantity=1))
    assert last.status_code == 400
    assert last.json()["detail"] == "Sorry! Only 0 pizzas available for this batch."

    assert len(queued["confirmation"].calls) == 2


async def test_concurrent_orders_never_oversell(client, make_pizza, make_batch, queued):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 2})

    responses = await asyncio.gather(*[
        client.post("/api/orders", json=order_payload(pizza, batch, customer_name=f"Racer {n}"))
        for n in range(10)
    ])

    codes = [r.status_code for r in responses]
    assert codes.count(201) == 2
    assert all(400 <= code < 500 for code in codes if code != 201)
    remaining = await client.get(f"/api/batches/{batch.id}/availability/{pizza.id}")
    assert remaining.json() == {"available": 0}
    assert len(queued["confirmation"].calls) == 2


async def test_pizza_not_in_batch(client, make_pizza, make_batch):
    offered = await make_pizza("CrustGPT")
    other = await make_pizza("Papa Crusto")
    batch = await make_batch(caps={offered: 5})

    response = await client.post("/api/orders", json=order_payload(other, batch))

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Sorry! Only 0 pizzas")


async def test_cancelled_order_frees_stock(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 2})

    created = await client.post("/api/orders", json=order_payload(pizza, batch, quantity=2))
    order_id = created.json()["id"]

    await client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"})

    response = await client.post("/api/orders", json=order_payload(pizza, batch, quantity=2))
    assert response.status_code == 201


async def test_batch_date_must_match(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})
    wrong_day = (batch.service_date + timedelta(days=1)).isoformat()

    response = await client.post("/api/orders", json=order_payload(pizza, batch, date=wrong_day))

    assert response.status_code == 400
    assert "service date" in response.json()["detail"]


async def test_batch_time_slot_must_be_in_window(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6}, start=16, end=20)

    response = await client.post("/api/orders", json=order_payload(pizza, batch, time_slot="20:00"))

    assert response.status_code == 400


async def test_unknown_batch(client, make_pizza):
    pizza = await make_pizza()
    payload = order_payload(pizza, batch_id="missing")

    response = await client.post("/api/orders", json=payload)

    assert response.status_code == 404
    assert response.json()["detail"] == "Batch not found"


# =============================================================================
# VALIDATION
# =============================================================================

async def test_unknown_pizza(client):
    payload = {
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "customer_phone": "555-123-4567",
        "pizza_id": "missing",
        "quantity": 1,
        "date": next_weekday({4, 5, 6}).isoformat(),
        "time_slot": "16:00",
    }

    response = await client.post("/api/orders", json=payload)

    assert response.status_code == 404


async def test_inactive_pizza(client, make_pizza, make_batch):
    pizza = await make_pizza(active=False)
    batch = await make_batch(caps={pizza: 6})

    response = await client.post("/api/orders", json=order_payload(pizza, batch))

    assert response.status_code == 400
    assert response.json()["detail"] == "This pizza is not currently available."


@pytest.mark.parametrize(
    "overrides",
    [
        {"quantity": 0},
        {"customer_email": "not-an-email"},
        {"customer_phone": "555-1234"},
        {"time_slot": "16:15"},
        {"type": "drone"},
    ],
)
async def test_invalid_payloads(client, make_pizza, make_batch, overrides):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})

    response = await client.post("/api/orders", json=order_payload(pizza, batch, **overrides))

    assert response.status_code == 422


# =============================================================================
# DAILY LIMIT (NO BATCH)
# =============================================================================

async def test_daily_order_without_batch(client, make_pizza):
    pizza = await make_pizza()

    response = await client.post("/api/orders", json=order_payload(pizza, quantity=3))

    assert response.status_code == 201
    assert response.json()["batch_id"] is None


async def test_daily_limit(client, make_pizza):
    pizza = await make_pizza()

    first = await client.post("/api/orders", json=order_payload(pizza, quantity=10))
    assert first.status_code == 201

    second = await client.post("/api/orders", json=order_payload(pizza, quantity=6))
    assert second.status_code == 400
    assert second.json()["detail"] == "Sorry! We just sold out for that date while you were ordering."


async def test_not_a_service_day(client, make_pizza):
    pizza = await make_pizza()
    monday = next_weekday({1})

    response = await client.post("/api/orders", json=order_payload(pizza, date=monday.isoformat()))

    assert response.status_code == 400
    assert response.json()["detail"] == "We are not serving on that day."


async def test_sold_out_flag_blocks_daily_orders(client, make_pizza):
    pizza = await make_pizza(sold_out=True)

    response = await client.post("/api/orders", json=order_payload(pizza))

    assert response.status_code == 400


# =============================================================================
# PENDING REVIEW GATE
# =============================================================================

async def test_pending_review_blocks_new_order(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 10})

    first = await client.post("/api/orders", json=order_payload(pizza, batch, user_id="user-1"))
    order_id = first.json()["id"]
    await client.patch(f"/api/orders/{order_id}/status", json={"status": "delivered"})

    blocked = await client.post("/api/orders", json=order_payload(pizza, batch, user_id="user-1"))
    assert blocked.status_code == 400
    assert blocked.json()["detail"].startswith("Please review your previous order")

    anonymous = await client.post("/api/orders", json=order_payload(pizza, batch))
    assert anonymous.status_code == 201

    await client.post("/api/reviews", json={"order_id": order_id, "overall_rating": "Awesome"})

    unblocked = await client.post("/api/orders", json=order_payload(pizza, batch, user_id="user-1"))
    assert unblocked.status_code == 201


# =============================================================================
# STATUS & LISTING
# =============================================================================

async def test_status_update_sends_sms(client, make_pizza, make_batch, queued):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})
    created = await client.post("/api/orders", json=order_payload(pizza, batch))
    order_id = created.json()["id"]

    response = await client.patch(f"/api/orders/{order_id}/status", json={"status": "cooking"})

    assert response.status_code == 200
    assert response.json()["status"] == "cooking"
    assert response.json()["next_status"] == "ready"
    assert queued["sms"].calls == [("555-123-4567", "Your order is in the oven.")]


async def test_status_update_without_message(client, make_pizza, make_batch, queued):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})
    created = await client.post("/api/orders", json=order_payload(pizza, batch))

    response = await client.patch(f"/api/orders/{created.json()['id']}/status", json={"status": "completed"})

    assert response.status_code == 200
    assert response.json()["can_cancel"] is False
    assert queued["sms"].calls == []


@pytest.mark.parametrize("body", [{"status": "baking"}, {"status": None}, {}])
async def test_invalid_status(client, make_pizza, make_batch, body):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})
    created = await client.post("/api/orders", json=order_payload(pizza, batch))

    response = await client.patch(f"/api/orders/{created.json()['id']}/status", json=body)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid status"


async def test_status_update_unknown_order(client):
    response = await client.patch("/api/orders/missing/status", json={"status": "ready"})

    assert response.status_code == 404


async def test_queue_failure_does_not_fail_update(client, make_pizza, make_batch, monkeypatch):
    from crustops import main

    class BrokenTask:
        def delay(self, *args):
            raise ConnectionError("broker down")

    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})
    created = await client.post("/api/orders", json=order_payload(pizza, batch))
    monkeypatch.setattr(main, "send_sms_notification", BrokenTask())

    response = await client.patch(f"/api/orders/{created.json()['id']}/status", json={"status": "ready"})

    assert response.status_code == 200


async def test_list_and_filter_orders(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 10})
    await client.post("/api/orders", json=order_payload(pizza, batch, user_id="user-1"))
    await client.post("/api/orders", json=order_payload(pizza, batch, user_id="user-2"))
    await client.post("/api/orders", json=order_payload(pizza))

    everything = await client.get("/api/orders")
    assert len(everything.json()) == 3

    mine = await client.get("/api/orders", params={"user_id": "user-1"})
    assert [o["user_id"] for o in mine.json()] == ["user-1"]

    in_batch = await client.get("/api/orders", params={"batch_id": batch.id})
    assert len(in_batch.json()) == 2

    confirmed = await client.get("/api/orders", params={"status": "confirmed"})
    assert len(confirmed.json()) == 3

    bad = await client.get("/api/orders", params={"status": "baking"})
    assert bad.status_code == 400


async def test_get_order(client, make_pizza, make_batch):
    pizza = await make_pizza()
    batch = await make_batch(caps={pizza: 6})
    created = await client.post("/api/orders", json=order_payload(pizza, batch))

    response = await client.get(f"/api/orders/{created.json()['id']}")
    assert response.status_code == 200
    assert response.json()["date"] == batch.service_date.isoformat()

    missing = await client.get("/api/orders/missing")
    assert missing.status_code == 404
