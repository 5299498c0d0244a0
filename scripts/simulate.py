"""
Sell-Out Race Simulation

Fires many concurrent pre-orders at one pizza in the active batch and
checks that the batch cap held: accepted quantity never exceeds the cap
and every refusal carries the sold-out message.

Run from project root (API must be up, seed with --batch first):
    python scripts/simulate.py --orders 40
"""

import asyncio
import sys
import os
import random
import time
import argparse
from datetime import datetime
from typing import Any, Optional

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 40

HUNGRY = ["Marta", "Lior", "Kofi", "Ines", "Ravi", "Noor", "Pavel", "Yuki", "Dana", "Tomas"]


def order_payload(batch: dict[str, Any], pizza_id: str, slots: list[str], order_num: int) -> dict[str, Any]:
    """A hungry customer asking /api/orders for 1-2 pies from the batch."""
    name = random.choice(HUNGRY)
    return {
        "batch_id": batch["id"],
        "customer_name": f"{name} #{order_num}",
        "customer_email": f"{name.lower()}{order_num}@example.com",
        "customer_phone": f"555-01{order_num:02d}-{random.randint(1000, 9999)}",
        "pizza_id": pizza_id,
        "quantity": random.randint(1, 2),
        "type": random.choice(["pickup", "delivery"]),
        "date": batch["service_date"],
        "time_slot": random.choice(slots),
    }


async def send_order(
    client: httpx.AsyncClient,
    order_num: int,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Place one order and time it."""
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data.get("id"),
                "quantity": payload["quantity"],
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "status_code": response.status_code,
            "error": str(response.json().get("detail", response.text))[:100],
            "quantity": payload["quantity"],
            "time": elapsed,
        }
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "order_num": order_num,
            "success": False,
            "status_code": None,
            "error": str(e)[:100],
            "quantity": payload["quantity"],
            "time": elapsed,
        }


# =============================================================================
# PRE-FLIGHT
# =============================================================================

async def load_target(client: httpx.AsyncClient, pizza_id: Optional[str]) -> Optional[dict[str, Any]]:
    """Find the active batch, the pizza to hammer, its cap and time slots."""
    response = await client.get(f"{API_BASE_URL}/health")
    if response.status_code != 200:
        print(f"   ❌ Health check failed: {response.text}")
        return None
    print(f"   ✅ Status: {response.json().get('status')}")

    response = await client.get(f"{API_BASE_URL}/api/batches/next")
    if response.status_code != 200:
        print("   ❌ No upcoming batch. Run: python scripts/seed.py --batch 1")
        return None
    batch = response.json()

    response = await client.get(f"{API_BASE_URL}/api/batches/{batch['id']}/pizzas")
    offered = response.json()
    if not offered:
        print(f"   ❌ Batch #{batch['batch_number']} has no pizzas")
        return None

    if pizza_id:
        matches = [bp for bp in offered if bp["pizza_id"] == pizza_id]
        if not matches:
            print(f"   ❌ Pizza {pizza_id} is not in batch #{batch['batch_number']}")
            return None
        target = matches[0]
    else:
        target = max(offered, key=lambda bp: bp["available"])

    response = await client.get(f"{API_BASE_URL}/api/batches/{batch['id']}/time-slots")
    slots = response.json()["time_slots"]

    print(f"   🍕 Batch #{batch['batch_number']} on {batch['service_date']}")
    print(f"   🎯 {target['pizza']['name']}: cap {target['max_quantity']}, {target['available']} left")
    return {"batch": batch, "batch_pizza": target, "slots": slots}


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, pizza_id: Optional[str] = None) -> bool:
    """
    Race ``num_orders`` customers for the same pizza.

    Returns:
        True when the cap held
    """
    print("=" * 70)
    print("🔥 SELL-OUT RACE - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        print("\n🧪 Pre-flight...")
        target = await load_target(client, pizza_id)
        if target is None:
            return False

        batch = target["batch"]
        batch_pizza = target["batch_pizza"]
        starting_available = batch_pizza["available"]

        print("\n🚀 Firing orders...\n")
        start_time = time.time()
        tasks = [
            send_order(client, i + 1, order_payload(batch, batch_pizza["pizza_id"], target["slots"], i + 1))
            for i in range(num_orders)
        ]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        response = await client.get(
            f"{API_BASE_URL}/api/batches/{batch['id']}/availability/{batch_pizza['pizza_id']}"
        )
        remaining = response.json()["available"]

    successful = [r for r in results if r["success"]]
    sold_out = [r for r in results if r.get("status_code") == 400 and r["error"].startswith("Sorry! Only")]
    other_failures = [r for r in results if not r["success"] and r not in sold_out]
    accepted_quantity = sum(r["quantity"] for r in successful)

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)

    print(f"\n✅ Accepted Orders: {len(successful)}/{num_orders} ({accepted_quantity} pies)")
    print(f"🚫 Sold Out Refusals: {len(sold_out)}")
    print(f"❌ Other Failures: {len(other_failures)}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"\n📈 Average Response: {avg_time}s")

    if other_failures:
        print("\n⚠️  Failure Details (showing first 5):")
        for f in other_failures[:5]:
            print(f"   Order #{f['order_num']} [{f['status_code']}]: {f['error']}")

    cap_held = accepted_quantity <= starting_available and remaining == starting_available - accepted_quantity

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION")
    print("=" * 70)
    print(f"   Available before: {starting_available}")
    print(f"   Accepted:         {accepted_quantity}")
    print(f"   Available after:  {remaining}")
    print(f"   {'✅ Cap held' if cap_held else '❌ OVERSOLD'}")
    print("=" * 70)

    return cap_held


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sell-out race simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of concurrent orders")
    parser.add_argument("--pizza", type=str, default=None, help="Pizza id to target (default: most stock)")
    args = parser.parse_args()

    ok = asyncio.run(run_simulation(num_orders=args.orders, pizza_id=args.pizza))
    sys.exit(0 if ok else 1)
