"""
Database Seed Script

Loads the starter menu and the default shop settings.
Optionally opens a batch for the next service day with every pizza capped.
Run from project root: python scripts/seed.py [--reset] [--batch 1 --cap 6]
"""

import asyncio
import sys
import os
import argparse
from datetime import timedelta
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from sqlalchemy import select, func

from crustops.core.config import get_settings
from crustops.database import async_session_maker, init_db, drop_db, engine
from crustops.models import Batch, BatchPizza, Pizza, ShopSettings
from crustops.services.availability import utc_today
from crustops.services.excel_manager import ExcelManager

IMAGE_DIR = "/attached_assets/generated_images"

STARTER_MENU = [
    {
        "name": "Truffle Shuffle",
        "description": "Wild mushrooms, garlic confit, taleggio, mozzarella, white truffle oil, fresh rosemary.",
        "tags": ["veg", "white pie", "rich"],
        "image_url": f"{IMAGE_DIR}/white_pizza_with_truffle_and_mushrooms.png",
        "price": Decimal("24.00"),
    },
    {
        "name": "CrustGPT",
        "description": (
            "Green tangy Pesto, Pecorino Romano, Tomatoes. "
            "Finished with Ricotta Lemon Honey drizzle and arugula greens."
        ),
        "tags": ["veg", "pesto", "fresh"],
        "image_url": f"{IMAGE_DIR}/pesto_pizza_with_ricotta_and_arugula.png",
        "price": Decimal("23.00"),
    },
    {
        "name": "Señor Crustobal",
        "description": (
            "Taco chili oil, mozzarella, corn, yellow onions. Finished with cilantro, "
            "tangy sour cream, chipotle and lime drizzle, pico de gallo and avocado slices."
        ),
        "tags": ["fusion", "spicy", "loaded"],
        "image_url": f"{IMAGE_DIR}/taco_style_pizza_with_corn_and_avocado.png",
        "price": Decimal("25.00"),
    },
    {
        "name": "Papa Crusto",
        "description": (
            "Thin potato slices brushed with taco chili oil, roasted corn, red onions, "
            "sliced cherry tomatoes, mozzarella, cotija. Finished with fresh cilantro, "
            "spicy papi chulo sauce and tangy sour cream drizzle."
        ),
        "tags": ["fusion", "spicy", "veg"],
        "image_url": f"{IMAGE_DIR}/papi_chulo_potato_pizza_with_corn_and_cotija.png",
        "price": Decimal("24.00"),
    },
    {
        "name": "George Crustanza",
        "description": (
            "Tomato sauce, mozzarella, pecorino romano, sliced cherry tomatoes. "
            "Finished with zesty basil and arugula sauce and ricotta drizzle."
        ),
        "tags": ["veg", "classic", "fresh"],
        "image_url": f"{IMAGE_DIR}/george_crustanza_pizza_placeholder.png",
        "price": Decimal("23.00"),
    },
]


def next_service_date(service_days: list[int]):
    """First date from today whose weekday (0=Sunday) is a service day."""
    today = utc_today()
    for offset in range(7):
        day = today + timedelta(days=offset)
        if (day.weekday() + 1) % 7 in service_days:
            return day
    return today


async def seed(reset: bool = False, batch_number: int | None = None, cap: int = 6) -> None:
    settings = get_settings()

    print("=" * 70)
    print("🌱 SEEDING DATABASE")
    print("=" * 70)
    print(f"🎯 Database: {settings.database_url}")

    if reset:
        await drop_db()
        ExcelManager.clear_all()
        print("🗑️  Existing tables and spreadsheets dropped")

    await init_db()

    async with async_session_maker() as db:
        pizza_count = (await db.execute(select(func.count(Pizza.id)))).scalar() or 0
        if pizza_count:
            print(f"⏭️  {pizza_count} pizzas already present, menu skipped")
        else:
            db.add_all(Pizza(**item) for item in STARTER_MENU)
            print(f"✅ {len(STARTER_MENU)} pizzas added")

        shop = await db.get(ShopSettings, 1)
        if shop is None:
            shop = ShopSettings(
                id=1,
                max_pies_per_day=settings.default_max_pies_per_day,
                service_days=settings.default_service_days_list,
                service_start_hour=settings.default_service_start_hour,
                service_end_hour=settings.default_service_end_hour,
            )
            db.add(shop)
            print("✅ Default settings added")

        await db.commit()

        if batch_number is not None:
            existing = await db.execute(select(Batch).where(Batch.batch_number == batch_number))
            if existing.scalar_one_or_none() is not None:
                print(f"⏭️  Batch #{batch_number} already exists")
            else:
                batch = Batch(
                    batch_number=batch_number,
                    service_date=next_service_date(shop.service_days),
                    service_start_hour=shop.service_start_hour,
                    service_end_hour=shop.service_end_hour,
                )
                db.add(batch)
                await db.flush()

                pizzas = (await db.execute(select(Pizza).where(Pizza.active.is_(True)))).scalars().all()
                for pizza in pizzas:
                    db.add(BatchPizza(batch_id=batch.id, pizza_id=pizza.id, max_quantity=cap))
                await db.commit()
                print(
                    f"✅ Batch #{batch_number} on {batch.service_date} "
                    f"({len(pizzas)} pizzas, cap {cap} each) id={batch.id}"
                )

    await engine.dispose()
    print("=" * 70)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the CrustOps database")
    parser.add_argument("--reset", action="store_true", help="Drop all tables first")
    parser.add_argument("--batch", type=int, default=None, help="Also create this batch number")
    parser.add_argument("--cap", type=int, default=6, help="Per-pizza cap for the new batch")
    args = parser.parse_args()

    asyncio.run(seed(reset=args.reset, batch_number=args.batch, cap=args.cap))
