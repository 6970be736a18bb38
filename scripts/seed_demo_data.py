"""
Seed demo customers and orders through the ingestion API, then optionally
save a segment and launch a campaign over it.

Usage:
    python scripts/seed_demo_data.py
    python scripts/seed_demo_data.py --customers 50 --orders 200
    python scripts/seed_demo_data.py --campaign "Festive offer"
"""
import argparse
import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8080"

FIRST_NAMES = ["Aarav", "Diya", "Ishaan", "Kavya", "Rohan", "Sneha", "Vikram", "Ananya", "Arjun", "Meera"]
LAST_NAMES = ["Sharma", "Patel", "Iyer", "Reddy", "Gupta", "Nair", "Singh", "Das"]
CITIES = ["Mumbai", "Delhi", "Bengaluru", "Pune", "Chennai", "Hyderabad", "Kolkata"]
PRODUCTS = [("SKU-101", "Cotton Kurta", 1299.0), ("SKU-202", "Silk Saree", 5499.0),
            ("SKU-303", "Leather Sandals", 1899.0), ("SKU-404", "Smartwatch", 8999.0)]


def build_customer(index: int) -> dict:
    first, last = random.choice(FIRST_NAMES), random.choice(LAST_NAMES)
    registered = datetime.now(timezone.utc) - timedelta(days=random.randint(30, 900))
    return {
        "customer_id": f"DEMO-C{index:04d}",
        "name": f"{first} {last}",
        "email": f"{first.lower()}.{last.lower()}{index}@example.com",
        "phone": f"+9198{random.randint(10000000, 99999999)}",
        "city": random.choice(CITIES),
        "registration_date": registered.isoformat(),
    }


def build_order(index: int, customer_id: str) -> dict:
    items = []
    for sku, name, price in random.sample(PRODUCTS, k=random.randint(1, 3)):
        items.append({"sku": sku, "name": name, "quantity": random.randint(1, 2), "price": price})
    ordered = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 200))
    return {
        "order_id": f"DEMO-O{index:05d}",
        "customer_id": customer_id,
        "amount": round(sum(i["price"] * i["quantity"] for i in items), 2),
        "items": items,
        "order_date": ordered.isoformat(),
        "status": "completed",
    }


async def seed(client: httpx.AsyncClient, customers: int, orders: int) -> list[str]:
    customer_ids = []
    for i in range(customers):
        resp = await client.post(f"{BASE_URL}/api/customers", json=build_customer(i))
        resp.raise_for_status()
        customer_ids.append(f"DEMO-C{i:04d}")
    logger.info("Queued %d customers", customers)

    # Give the customer consumer a head start so most orders find their customer
    await asyncio.sleep(2)

    for i in range(orders):
        resp = await client.post(f"{BASE_URL}/api/orders", json=build_order(i, random.choice(customer_ids)))
        resp.raise_for_status()
    logger.info("Queued %d orders", orders)
    return customer_ids


async def launch_campaign(client: httpx.AsyncClient, name: str, min_spent: float):
    segment = {
        "name": f"Spent over {min_spent:.0f}",
        "description": "Demo segment",
        "rules": [{"id": "r1", "field": "total_spent", "operator": ">", "value": min_spent}],
    }
    resp = await client.post(f"{BASE_URL}/api/segments/preview", json={"rules": segment["rules"]})
    logger.info("Segment preview: %s", resp.json())

    resp = await client.post(f"{BASE_URL}/api/segments", json=segment)
    resp.raise_for_status()
    segment_id = resp.json()["segment_id"]

    resp = await client.post(f"{BASE_URL}/api/campaigns", json={
        "name": name,
        "segment_id": segment_id,
        "message_template": "Hi {{name}}, here is 15% off your next order!",
    })
    logger.info("Campaign response: %s %s", resp.status_code, resp.json())


async def main():
    parser = argparse.ArgumentParser(description="Seed demo customers, orders and a campaign")
    parser.add_argument("--customers", type=int, default=20)
    parser.add_argument("--orders", type=int, default=60)
    parser.add_argument("--campaign", default=None, help="Launch a campaign with this name after seeding")
    parser.add_argument("--min-spent", type=float, default=5000.0)
    args = parser.parse_args()

    async with httpx.AsyncClient(timeout=30) as client:
        await seed(client, args.customers, args.orders)
        if args.campaign:
            # Orders are applied asynchronously; wait for aggregates to settle
            await asyncio.sleep(3)
            await launch_campaign(client, args.campaign, args.min_spent)


if __name__ == "__main__":
    asyncio.run(main())
