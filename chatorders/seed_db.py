# chatorders/seed_db.py
# Demo merchant + catalog: python -m chatorders.seed_db
import asyncio
import json
from datetime import datetime
from pathlib import Path

from chatorders.db import AsyncSessionLocal, engine, init_models
from chatorders.models import Merchant, Product, Promotion

DATA_DIR = Path(__file__).resolve().parent / "data"
CATALOG_FILE = DATA_DIR / "catalog.json"


async def seed(path: Path = CATALOG_FILE) -> int:
    await init_models(engine)

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    async with AsyncSessionLocal() as session:
        merchant = Merchant(**data["merchant"])
        session.add(merchant)
        await session.flush()

        by_name = {}
        for p in data.get("products", []):
            product = Product(
                merchant_id=merchant.id,
                name=p["name"],
                price=p["price"],
                quantity=p.get("quantity", 0),
                categories=p.get("categories") or [],
                description=p.get("description"),
            )
            session.add(product)
            by_name[p["name"]] = product
        await session.flush()

        for promo in data.get("promotions", []):
            session.add(Promotion(
                merchant_id=merchant.id,
                title=promo["title"],
                is_active=True,
                start_date=datetime.now(),
                discount_type=promo["discount_type"],
                discount_value=promo["discount_value"],
                product_ids=[by_name[n].id for n in promo.get("product_names", []) if n in by_name],
                product_tag_labels=promo.get("product_tag_labels") or [],
            ))

        await session.commit()
        merchant_id = merchant.id

    print(f"Seeded merchant {merchant_id} with {len(by_name)} products")
    return merchant_id


if __name__ == "__main__":
    asyncio.run(seed())
