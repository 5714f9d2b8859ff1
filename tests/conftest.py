# tests/conftest.py
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from chatorders import crud
from chatorders.db import init_models, make_sessionmaker
from chatorders.models import Client, Merchant, Product, Promotion


class FakeTransport:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_text(self, to, text):
        if self.fail:
            raise RuntimeError("provider down")
        self.sent.append((to, text))
        return f"msg-{len(self.sent)}"


class ScriptedProvider:
    """Returns the queued actions in order and remembers what it was asked."""

    def __init__(self, *actions):
        self.actions = list(actions)
        self.calls = []

    async def propose(self, text, merchant_id, client, pending_orders):
        self.calls.append({"text": text, "client_id": client.id, "pending": [o.id for o in pending_orders]})
        action = self.actions.pop(0)
        if isinstance(action, Exception):
            raise action
        return action


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return make_sessionmaker(engine)


@pytest.fixture
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session


@pytest.fixture
async def shop(db):
    """A merchant with a small catalog and one client with a complete profile.

    Only plain ids are exposed: ORM instances expire after a rollback.
    """
    merchant = Merchant(name="Almacén de prueba")
    db.add(merchant)
    await db.flush()

    products = {
        "coca": Product(merchant_id=merchant.id, name="Coca Cola 1.5L", price=2000, quantity=10, categories=["gaseosas"]),
        "sprite": Product(merchant_id=merchant.id, name="Sprite 1.5L", price=1800, quantity=10, categories=["gaseosas"]),
        "yerba": Product(merchant_id=merchant.id, name="Yerba Playadito 1kg", price=5000, quantity=1, categories=["almacen"]),
        "oreo": Product(merchant_id=merchant.id, name="Galletitas Oreo", price=1200, quantity=20, categories=["galletitas"]),
    }
    db.add_all(products.values())
    client = Client(
        merchant_id=merchant.id,
        phone="5491100000001",
        full_name="Ana Gómez",
        dni="30111222",
        address="Calle Falsa 123",
    )
    db.add(client)
    await db.commit()

    return SimpleNamespace(
        merchant_id=merchant.id,
        client_id=client.id,
        phone=client.phone,
        **{f"{k}_id": p.id for k, p in products.items()},
    )


@pytest.fixture
async def second_client(db, shop):
    client = Client(
        merchant_id=shop.merchant_id,
        phone="5491100000002",
        full_name="Beto Ruiz",
        dni="28999888",
        address="Av. Siempreviva 742",
    )
    db.add(client)
    await db.commit()
    return SimpleNamespace(client_id=client.id, phone=client.phone)


@pytest.fixture
async def gaseosas_promo(db, shop):
    promo = Promotion(
        merchant_id=shop.merchant_id,
        title="10% en gaseosas",
        is_active=True,
        start_date=datetime(2020, 1, 1),
        discount_type="percent",
        discount_value=10,
        product_ids=[],
        product_tag_labels=["Gaseosas"],
    )
    db.add(promo)
    await db.commit()
    return promo.id


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def stock(db, shop):
    async def _stock(product_id):
        products = await crud.get_products_by_ids(db, shop.merchant_id, [product_id])
        return products[product_id].quantity
    return _stock


@pytest.fixture
def scripted():
    return ScriptedProvider
