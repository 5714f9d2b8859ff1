# chatorders/crud.py
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, insert, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import Client, Merchant, Message, Order, OrderItem, Product, Promotion

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAME = "Cliente WhatsApp"


def _fresh(stmt):
    # every read reflects storage, never an identity-map snapshot
    return stmt.execution_options(populate_existing=True)


# ---------- merchants / catalog ----------
async def get_merchant(db: AsyncSession, merchant_id: int) -> Optional[Merchant]:
    r = await db.execute(_fresh(select(Merchant).where(Merchant.id == merchant_id)))
    return r.scalar_one_or_none()


async def list_products(db: AsyncSession, merchant_id: int) -> List[Product]:
    q = select(Product).where(Product.merchant_id == merchant_id).order_by(Product.name.asc(), Product.id.asc())
    r = await db.execute(_fresh(q))
    return list(r.scalars().all())


async def get_products_by_ids(db: AsyncSession, merchant_id: int, product_ids: Sequence[int]) -> Dict[int, Product]:
    if not product_ids:
        return {}
    q = select(Product).where(Product.merchant_id == merchant_id, Product.id.in_(list(product_ids)))
    r = await db.execute(_fresh(q))
    return {p.id: p for p in r.scalars().all()}


async def get_active_promotions(db: AsyncSession, merchant_id: int, now: Optional[datetime] = None) -> List[Promotion]:
    now = now or datetime.now()
    q = (
        select(Promotion)
        .where(
            Promotion.merchant_id == merchant_id,
            Promotion.is_active.is_(True),
            Promotion.start_date <= now,
            (Promotion.end_date.is_(None)) | (Promotion.end_date > now),
        )
        .order_by(Promotion.id.asc())
    )
    r = await db.execute(_fresh(q))
    return list(r.scalars().all())


# ---------- clients ----------
async def get_client(db: AsyncSession, merchant_id: int, phone: str) -> Optional[Client]:
    q = select(Client).where(Client.merchant_id == merchant_id, Client.phone == phone)
    r = await db.execute(_fresh(q))
    return r.scalar_one_or_none()


async def ensure_client_for_phone(db: AsyncSession, merchant_id: int, phone: str, name: Optional[str] = None) -> Client:
    existing = await get_client(db, merchant_id, phone)
    if existing:
        return existing
    client = Client(
        merchant_id=merchant_id,
        phone=phone,
        full_name=(name or "").strip() or DEFAULT_CLIENT_NAME,
    )
    db.add(client)
    try:
        await db.commit()
    except IntegrityError:
        # another message from the same phone created it first
        await db.rollback()
        existing = await get_client(db, merchant_id, phone)
        if existing is None:
            raise
        return existing
    logger.info("[CLIENT] created client %s for merchant %s", client.id, merchant_id)
    return client


async def update_client(db: AsyncSession, client: Client, patch: Dict) -> Client:
    if not patch:
        return client
    await db.execute(update(Client).where(Client.id == client.id).values(**patch))
    await db.commit()
    r = await db.execute(_fresh(select(Client).where(Client.id == client.id)))
    return r.scalar_one()


# ---------- orders ----------
def _order_query():
    return select(Order).options(
        selectinload(Order.items).selectinload(OrderItem.product),
    )


async def get_order(db: AsyncSession, merchant_id: int, order_id: int) -> Optional[Order]:
    q = _order_query().where(Order.id == order_id, Order.merchant_id == merchant_id)
    r = await db.execute(_fresh(q))
    return r.scalar_one_or_none()


async def list_pending_orders(db: AsyncSession, merchant_id: int, client_id: int, limit: int = 10) -> List[Order]:
    q = (
        _order_query()
        .where(Order.merchant_id == merchant_id, Order.client_id == client_id, Order.status == "pending")
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
    )
    r = await db.execute(_fresh(q))
    return list(r.scalars().all())


async def find_pending_order(db: AsyncSession, merchant_id: int, client_id: int) -> Optional[Order]:
    """The client's active order: the most recently created pending one."""
    orders = await list_pending_orders(db, merchant_id, client_id, limit=1)
    return orders[0] if orders else None


async def next_sequence_number(db: AsyncSession, merchant_id: int) -> int:
    r = await db.execute(select(func.max(Order.sequence_number)).where(Order.merchant_id == merchant_id))
    last = r.scalar_one_or_none()
    return (last or 0) + 1


# ---------- messages ----------
async def create_message(
    db: AsyncSession,
    merchant_id: int,
    client_id: Optional[int],
    direction: str,
    body: str,
    external_id: Optional[str] = None,
):
    stmt = insert(Message).values(
        merchant_id=merchant_id,
        client_id=client_id,
        direction=direction,
        body=body,
        external_id=external_id,
    )
    await db.execute(stmt)
    await db.commit()


async def get_messages_for_client(db: AsyncSession, merchant_id: int, client_id: int, limit: int = 50) -> List[Message]:
    q = (
        select(Message)
        .where(Message.merchant_id == merchant_id, Message.client_id == client_id)
        .order_by(Message.id.asc())
        .limit(limit)
    )
    r = await db.execute(q)
    return list(r.scalars().all())
