"""
Inventory reservation protocol.

Stock is the only resource shared across clients. It is changed exclusively
through conditional UPDATEs whose predicate carries the precondition
(``quantity >= need``); the affected-row count is the race signal. A
reservation touches every product of the order inside one transaction and is
all-or-nothing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud
from .errors import AlreadyReservedError, StockRaceError
from .models import Order, Product

logger = logging.getLogger(__name__)


@dataclass
class Shortage:
    product_id: int
    name: str
    have: int
    need: int

    @property
    def missing(self) -> int:
        return self.need - self.have


def needs_by_product(order: Order) -> Dict[int, int]:
    needs: Dict[int, int] = {}
    for it in order.items or []:
        needs[it.product_id] = needs.get(it.product_id, 0) + int(it.quantity)
    return needs


def shortages_for_order(order: Order) -> List[Shortage]:
    """Shortfalls of a freshly loaded order (items with products) against current stock."""
    names: Dict[int, str] = {}
    have: Dict[int, int] = {}
    for it in order.items or []:
        names[it.product_id] = it.product.name if it.product else "Producto"
        have[it.product_id] = int(it.product.quantity or 0) if it.product else 0
    return [
        Shortage(product_id=pid, name=names[pid], have=have[pid], need=need)
        for pid, need in needs_by_product(order).items()
        if have[pid] < need
    ]


async def check_availability(db: AsyncSession, merchant_id: int, needs: Dict[int, int]) -> List[Shortage]:
    """Pre-check: current stock of every needed product, reported per product.

    A product that no longer exists for the merchant counts as zero stock.
    """
    products = await crud.get_products_by_ids(db, merchant_id, list(needs.keys()))
    shortages = []
    for pid, need in needs.items():
        p = products.get(pid)
        have = int(p.quantity or 0) if p else 0
        if p is None or have < need:
            shortages.append(Shortage(product_id=pid, name=p.name if p else "Producto", have=have, need=need))
    return shortages


async def reserve_stock(
    db: AsyncSession,
    merchant_id: int,
    order_id: int,
    needs: Dict[int, int],
    now: Optional[datetime] = None,
) -> None:
    """Atomically decrement stock for every product in `needs` and mark the order
    as reserved and customer-confirmed.

    The order flag is claimed first with a conditional update: a pending order
    that is not reserved yet. AlreadyReservedError when that claim fails.
    Raises StockRaceError (after rolling back every decrement and the claim)
    when any stock update does not affect exactly one row.
    """
    now = now or datetime.now()
    logger.info("[RESERVE] order=%s needs=%s", order_id, needs)
    try:
        claim = await db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.merchant_id == merchant_id,
                Order.status == "pending",
                Order.inventory_deducted.is_(False),
            )
            .values(
                customer_confirmed=True,
                customer_confirmed_at=now,
                inventory_deducted=True,
                inventory_deducted_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount != 1:
            raise AlreadyReservedError(order_id)

        for pid, need in needs.items():
            stmt = (
                update(Product)
                .where(
                    Product.id == pid,
                    Product.merchant_id == merchant_id,
                    Product.quantity >= need,
                )
                .values(quantity=Product.quantity - need)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            if result.rowcount != 1:
                raise StockRaceError(pid, need)

        await db.commit()
    except AlreadyReservedError:
        await db.rollback()
        logger.warning("[RESERVE] order=%s already reserved or not pending", order_id)
        raise
    except StockRaceError as e:
        await db.rollback()
        logger.warning("[RESERVE] stock race on product=%s need=%s, reservation aborted", e.product_id, e.need)
        raise
    except Exception:
        await db.rollback()
        logger.exception("[RESERVE] reservation failed for order=%s", order_id)
        raise
    logger.info("[RESERVE] order=%s reserved", order_id)
