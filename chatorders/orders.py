"""
Order upsert engine.

Applies an item list to a client's pending order (or creates one) under one of
three policies:

* ``replace``: the order ends up with exactly the given lines;
* ``merge``:   mentioned products get stored quantity + incoming quantity;
* ``set``:     mentioned products get the incoming quantity.

Under merge/set, lines of products not mentioned are left untouched. Unit
prices are resolved against active promotions at write time and the order
total is always recomputed from the stored lines.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud
from .errors import AlreadyReservedError, DataIntegrityError, InsufficientStockError, InvalidTransitionError
from .inventory import check_availability, needs_by_product, reserve_stock
from .models import Order, OrderItem, Product, ORDER_STATUSES, PAYMENT_STATUSES
from .promotions import resolve_price

logger = logging.getLogger(__name__)

UPSERT_MODES = ("replace", "merge", "set")

ALLOWED_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("cancelled",),
    "cancelled": (),
}


@dataclass
class LineRequest:
    product_id: int
    quantity: int


@dataclass
class CustomerSnapshot:
    name: str
    address: Optional[str] = None
    dni: Optional[str] = None


def _unconfirmed_values() -> Dict:
    # any edit invalidates a previous confirmation / reservation / payment
    return {
        "customer_confirmed": False,
        "customer_confirmed_at": None,
        "inventory_deducted": False,
        "inventory_deducted_at": None,
        "payment_status": "unpaid",
        "paid_amount": 0,
    }


def _collapse(items: Iterable[LineRequest]) -> Dict[int, int]:
    incoming: Dict[int, int] = {}
    for it in items:
        pid = int(it.product_id)
        incoming[pid] = incoming.get(pid, 0) + int(it.quantity)
    return incoming


async def recompute_total(db: AsyncSession, order_id: int) -> Decimal:
    """Sum quantity * unit_price over the order's stored lines and persist it (no commit)."""
    r = await db.execute(
        select(OrderItem.quantity, OrderItem.unit_price).where(OrderItem.order_id == order_id)
    )
    total = sum((Decimal(q) * Decimal(str(p)) for q, p in r.all()), Decimal(0))
    await db.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(total_amount=total)
        .execution_options(synchronize_session=False)
    )
    return total


async def _stored_quantities(db: AsyncSession, order_id: int, product_ids: List[int]) -> Dict[int, int]:
    r = await db.execute(
        select(OrderItem.product_id, func.sum(OrderItem.quantity))
        .where(OrderItem.order_id == order_id, OrderItem.product_id.in_(product_ids))
        .group_by(OrderItem.product_id)
    )
    return {pid: int(qty or 0) for pid, qty in r.all()}


async def upsert_order(
    db: AsyncSession,
    merchant_id: int,
    client_id: int,
    items: List[LineRequest],
    mode: Optional[str] = None,
    existing_order_id: Optional[int] = None,
    status: str = "pending",
    customer: Optional[CustomerSnapshot] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Create or edit a pending order and return it re-read with items and products.

    Raises DataIntegrityError, before writing anything, when a product does not
    belong to the merchant or the target order does not exist. A reserved
    order must be restocked by the caller first: this call clears the
    reservation flags unconditionally.
    """
    incoming = _collapse(items)
    effective_mode = mode or ("set" if existing_order_id else "replace")
    if effective_mode not in UPSERT_MODES:
        raise ValueError(f"unknown upsert mode: {effective_mode}")
    if status not in ORDER_STATUSES:
        raise ValueError(f"unknown order status: {status}")

    products: Dict[int, Product] = await crud.get_products_by_ids(db, merchant_id, list(incoming.keys()))
    missing = [pid for pid in incoming if pid not in products]
    if missing:
        raise DataIntegrityError(f"products {missing} not found for merchant {merchant_id}")
    promotions = await crud.get_active_promotions(db, merchant_id, now)

    logger.info(
        "[UPSERT] merchant=%s client=%s order=%s mode=%s items=%s",
        merchant_id, client_id, existing_order_id, effective_mode, incoming,
    )

    try:
        if existing_order_id:
            r = await db.execute(
                select(Order.id)
                .where(Order.id == existing_order_id, Order.merchant_id == merchant_id)
                .with_for_update()
            )
            order_id = r.scalar_one_or_none()
            if order_id is None:
                raise DataIntegrityError(f"order {existing_order_id} not found for merchant {merchant_id}")

            if effective_mode == "replace":
                final = dict(incoming)
                await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            else:
                prev = await _stored_quantities(db, order_id, list(incoming.keys()))
                final = {
                    pid: (prev.get(pid, 0) + qty if effective_mode == "merge" else qty)
                    for pid, qty in incoming.items()
                }
                await db.execute(
                    delete(OrderItem).where(
                        OrderItem.order_id == order_id,
                        OrderItem.product_id.in_(list(incoming.keys())),
                    )
                )

            values = {"status": status, **_unconfirmed_values()}
            if customer is not None:
                values.update(
                    customer_name=customer.name,
                    customer_address=customer.address,
                    customer_dni=customer.dni,
                )
            await db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        else:
            final = dict(incoming)
            customer = customer or CustomerSnapshot(name=crud.DEFAULT_CLIENT_NAME)
            order = Order(
                merchant_id=merchant_id,
                client_id=client_id,
                sequence_number=await crud.next_sequence_number(db, merchant_id),
                status=status,
                total_amount=0,
                customer_name=customer.name,
                customer_address=customer.address,
                customer_dni=customer.dni,
                **_unconfirmed_values(),
            )
            db.add(order)
            await db.flush()
            order_id = order.id

        for pid, qty in final.items():
            if qty <= 0:
                continue
            price = resolve_price(products[pid], promotions)
            db.add(OrderItem(
                order_id=order_id,
                product_id=pid,
                quantity=qty,
                unit_price=price.unit_price,
                promotion_id=price.promotion_id,
            ))
        await db.flush()

        total = await recompute_total(db, order_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("[UPSERT] order=%s total=%s", order_id, total)
    return await crud.get_order(db, merchant_id, order_id)


async def apply_line_quantities(
    db: AsyncSession,
    merchant_id: int,
    order_id: int,
    quantities: Dict[int, int],
) -> Order:
    """Set the quantity of existing lines (<= 0 deletes the line) and recompute the
    total, in one transaction. Unit prices are kept."""
    try:
        for pid, qty in quantities.items():
            if qty <= 0:
                await db.execute(
                    delete(OrderItem).where(OrderItem.order_id == order_id, OrderItem.product_id == pid)
                )
            else:
                await db.execute(
                    update(OrderItem)
                    .where(OrderItem.order_id == order_id, OrderItem.product_id == pid)
                    .values(quantity=qty)
                    .execution_options(synchronize_session=False)
                )
        await recompute_total(db, order_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return await crud.get_order(db, merchant_id, order_id)


async def restock_order(db: AsyncSession, merchant_id: int, order: Order, status: Optional[str] = None) -> bool:
    """Undo a reservation: give each product back its reserved quantity and clear the
    reservation/confirmation flags. No-op (returns False) when the order is not
    marked as deducted.

    `status`, when given, is written in the same transaction as the stock return.
    """
    if order is None or not order.inventory_deducted:
        return False
    try:
        # claim the flag first so a concurrent restock of the same order cannot double-increment
        r = await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.merchant_id == merchant_id, Order.inventory_deducted.is_(True))
            .values(
                inventory_deducted=False,
                inventory_deducted_at=None,
                customer_confirmed=False,
                customer_confirmed_at=None,
                **({"status": status} if status else {}),
            )
            .execution_options(synchronize_session=False)
        )
        if r.rowcount != 1:
            await db.rollback()
            return False

        stored = await crud.get_order(db, merchant_id, order.id)
        for pid, qty in needs_by_product(stored).items():
            await db.execute(
                update(Product)
                .where(Product.id == pid, Product.merchant_id == merchant_id)
                .values(quantity=Product.quantity + qty)
                .execution_options(synchronize_session=False)
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("[RESTOCK] order=%s stock returned", order.id)
    return True


def derive_payment_status(paid_amount: Decimal, total: Decimal) -> str:
    if paid_amount <= 0:
        return "unpaid"
    if paid_amount >= total:
        return "paid"
    return "partial"


async def update_order_status(
    db: AsyncSession,
    merchant_id: int,
    order_id: int,
    status: Optional[str] = None,
    paid_amount: Optional[Decimal] = None,
    payment_status: Optional[str] = None,
) -> Order:
    """Merchant-side transition of an order.

    ``cancelled`` returns reserved stock; ``confirmed`` reserves stock first when
    that has not happened yet (InsufficientStockError / StockRaceError on failure).
    ``cancelled`` is terminal and ``confirmed`` can only become ``cancelled``;
    other changes raise InvalidTransitionError. Re-sending the current status is a no-op.
    """
    order = await crud.get_order(db, merchant_id, order_id)
    if order is None:
        raise DataIntegrityError(f"order {order_id} not found for merchant {merchant_id}")
    if status is not None and status not in ORDER_STATUSES:
        raise ValueError(f"unknown order status: {status}")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise ValueError(f"unknown payment status: {payment_status}")

    current_status = order.status
    total = Decimal(str(order.total_amount or 0))
    if status is not None and status != current_status and status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status, status)

    if status == "cancelled" and current_status != "cancelled":
        await restock_order(db, merchant_id, order, status="cancelled")
    elif status == "confirmed" and not order.inventory_deducted:
        needs = needs_by_product(order)
        shortages = await check_availability(db, merchant_id, needs)
        if shortages:
            raise InsufficientStockError(shortages)
        try:
            await reserve_stock(db, merchant_id, order_id, needs)
        except AlreadyReservedError:
            # a concurrent message reserved or closed the order first
            fresh = await crud.get_order(db, merchant_id, order_id)
            if fresh.status != "pending" or not fresh.inventory_deducted:
                raise InvalidTransitionError(fresh.status, status)
            logger.info("[ORDER] order=%s was reserved concurrently", order_id)

    values: Dict = {}
    if status is not None:
        values["status"] = status
    if paid_amount is not None:
        paid = max(Decimal(0), Decimal(str(paid_amount)))
        values["paid_amount"] = paid
        if payment_status is None:
            values["payment_status"] = derive_payment_status(paid, total)
    if payment_status is not None:
        values["payment_status"] = payment_status

    if values:
        try:
            await db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    logger.info("[ORDER] order=%s updated %s", order_id, values)
    return await crud.get_order(db, merchant_id, order_id)
