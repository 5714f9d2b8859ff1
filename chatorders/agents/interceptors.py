"""
Deterministic intent interceptors.

Short, unambiguous customer messages (cancel, remove an item, accept a stock
shortage, confirm) are handled by rules before the language service is
consulted. The chain runs in a fixed order; the first node that produces a
reply ends the turn. A node that returns an empty NodeResult passes the turn
on, possibly after leaving state in the context for the next node.
"""
import logging
import re
from typing import Optional, Sequence

from chatorders import crud, replies
from chatorders.agents.base import Node, NodeResult, TurnContext
from chatorders.errors import AlreadyReservedError, StockRaceError
from chatorders.inventory import check_availability, needs_by_product, reserve_stock, shortages_for_order
from chatorders.matching import match_product
from chatorders.orders import apply_line_quantities, restock_order, update_order_status
from chatorders.text import WORD_NUMBERS, parse_quantity

logger = logging.getLogger(__name__)

CANCEL_RE = re.compile(r"\b(cancel\w*|anul\w*)\b|\bno quiero (mas )?nada\b")
REMOVE_RE = re.compile(
    r"\b(quita|quitame|quitar|saca|sacame|sacar|elimina|eliminame|eliminar|borra|borrame|borrar|sin)\b"
)
MODIFY_RE = re.compile(
    r"\b(sum(ar|ame|a)?|agreg(ar|ame|a|alas)?|anad(ir|ime|i)?|quit(ar|ame|a)?|sac(ar|ame|a)?"
    r"|borr(ar|ame|a)|elimin(ar|ame|a)?|sin|cambi(ar|ame|a)?|reemplaz(ar|ame|a)?)\b"
)
CONFIRM_RE = re.compile(r"\bconfirm")
ALL_RE = re.compile(r"\b(todas?|todos?)\b")

YES_WORDS = frozenset([
    "ok", "oka", "okey", "okay", "dale", "listo", "si", "s", "genial", "perfecto",
    "buenisimo", "barbaro", "joya", "de una", "deuna", "mandale", "esta bien",
    "ta bien", "todo bien", "asi esta bien", "asi esta ok",
])
ACCEPT_SHORTAGE_WORDS = frozenset([
    "ok", "oka", "okey", "dale", "listo", "bueno", "esta bien", "ta bien", "perfecto",
])

_REMOVE_VERB = re.compile(
    r"^(por favor )?(quitame|quitar|quita|sacame|sacar|saca|eliminame|eliminar|elimina"
    r"|borrame|borrar|borra|sin) "
)
_REMOVE_FILLER = re.compile(r"\b(por favor|de mi pedido|del pedido)\b")
_REMOVE_ARTICLES = re.compile(
    r"\b(todas|todos|todo|toda|los|las|el|la|" + "|".join(WORD_NUMBERS) + r")\b"
)
_NUMBERS = re.compile(r"\b\d+\b")


def has_modify_intent(norm: str) -> bool:
    return bool(MODIFY_RE.search(norm))


def is_confirm_text(norm: str) -> bool:
    if has_modify_intent(norm):
        return False
    if CONFIRM_RE.search(norm):
        return True
    return norm in YES_WORDS


def removal_candidate(norm: str) -> str:
    candidate = _REMOVE_VERB.sub("", norm)
    candidate = _REMOVE_FILLER.sub(" ", candidate)
    candidate = _REMOVE_ARTICLES.sub(" ", candidate)
    candidate = _NUMBERS.sub(" ", candidate)
    return re.sub(r"\s+", " ", candidate).strip()


class CancelInterceptor(Node):
    def __init__(self, id: str = "cancel"):
        super().__init__(id)

    def applies(self, ctx: TurnContext) -> bool:
        return bool(CANCEL_RE.search(ctx.norm)) and not REMOVE_RE.search(ctx.norm)

    async def run(self, ctx: TurnContext) -> NodeResult:
        order = await crud.find_pending_order(ctx.db, ctx.merchant.id, ctx.client.id)
        if order is None:
            return NodeResult(replies.NO_PENDING_TO_CANCEL)
        # cancelling through the status transition also returns reserved stock
        order = await update_order_status(ctx.db, ctx.merchant.id, order.id, status="cancelled")
        logger.info("[CANCEL] order=%s cancelled by client=%s", order.id, ctx.client.id)
        return NodeResult(replies.cancelled(order), {"order_id": order.id})


class RemoveItemInterceptor(Node):
    def __init__(self, id: str = "remove_item"):
        super().__init__(id)

    def applies(self, ctx: TurnContext) -> bool:
        return bool(REMOVE_RE.search(ctx.norm))

    async def run(self, ctx: TurnContext) -> NodeResult:
        db, merchant_id = ctx.db, ctx.merchant.id
        order = await crud.find_pending_order(db, merchant_id, ctx.client.id)
        if order is None:
            return NodeResult(replies.NO_PENDING_TO_EDIT)

        # any edit invalidates the reservation
        if await restock_order(db, merchant_id, order):
            order = await crud.get_order(db, merchant_id, order.id)

        wants_all = bool(ALL_RE.search(ctx.norm))
        qty = parse_quantity(ctx.text)
        candidate = removal_candidate(ctx.norm)
        if not candidate:
            return NodeResult(replies.remove_what(order))

        in_order = [it.product for it in order.items if it.product is not None]
        match = match_product(candidate, in_order)
        if not match.matched:
            return NodeResult(replies.remove_not_understood(candidate, order))

        product = match.product
        existing = sum(it.quantity for it in order.items if it.product_id == product.id)
        # "quitame coca" without a number removes the whole line
        remove_all = wants_all or qty is None
        remove_qty = existing if remove_all else qty

        updated = await apply_line_quantities(db, merchant_id, order.id, {product.id: existing - remove_qty})
        logger.info("[REMOVE] order=%s product=%s removed=%s", order.id, product.id, remove_qty)
        return NodeResult(replies.removed(updated, product.name, remove_all, remove_qty), {"order_id": order.id})


class AcceptShortageInterceptor(Node):
    def __init__(self, id: str = "accept_shortage"):
        super().__init__(id)

    def applies(self, ctx: TurnContext) -> bool:
        return ctx.norm in ACCEPT_SHORTAGE_WORDS

    async def run(self, ctx: TurnContext) -> NodeResult:
        db, merchant_id = ctx.db, ctx.merchant.id
        order = await crud.find_pending_order(db, merchant_id, ctx.client.id)
        if order is None:
            return NodeResult(replies.NO_PENDING_TO_ACCEPT)
        if order.inventory_deducted:
            # stock already belongs to this order; confirm reports the status
            return NodeResult()

        shortages = shortages_for_order(order)
        if not shortages:
            return NodeResult()

        clamped = {s.product_id: s.have for s in shortages}
        updated = await apply_line_quantities(db, merchant_id, order.id, clamped)
        logger.info("[SHORTAGE] order=%s clamped to stock %s", order.id, clamped)
        if not updated.items:
            return NodeResult(replies.EMPTIED_BY_SHORTAGE, {"order_id": order.id})

        ctx.force_confirm = True
        ctx.adjusted = True
        return NodeResult()


class ConfirmInterceptor(Node):
    def __init__(self, id: str = "confirm"):
        super().__init__(id)

    def applies(self, ctx: TurnContext) -> bool:
        return ctx.force_confirm or is_confirm_text(ctx.norm)

    async def run(self, ctx: TurnContext) -> NodeResult:
        db, merchant_id = ctx.db, ctx.merchant.id
        order = await crud.find_pending_order(db, merchant_id, ctx.client.id)
        if order is None:
            return NodeResult(replies.NO_PENDING_TO_CONFIRM)
        if not order.items:
            return NodeResult(replies.EMPTY_ORDER_TO_CONFIRM)
        if order.inventory_deducted:
            return NodeResult(replies.already_confirmed(order))

        needs = needs_by_product(order)
        shortages = await check_availability(db, merchant_id, needs)
        if shortages:
            return NodeResult(replies.not_enough_stock(shortages))

        order_id = order.id
        try:
            await reserve_stock(db, merchant_id, order_id, needs, now=ctx.now)
        except StockRaceError:
            return NodeResult(replies.STOCK_RACE)
        except AlreadyReservedError:
            # another message reserved or closed the order first
            current = await crud.get_order(db, merchant_id, order_id)
            if current is None or current.status != "pending" or not current.inventory_deducted:
                return NodeResult(replies.NO_PENDING_TO_CONFIRM)
            return NodeResult(replies.already_confirmed(current), {"order_id": order_id})

        confirmed = await crud.get_order(db, merchant_id, order_id)
        return NodeResult(replies.confirmed(confirmed, adjusted=ctx.adjusted), {"order_id": order_id})


DEFAULT_CHAIN = (
    CancelInterceptor(),
    RemoveItemInterceptor(),
    AcceptShortageInterceptor(),
    ConfirmInterceptor(),
)


async def run_chain(ctx: TurnContext, chain: Sequence[Node] = DEFAULT_CHAIN) -> Optional[NodeResult]:
    """Run the interceptors in order; the first handled result wins, None means nobody took the turn."""
    for node in chain:
        if not node.applies(ctx):
            continue
        result = await node.run(ctx)
        if result.handled:
            result.output.setdefault("handled_by", node.id)
            return result
    return None
