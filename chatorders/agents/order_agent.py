import logging
import re
from typing import List, Optional, Tuple

from chatorders import crud, replies
from chatorders.actions import UpsertOrderAction, post_process
from chatorders.agents.base import Node, NodeResult, TurnContext
from chatorders.inventory import shortages_for_order
from chatorders.matching import match_product, suggest_products
from chatorders.orders import CustomerSnapshot, LineRequest, restock_order, upsert_order

logger = logging.getLogger(__name__)

ADD_RE = re.compile(r"\b(sum(ar|ame|a)|agreg(ar|ame|a|alas)|anad(ir|ime|i)|mas)\b")
EDIT_RE = re.compile(r"\b(editar|cambiar|modificar|ajustar|actualizar)\b")


def choose_mode(action: UpsertOrderAction, raw_text: str, norm: str) -> Optional[str]:
    """merge when the customer is adding ("sumar 1 coca", "+2 sprite"); otherwise the
    action's mode, falling back to the engine default (set on edit, replace on create)."""
    if action.mode == "merge" or ADD_RE.search(norm) or "+" in (raw_text or ""):
        return "merge"
    return action.mode


def customer_snapshot(ctx: TurnContext) -> CustomerSnapshot:
    # the action's clientInfo was already validated into the client row
    client = ctx.client
    return CustomerSnapshot(
        name=client.full_name or crud.DEFAULT_CLIENT_NAME,
        address=client.address,
        dni=client.dni,
    )


class OrderAgentNode(Node):
    """Turns an upsert_order action into an order mutation and the review reply."""

    def __init__(self, id: str = "order_agent"):
        super().__init__(id)

    def applies(self, ctx: TurnContext) -> bool:
        return isinstance(ctx.memory.get("action"), UpsertOrderAction)

    async def run(self, ctx: TurnContext) -> NodeResult:
        action: UpsertOrderAction = ctx.memory["action"]
        db, merchant_id = ctx.db, ctx.merchant.id

        pending = await crud.list_pending_orders(db, merchant_id, ctx.client.id)
        if EDIT_RE.search(ctx.norm) and not action.items and pending:
            return NodeResult(replies.pending_orders_list(pending))

        processed = post_process(action, ctx.text)
        if processed.reply:
            return NodeResult(processed.reply)

        lines: List[LineRequest] = []
        described: List[Tuple[str, int]] = []
        missing: List[str] = []
        for item in processed.items:
            match = match_product(item.normalized_name or item.name, ctx.catalog)
            if not match.matched:
                missing.append(item.name)
                continue
            lines.append(LineRequest(product_id=match.product.id, quantity=item.quantity))
            described.append((match.product.name, item.quantity))

        # nothing is stored until every item maps to the catalog
        if missing:
            suggestions = []
            for miss in missing:
                names = suggest_products(miss, ctx.catalog)
                if names:
                    suggestions.append(f"{miss}: {', '.join(names)}")
            logger.info("[ORDER] unrecognised items %s for merchant=%s", missing, merchant_id)
            return NodeResult(replies.unrecognised(missing, suggestions))

        target = pending[0] if pending else None
        target_id = target.id if target is not None else None
        if target is not None and target.inventory_deducted:
            await restock_order(db, merchant_id, target)

        mode = choose_mode(action, ctx.text, ctx.norm)
        order = await upsert_order(
            db,
            merchant_id,
            ctx.client.id,
            lines,
            mode=mode,
            existing_order_id=target_id,
            customer=customer_snapshot(ctx),
            now=ctx.now,
        )
        if not order.items:
            return NodeResult(replies.NOTHING_LEFT, {"order_id": order.id})

        effective_mode = mode or ("set" if target_id else "replace")
        reply = replies.order_review(
            order,
            edited=target_id is not None,
            changes=replies.changes_text(effective_mode, described),
            shortages=shortages_for_order(order),
        )
        return NodeResult(reply, {"order_id": order.id})
