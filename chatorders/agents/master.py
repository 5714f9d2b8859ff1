"""
Per-message pipeline.

    office hours -> profile capture -> interceptors (complete clients only)
    -> language service -> profile fields from the action -> profile gate
    -> action path

Every inbound message gets exactly one reply. Any exception escaping a step
rolls the session back and the customer receives the generic failure text.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from chatorders import crud, replies, schedule
from chatorders.actions import AgentAction, CancelOrderAction, UpsertOrderAction, parse_action
from chatorders.agents.base import NodeResult, TurnContext
from chatorders.agents.interceptors import CancelInterceptor, run_chain
from chatorders.agents.order_agent import OrderAgentNode
from chatorders.errors import DataIntegrityError
from chatorders.messaging import ReplySender, Transport
from chatorders.nlu import ActionProvider
from chatorders.profile import apply_client_info, extract_client_info, is_complete, missing_fields
from chatorders.text import normalize, normalize_phone

logger = logging.getLogger(__name__)

order_agent = OrderAgentNode()
cancel_node = CancelInterceptor()


@dataclass
class TurnResult:
    handled_by: str
    replies: List[str] = field(default_factory=list)
    order_id: Optional[int] = None


async def _resolve_action(
    ctx: TurnContext,
    action: Any,
    action_provider: Optional[ActionProvider],
) -> Optional[AgentAction]:
    if action is not None:
        return parse_action(action)
    if action_provider is None:
        return None
    pending = await crud.list_pending_orders(ctx.db, ctx.merchant.id, ctx.client.id)
    return await action_provider.propose(ctx.text, ctx.merchant.id, ctx.client, pending)


async def _pipeline(
    ctx: TurnContext,
    action: Any,
    action_provider: Optional[ActionProvider],
    profile_captured: bool,
) -> tuple:
    """Returns (handled_by, NodeResult) for the step that produced the reply."""
    closed = schedule.closed_reply(ctx.merchant, ctx.now)
    if closed:
        return "office_hours", NodeResult(closed)

    if is_complete(ctx.client):
        result = await run_chain(ctx)
        if result is not None:
            return result.output["handled_by"], result

    proposed = await _resolve_action(ctx, action, action_provider)
    if proposed is not None:
        ctx.client = await apply_client_info(ctx.db, ctx.client, proposed.client_info)

    missing = missing_fields(ctx.client)
    if missing:
        return "profile_gate", NodeResult(replies.missing_profile(missing))

    if proposed is None:
        # no language service configured: nothing beyond the rules can be understood
        if profile_captured:
            return "profile", NodeResult(replies.PROFILE_SAVED)
        return "clarification", NodeResult(replies.CLARIFY)

    ctx.memory["action"] = proposed
    if isinstance(proposed, UpsertOrderAction):
        return order_agent.id, await order_agent.run(ctx)
    if isinstance(proposed, CancelOrderAction):
        return cancel_node.id, await cancel_node.run(ctx)
    return proposed.type, NodeResult(proposed.reply or replies.CLARIFY)


async def handle_inbound(
    db: AsyncSession,
    merchant_id: int,
    phone: str,
    text: str,
    transport: Transport,
    action_provider: Optional[ActionProvider] = None,
    action: Any = None,
    name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TurnResult:
    """Process one inbound customer message and send exactly one reply.

    `action`, when given, is used instead of asking `action_provider`.
    Raises DataIntegrityError only for an unknown merchant.
    """
    merchant = await crud.get_merchant(db, merchant_id)
    if merchant is None:
        raise DataIntegrityError(f"merchant {merchant_id} not found")

    phone = normalize_phone(phone) or phone
    now = now or datetime.now()
    sender = ReplySender(db, transport, merchant_id, phone)
    turn = TurnResult(handled_by="error")

    try:
        client = await crud.ensure_client_for_phone(db, merchant_id, phone, name=name)
        sender.client_id = client.id
        await crud.create_message(db, merchant_id, client.id, "incoming", text)

        info = extract_client_info(text)
        if info is not None:
            client = await apply_client_info(db, client, info)

        ctx = TurnContext(
            db=db,
            merchant=await crud.get_merchant(db, merchant_id),
            client=client,
            text=text or "",
            norm=normalize(text),
            catalog=await crud.list_products(db, merchant_id),
            sender=sender,
            now=now,
        )
        handled_by, result = await _pipeline(ctx, action, action_provider, profile_captured=info is not None)
        turn.handled_by = handled_by
        turn.order_id = result.output.get("order_id")
        await sender.send(result.reply or replies.CLARIFY)
    except Exception:
        await db.rollback()
        logger.exception("[INBOUND] merchant=%s phone=%s failed", merchant_id, phone)
        turn.handled_by = "error"
        if sender.count == 0:
            await sender.send(replies.GENERIC_FAILURE)

    turn.replies = list(sender.sent)
    logger.info("[INBOUND] merchant=%s phone=%s handled_by=%s", merchant_id, phone, turn.handled_by)
    return turn
