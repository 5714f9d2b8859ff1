# chatorders/telegram.py
# Inbound channel: Telegram bot webhook, one per merchant.
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from chatorders.agents.master import handle_inbound
from chatorders.db import AsyncSessionLocal
from chatorders.deps import get_action_provider, get_transport
from chatorders.messaging import Transport
from chatorders.nlu import ActionProvider

logger = logging.getLogger(__name__)
router = APIRouter()


async def process_update(
    merchant_id: int,
    chat_id: str,
    text: str,
    name: Optional[str],
    transport: Transport,
    action_provider: Optional[ActionProvider],
) -> None:
    # runs after the webhook answered, so it owns its session
    async with AsyncSessionLocal() as db:
        try:
            await handle_inbound(
                db, merchant_id, chat_id, text, transport,
                action_provider=action_provider, name=name,
            )
        except Exception:
            logger.exception("[TELEGRAM] update for merchant=%s chat=%s failed", merchant_id, chat_id)


@router.post("/telegram/webhook/{merchant_id}")
async def telegram_webhook(
    merchant_id: int,
    req: Request,
    background: BackgroundTasks,
    transport: Transport = Depends(get_transport),
    action_provider: Optional[ActionProvider] = Depends(get_action_provider),
):
    try:
        body = await req.json()
    except ValueError as e:
        logger.warning("[TELEGRAM] failed to parse webhook JSON: %s", e)
        return JSONResponse(status_code=200, content={"ok": True})

    msg = body.get("message") if isinstance(body, dict) else None
    if not msg:
        # edits, callbacks and other update kinds are acknowledged and ignored
        return {"ok": True}

    text = (msg.get("text") or "").strip()
    if not text:
        return {"ok": True}

    chat_id = str(msg["chat"]["id"])
    from_user = msg.get("from") or {}
    name = " ".join(p for p in (from_user.get("first_name"), from_user.get("last_name")) if p) or None

    background.add_task(process_update, merchant_id, chat_id, text, name, transport, action_provider)
    return {"ok": True}
