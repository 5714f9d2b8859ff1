# chatorders/messaging.py
import logging
from typing import List, Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class Transport(Protocol):
    async def send_text(self, to: str, text: str) -> Optional[str]:
        """Deliver `text` to `to`; returns the provider message id when known."""
        ...


class TelegramTransport:
    """Outbound channel through the Telegram Bot API (`to` is the chat id)."""

    def __init__(self, bot_token: str, timeout: float = 15, api_base: str = TELEGRAM_API):
        self.url = f"{api_base}/bot{bot_token}/sendMessage"
        self.timeout = timeout

    async def send_text(self, to: str, text: str) -> Optional[str]:
        payload = {"chat_id": to, "text": text}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.post(self.url, json=payload)
        logger.info("[TELEGRAM] sendMessage: %s", r.status_code)
        r.raise_for_status()
        try:
            data = r.json()
        except ValueError:
            return None
        message_id = ((data or {}).get("result") or {}).get("message_id")
        return str(message_id) if message_id is not None else None


class LogTransport:
    """Transport for local runs without a messaging provider: replies only go to the log."""

    async def send_text(self, to: str, text: str) -> Optional[str]:
        logger.info("[OUTBOX] to=%s %s", to, text)
        return None


class ReplySender:
    """Sends replies for one inbound message and records each one as an outgoing Message.

    A transport failure is logged and the reply is still recorded, so the
    conversation log always reflects what the engine answered.
    """

    def __init__(self, db: AsyncSession, transport: Transport, merchant_id: int, to: str):
        self.db = db
        self.transport = transport
        self.merchant_id = merchant_id
        self.to = to
        self.client_id: Optional[int] = None
        self.sent: List[str] = []

    @property
    def count(self) -> int:
        return len(self.sent)

    async def send(self, text: str) -> None:
        external_id = None
        try:
            external_id = await self.transport.send_text(self.to, text)
        except Exception:
            logger.exception("[SEND] transport error sending to %s", self.to)
        self.sent.append(text)
        await crud.create_message(
            self.db, self.merchant_id, self.client_id, "outgoing", text, external_id=external_id
        )
