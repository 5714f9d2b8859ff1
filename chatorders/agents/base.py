from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from chatorders.messaging import ReplySender
from chatorders.models import Client, Merchant, Product


@dataclass
class TurnContext:
    """Everything a node needs for one inbound message."""
    db: AsyncSession
    merchant: Merchant
    client: Client
    text: str
    norm: str
    catalog: List[Product]
    sender: ReplySender
    now: datetime
    # set by accept-shortage so confirm runs in the same turn
    force_confirm: bool = False
    adjusted: bool = False
    memory: Dict[str, Any] = field(default_factory=dict)


class NodeResult:
    def __init__(self, reply: Optional[str] = None, output: Optional[Dict[str, Any]] = None):
        self.reply = reply
        self.output = output or {}

    @property
    def handled(self) -> bool:
        return self.reply is not None


class Node:
    def __init__(self, id: str):
        self.id = id

    def applies(self, ctx: TurnContext) -> bool:
        return True

    async def run(self, ctx: TurnContext) -> NodeResult:
        return NodeResult()
