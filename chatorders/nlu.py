"""
Client for the external language-understanding service.

The service receives the raw customer text plus the conversational context
(client profile, pending orders) and answers with one AgentAction payload.
Prompting and model choice live on the other side of this HTTP call.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .actions import AgentAction, parse_action
from .errors import UpstreamError
from .models import Client, Order

logger = logging.getLogger(__name__)


class ActionProvider(Protocol):
    async def propose(
        self,
        text: str,
        merchant_id: int,
        client: Client,
        pending_orders: List[Order],
    ) -> AgentAction:
        ...


def order_context(order: Order) -> Dict[str, Any]:
    return {
        "sequence_number": order.sequence_number,
        "status": order.status,
        "total": str(order.total_amount or 0),
        "items": [
            {"name": it.product.name if it.product else None, "quantity": it.quantity}
            for it in order.items
        ],
    }


def build_request(text: str, merchant_id: int, client: Client, pending_orders: List[Order]) -> Dict[str, Any]:
    return {
        "text": text,
        "merchant_id": merchant_id,
        "client": {
            "full_name": client.full_name,
            "dni": client.dni,
            "address": client.address,
        },
        "pending_orders": [order_context(o) for o in pending_orders],
    }


class HttpActionProvider:
    """Posts the turn context to NLU_URL and parses the answer into an AgentAction."""

    def __init__(self, url: str, timeout: float = 20.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=payload)

    async def propose(
        self,
        text: str,
        merchant_id: int,
        client: Client,
        pending_orders: List[Order],
    ) -> AgentAction:
        payload = build_request(text, merchant_id, client, pending_orders)
        try:
            response = await self._post(payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"NLU service returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(f"NLU request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError("NLU service answered with invalid JSON") from e

        # some deployments wrap the payload: {"action": {...}}
        if isinstance(data, dict) and isinstance(data.get("action"), dict):
            data = data["action"]
        action = parse_action(data)
        logger.info("[NLU] merchant=%s client=%s action=%s", merchant_id, client.id, action.type)
        return action
