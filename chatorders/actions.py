"""
Actions proposed by the external language-understanding service.

The payload is validated once at the boundary into a tagged union (one model
per ``type``) and the proposed items are filtered against the literal customer
message before anything is persisted: items that the service invented or
carried over from earlier turns never reach the upsert engine.
"""
import logging
from dataclasses import dataclass, field
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from . import replies
from .text import normalize, stem

logger = logging.getLogger(__name__)


class ActionItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    normalized_name: Optional[str] = Field(default=None, alias="normalizedName")
    quantity: Optional[float] = None


class ClientInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_name: Optional[str] = Field(default=None, alias="fullName")
    dni: Optional[str] = None
    address: Optional[str] = None


class _ActionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reply: str = ""
    client_info: Optional[ClientInfo] = Field(default=None, alias="clientInfo")


class UpsertOrderAction(_ActionBase):
    type: Literal["upsert_order"] = "upsert_order"
    items: List[ActionItem] = Field(default_factory=list)
    status: Optional[Literal["pending", "confirmed", "cancelled"]] = None
    mode: Optional[Literal["replace", "merge"]] = None


class CancelOrderAction(_ActionBase):
    type: Literal["cancel_order"] = "cancel_order"


class AskClarificationAction(_ActionBase):
    type: Literal["ask_clarification"] = "ask_clarification"


class GeneralAction(_ActionBase):
    type: Literal["general"] = "general"


AgentAction = Annotated[
    Union[UpsertOrderAction, CancelOrderAction, AskClarificationAction, GeneralAction],
    Field(discriminator="type"),
]

_action_adapter = TypeAdapter(AgentAction)


def parse_action(payload: Any) -> AgentAction:
    """Validate a raw payload into an AgentAction.

    Legacy ``retail_*`` type tags are accepted. Anything that does not validate
    becomes an AskClarificationAction so the customer gets asked again.
    """
    if isinstance(payload, _ActionBase):
        return payload
    if not isinstance(payload, dict):
        logger.warning("[ACTION] non-object payload discarded: %r", payload)
        return AskClarificationAction(reply=replies.CLARIFY)

    data = dict(payload)
    kind = str(data.get("type") or "")
    if kind.startswith("retail_"):
        data["type"] = kind[len("retail_"):]
    try:
        return _action_adapter.validate_python(data)
    except ValidationError as e:
        logger.warning("[ACTION] invalid payload (%s errors): %s", e.error_count(), data.get("type"))
        return AskClarificationAction(reply=replies.CLARIFY)


@dataclass
class ProposedItem:
    name: str
    normalized_name: str
    quantity: int


@dataclass
class PostProcessed:
    items: List[ProposedItem] = field(default_factory=list)
    reply: Optional[str] = None


def appears_in_message(item_name: str, raw_text: str) -> bool:
    # one strong token is enough (coca / yerba / galletit...)
    msg = normalize(raw_text)
    tokens = [stem(t) for t in normalize(item_name).split(" ")]
    tokens = [t for t in tokens if len(t) >= 3]
    if not tokens:
        return False
    return any(t in msg for t in tokens)


def filter_items(items: List[ActionItem], raw_text: str) -> PostProcessed:
    mentioned = [
        it for it in items
        if appears_in_message(it.normalized_name or it.name or "", raw_text)
    ]
    if not mentioned:
        return PostProcessed(reply=replies.ASK_ITEMS)

    out = []
    for it in mentioned:
        name = (it.name or "").strip().lower()
        normalized_name = (it.normalized_name or "").strip().lower() or name
        quantity = int(it.quantity or 0)
        if not normalized_name or quantity <= 0:
            continue
        out.append(ProposedItem(name=name or normalized_name, normalized_name=normalized_name, quantity=quantity))

    if not out:
        return PostProcessed(reply=replies.UNREADABLE_ITEMS)
    return PostProcessed(items=out)


def post_process(action: AgentAction, raw_text: str) -> PostProcessed:
    if not isinstance(action, UpsertOrderAction):
        return PostProcessed(reply=replies.ASK_ITEMS)
    dropped = len(action.items)
    result = filter_items(action.items, raw_text)
    dropped -= len(result.items)
    if dropped:
        logger.info("[ACTION] dropped %s proposed item(s) not present in the message", dropped)
    return result
