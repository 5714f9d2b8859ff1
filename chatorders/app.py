# chatorders/app.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from chatorders import crud
from chatorders.agents.master import handle_inbound
from chatorders.db import engine, get_db, init_models, settings
from chatorders.deps import get_action_provider, get_transport
from chatorders.errors import DataIntegrityError, InsufficientStockError, InvalidTransitionError, StockRaceError
from chatorders.logging_config import setup_logging
from chatorders.messaging import Transport
from chatorders.models import Order
from chatorders.nlu import ActionProvider
from chatorders.orders import update_order_status
from chatorders.telegram import router as telegram_router

setup_logging(settings.log_level, settings.log_json)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models(engine)
    yield
    await engine.dispose()


app = FastAPI(
    title="chatorders - conversational order engine",
    lifespan=lifespan,
)
app.include_router(telegram_router)


# ---------- schemas ----------
class MessageIn(BaseModel):
    merchant_id: int
    phone: str = Field(min_length=1)
    text: str
    name: Optional[str] = None
    # pre-computed action; skips the language service when present
    action: Optional[Dict[str, Any]] = None


class MessageOut(BaseModel):
    handled_by: str
    replies: List[str]
    order_id: Optional[int] = None


class OrderPatch(BaseModel):
    status: Optional[Literal["pending", "confirmed", "cancelled"]] = None
    paid_amount: Optional[Decimal] = Field(default=None, ge=0)
    payment_status: Optional[Literal["unpaid", "partial", "paid"]] = None


class OrderItemOut(BaseModel):
    product_id: int
    name: Optional[str]
    quantity: int
    unit_price: Decimal
    promotion_id: Optional[int] = None


class OrderOut(BaseModel):
    id: int
    sequence_number: int
    status: str
    total_amount: Decimal
    customer_name: Optional[str] = None
    customer_address: Optional[str] = None
    customer_dni: Optional[str] = None
    customer_confirmed: bool
    customer_confirmed_at: Optional[datetime] = None
    inventory_deducted: bool
    inventory_deducted_at: Optional[datetime] = None
    payment_status: str
    paid_amount: Decimal
    items: List[OrderItemOut]


def order_out(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        sequence_number=order.sequence_number,
        status=order.status,
        total_amount=order.total_amount,
        customer_name=order.customer_name,
        customer_address=order.customer_address,
        customer_dni=order.customer_dni,
        customer_confirmed=order.customer_confirmed,
        customer_confirmed_at=order.customer_confirmed_at,
        inventory_deducted=order.inventory_deducted,
        inventory_deducted_at=order.inventory_deducted_at,
        payment_status=order.payment_status,
        paid_amount=order.paid_amount,
        items=[
            OrderItemOut(
                product_id=it.product_id,
                name=it.product.name if it.product else None,
                quantity=it.quantity,
                unit_price=it.unit_price,
                promotion_id=it.promotion_id,
            )
            for it in order.items
        ],
    )


# ---------- routes ----------
@app.post("/messages", response_model=MessageOut)
async def post_message(
    payload: MessageIn,
    db: AsyncSession = Depends(get_db),
    transport: Transport = Depends(get_transport),
    action_provider: Optional[ActionProvider] = Depends(get_action_provider),
):
    try:
        turn = await handle_inbound(
            db,
            payload.merchant_id,
            payload.phone,
            payload.text,
            transport,
            action_provider=action_provider,
            action=payload.action,
            name=payload.name,
        )
    except DataIntegrityError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MessageOut(handled_by=turn.handled_by, replies=turn.replies, order_id=turn.order_id)


@app.get("/merchants/{merchant_id}/orders/{order_id}", response_model=OrderOut)
async def get_order(merchant_id: int, order_id: int, db: AsyncSession = Depends(get_db)):
    order = await crud.get_order(db, merchant_id, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order_out(order)


@app.patch("/merchants/{merchant_id}/orders/{order_id}", response_model=OrderOut)
async def patch_order(
    merchant_id: int,
    order_id: int,
    payload: OrderPatch,
    db: AsyncSession = Depends(get_db),
):
    try:
        order = await update_order_status(
            db,
            merchant_id,
            order_id,
            status=payload.status,
            paid_amount=payload.paid_amount,
            payment_status=payload.payment_status,
        )
    except DataIntegrityError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InsufficientStockError as e:
        detail = [{"product_id": s.product_id, "name": s.name, "have": s.have, "need": s.need} for s in e.shortages]
        raise HTTPException(status_code=409, detail={"error": "insufficient_stock", "shortages": detail})
    except StockRaceError as e:
        raise HTTPException(status_code=409, detail={"error": "stock_race", "product_id": e.product_id})
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=409,
            detail={"error": "invalid_transition", "from": e.current, "to": e.requested},
        )
    return order_out(order)


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(
        "chatorders.app:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
    )
