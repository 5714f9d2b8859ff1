from datetime import datetime

import pytest
from sqlalchemy import update

from chatorders import crud, replies
from chatorders.agents import interceptors
from chatorders.agents.master import handle_inbound
from chatorders.errors import DataIntegrityError, UpstreamError
from chatorders.inventory import reserve_stock
from chatorders.models import Merchant, Product


def upsert(*items, mode=None, **extra):
    action = {
        "type": "upsert_order",
        "items": [{"name": name, "quantity": qty} for name, qty in items],
        **extra,
    }
    if mode:
        action["mode"] = mode
    return action


@pytest.fixture
def say(db, shop, transport):
    async def _say(text, action=None, phone=None, **kw):
        return await handle_inbound(db, shop.merchant_id, phone or shop.phone, text, transport, action=action, **kw)
    return _say


async def _quantities(db, shop, client_id=None):
    order = await crud.find_pending_order(db, shop.merchant_id, client_id or shop.client_id)
    return {it.product.name: it.quantity for it in order.items} if order else {}


async def test_new_order_gets_review_reply(say, db, shop, transport):
    turn = await say("quiero 2 coca y 1 sprite", upsert(("coca", 2), ("sprite", 1)))

    assert turn.handled_by == "order_agent"
    assert turn.order_id is not None
    assert len(turn.replies) == 1
    assert "Revisá si está bien" in turn.replies[0]
    assert "Total: $5800" in turn.replies[0]
    assert transport.sent == [(shop.phone, turn.replies[0])]
    assert await _quantities(db, shop) == {"Coca Cola 1.5L": 2, "Sprite 1.5L": 1}


async def test_adding_merges_and_plain_quantity_sets(say, db, shop):
    await say("2 sprite", upsert(("sprite", 2)))

    turn = await say("agregar 1 sprite", upsert(("sprite", 1)))
    assert "sumé 1 x Sprite 1.5L" in turn.replies[0]
    assert await _quantities(db, shop) == {"Sprite 1.5L": 3}

    turn = await say("2 sprite", upsert(("sprite", 2)))
    assert "dejé 2 x Sprite 1.5L" in turn.replies[0]
    assert await _quantities(db, shop) == {"Sprite 1.5L": 2}


async def test_items_not_in_the_message_are_dropped(say, db, shop):
    await say("quiero 2 coca", upsert(("coca", 2), ("sprite", 1)))
    assert await _quantities(db, shop) == {"Coca Cola 1.5L": 2}


async def test_unknown_item_stores_nothing(say, db, shop):
    turn = await say("mandame 2 xyzzy", upsert(("xyzzy", 2)))
    assert turn.replies[0].startswith("No pude reconocer: xyzzy.")
    assert await crud.find_pending_order(db, shop.merchant_id, shop.client_id) is None


async def test_accept_shortage_then_confirm_in_one_turn(say, db, shop, stock):
    turn = await say("3 yerba", upsert(("yerba", 3)))
    assert "pediste 3, hay 1" in turn.replies[0]

    turn = await say("ok")
    assert turn.handled_by == "confirm"
    assert len(turn.replies) == 1
    assert turn.replies[0].startswith("Ajusté el pedido al stock disponible.")
    assert await stock(shop.yerba_id) == 0
    assert await _quantities(db, shop) == {"Yerba Playadito 1kg": 1}


async def test_accept_shortage_can_empty_the_order(say, db, shop, stock):
    await say("2 yerba", upsert(("yerba", 2)))
    # stock runs out before the customer answers
    await db.execute(
        update(Product).where(Product.id == shop.yerba_id).values(quantity=0)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    turn = await say("dale")
    assert turn.handled_by == "accept_shortage"
    assert turn.replies == [replies.EMPTIED_BY_SHORTAGE]


async def test_remove_whole_line_and_one_unit(say, db, shop):
    await say("3 coca y 1 sprite", upsert(("coca", 3), ("sprite", 1)))

    turn = await say("sacame 1 coca")
    assert turn.handled_by == "remove_item"
    assert "Saqué 1 Coca Cola 1.5L" in turn.replies[0]
    assert await _quantities(db, shop) == {"Coca Cola 1.5L": 2, "Sprite 1.5L": 1}

    turn = await say("quitame la coca")
    assert "Saqué todas Coca Cola 1.5L" in turn.replies[0]
    assert await _quantities(db, shop) == {"Sprite 1.5L": 1}


async def test_remove_unknown_product(say, shop):
    await say("2 coca", upsert(("coca", 2)))
    turn = await say("sacame el fernet")
    assert turn.replies[0].startswith("No entendí qué querés quitar (fernet)")


async def test_removing_from_a_reserved_order_returns_stock(say, db, shop, stock):
    await say("2 coca", upsert(("coca", 2)))
    await say("confirmo")
    assert await stock(shop.coca_id) == 8

    await say("sacame 1 coca")
    assert await stock(shop.coca_id) == 10
    order = await crud.find_pending_order(db, shop.merchant_id, shop.client_id)
    assert not order.inventory_deducted
    assert not order.customer_confirmed
    assert {it.product_id: it.quantity for it in order.items} == {shop.coca_id: 1}


async def test_editing_a_reserved_order_returns_stock(say, db, shop, stock):
    await say("2 coca", upsert(("coca", 2)))
    await say("confirmo")
    assert await stock(shop.coca_id) == 8

    await say("sumar 1 coca", upsert(("coca", 1)))
    assert await stock(shop.coca_id) == 10
    assert await _quantities(db, shop) == {"Coca Cola 1.5L": 3}


async def test_cancel_returns_reserved_stock(say, db, shop, stock):
    await say("2 coca", upsert(("coca", 2)))
    await say("confirmo")

    turn = await say("cancelar pedido")
    assert turn.handled_by == "cancel"
    assert turn.replies[0].startswith("Cancelé el pedido #1")
    assert await stock(shop.coca_id) == 10
    assert await crud.find_pending_order(db, shop.merchant_id, shop.client_id) is None


async def test_cancel_action_from_language_service(say, db, shop):
    await say("2 coca", upsert(("coca", 2)))
    turn = await say("mejor dejalo", {"type": "cancel_order"})
    assert turn.handled_by == "cancel"
    assert await crud.find_pending_order(db, shop.merchant_id, shop.client_id) is None


async def test_nothing_pending(say):
    assert (await say("confirmo")).replies == [replies.NO_PENDING_TO_CONFIRM]
    assert (await say("ok")).replies == [replies.NO_PENDING_TO_ACCEPT]
    assert (await say("cancelar")).replies == [replies.NO_PENDING_TO_CANCEL]
    assert (await say("sacame la coca")).replies == [replies.NO_PENDING_TO_EDIT]


async def test_confirm_reports_shortage(say, shop, stock):
    await say("3 yerba", upsert(("yerba", 3)))
    turn = await say("confirmo")
    assert turn.replies[0].startswith("No tengo stock suficiente para confirmar")
    assert "Yerba Playadito 1kg: pediste 3, hay 1" in turn.replies[0]
    assert await stock(shop.yerba_id) == 1


async def test_concurrent_confirm_reserves_once(say, shop, stock, monkeypatch):
    order_id = (await say("2 coca", upsert(("coca", 2)))).order_id

    async def other_message_confirms_first(db, merchant_id, needs):
        await reserve_stock(db, merchant_id, order_id, needs)
        return []

    monkeypatch.setattr(interceptors, "check_availability", other_message_confirms_first)
    turn = await say("confirmo")
    assert turn.replies[0].startswith("Ya estaba confirmado")
    assert await stock(shop.coca_id) == 8


async def test_confirming_twice(say, shop, stock):
    await say("2 coca", upsert(("coca", 2)))
    first = await say("confirmo")
    assert "confirmé tu pedido y reservé el stock" in first.replies[0]

    second = await say("confirmar")
    assert second.replies[0].startswith("Ya estaba confirmado")
    assert await stock(shop.coca_id) == 8


async def test_stock_race_during_confirm(say, shop, stock, monkeypatch):
    await say("3 yerba", upsert(("yerba", 3)))

    async def stale_precheck(db, merchant_id, needs):
        return []

    monkeypatch.setattr(interceptors, "check_availability", stale_precheck)
    turn = await say("confirmo")
    assert turn.replies == [replies.STOCK_RACE]
    assert await stock(shop.yerba_id) == 1


async def test_last_unit_goes_to_one_client(say, db, shop, second_client, stock):
    await say("1 yerba", upsert(("yerba", 1)))
    await say("1 yerba", upsert(("yerba", 1)), phone=second_client.phone)

    assert "confirmé" in (await say("confirmo")).replies[0]
    loser = await say("confirmo", phone=second_client.phone)
    assert "pediste 1, hay 0" in loser.replies[0]
    assert await stock(shop.yerba_id) == 0


async def test_incomplete_profile_is_asked_for_data(db, shop, transport):
    phone = "5491177777777"
    turn = await handle_inbound(db, shop.merchant_id, phone, "2 coca", transport, action=upsert(("coca", 2)))
    assert turn.handled_by == "profile_gate"
    assert "DNI y dirección de entrega" in turn.replies[0]

    client = await crud.get_client(db, shop.merchant_id, phone)
    assert await crud.find_pending_order(db, shop.merchant_id, client.id) is None

    turn = await handle_inbound(
        db, shop.merchant_id, phone, "DNI: 30.111.222\nDirección: Calle Falsa 123", transport
    )
    assert turn.handled_by == "profile"
    assert turn.replies == [replies.PROFILE_SAVED]
    client = await crud.get_client(db, shop.merchant_id, phone)
    assert (client.dni, client.address) == ("30111222", "Calle Falsa 123")


async def test_profile_from_action_client_info(db, shop, transport):
    phone = "5491166666666"
    action = upsert(("coca", 1), clientInfo={"dni": "27.000.111", "address": "Belgrano 55"})
    turn = await handle_inbound(db, shop.merchant_id, phone, "1 coca", transport, action=action)
    assert turn.handled_by == "order_agent"
    client = await crud.get_client(db, shop.merchant_id, phone)
    order = await crud.find_pending_order(db, shop.merchant_id, client.id)
    assert order.customer_dni == "27000111"


async def test_closed_on_saturday(say, db, shop):
    await db.execute(
        update(Merchant).where(Merchant.id == shop.merchant_id).values(office_days="lunes a viernes")
    )
    await db.commit()

    turn = await say("2 coca", upsert(("coca", 2)), now=datetime(2026, 10, 17, 10, 0))
    assert turn.handled_by == "office_hours"
    assert turn.replies == [replies.CLOSED_TODAY]

    turn = await say("2 coca", upsert(("coca", 2)), now=datetime(2026, 10, 19, 10, 0))
    assert turn.handled_by == "order_agent"


async def test_general_and_clarification_actions(say):
    turn = await say("hola", {"type": "general", "reply": "¡Hola! ¿Qué te mando?"})
    assert turn.replies == ["¡Hola! ¿Qué te mando?"]
    turn = await say("hola", {"type": "nonsense"})
    assert turn.handled_by == "ask_clarification"
    assert turn.replies == [replies.CLARIFY]


async def test_no_language_service_configured(say):
    turn = await say("hola")
    assert turn.handled_by == "clarification"
    assert turn.replies == [replies.CLARIFY]


async def test_provider_sees_pending_orders(db, shop, transport, scripted):
    provider = scripted(upsert(("coca", 2)), upsert(("sprite", 1)))
    first = await handle_inbound(db, shop.merchant_id, shop.phone, "2 coca", transport, action_provider=provider)
    await handle_inbound(db, shop.merchant_id, shop.phone, "1 sprite", transport, action_provider=provider)

    assert provider.calls[0]["pending"] == []
    assert provider.calls[1]["pending"] == [first.order_id]
    assert await _quantities(db, shop) == {"Coca Cola 1.5L": 2, "Sprite 1.5L": 1}


async def test_provider_failure_sends_generic_reply(db, shop, transport, scripted):
    provider = scripted(UpstreamError("NLU service returned 502"))
    turn = await handle_inbound(db, shop.merchant_id, shop.phone, "2 coca", transport, action_provider=provider)
    assert turn.handled_by == "error"
    assert turn.replies == [replies.GENERIC_FAILURE]
    assert transport.sent == [(shop.phone, replies.GENERIC_FAILURE)]


async def test_messages_are_recorded_even_when_delivery_fails(db, shop, transport):
    transport.fail = True
    turn = await handle_inbound(db, shop.merchant_id, shop.phone, "hola", transport)
    assert turn.replies == [replies.CLARIFY]

    messages = await crud.get_messages_for_client(db, shop.merchant_id, shop.client_id)
    assert [(m.direction, m.body) for m in messages] == [("incoming", "hola"), ("outgoing", replies.CLARIFY)]


async def test_unknown_merchant_raises(db, transport):
    with pytest.raises(DataIntegrityError):
        await handle_inbound(db, 999, "5491100000001", "hola", transport)
    assert transport.sent == []
