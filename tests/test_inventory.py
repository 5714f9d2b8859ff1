import pytest
from sqlalchemy import update

from chatorders import crud
from chatorders.errors import AlreadyReservedError, StockRaceError
from chatorders.inventory import (
    check_availability,
    needs_by_product,
    reserve_stock,
    shortages_for_order,
)
from chatorders.models import Product
from chatorders.orders import LineRequest, restock_order, update_order_status, upsert_order


async def test_reserve_decrements_and_flags_order(db, shop, stock):
    order = await upsert_order(
        db, shop.merchant_id, shop.client_id,
        [LineRequest(shop.coca_id, 3), LineRequest(shop.sprite_id, 2)],
    )
    await reserve_stock(db, shop.merchant_id, order.id, needs_by_product(order))

    assert await stock(shop.coca_id) == 7
    assert await stock(shop.sprite_id) == 8
    order = await crud.get_order(db, shop.merchant_id, order.id)
    assert order.inventory_deducted and order.customer_confirmed
    assert order.inventory_deducted_at is not None
    assert order.customer_confirmed_at is not None


async def test_reservation_is_all_or_nothing(db, shop, stock):
    order = await upsert_order(
        db, shop.merchant_id, shop.client_id,
        [LineRequest(shop.coca_id, 2), LineRequest(shop.yerba_id, 3)],
    )
    needs = {shop.coca_id: 2, shop.yerba_id: 3}
    order_id = order.id

    with pytest.raises(StockRaceError) as exc:
        await reserve_stock(db, shop.merchant_id, order_id, needs)

    assert exc.value.product_id == shop.yerba_id
    assert str(exc.value) == f"NO_STOCK_RACE:{shop.yerba_id}:3"
    # the coca decrement that succeeded first was rolled back too
    assert await stock(shop.coca_id) == 10
    assert await stock(shop.yerba_id) == 1
    order = await crud.get_order(db, shop.merchant_id, order_id)
    assert not order.inventory_deducted


async def test_stock_taken_between_precheck_and_reserve(db, shop, stock):
    order = await upsert_order(db, shop.merchant_id, shop.client_id, [LineRequest(shop.yerba_id, 1)])
    needs = needs_by_product(order)
    assert await check_availability(db, shop.merchant_id, needs) == []

    # someone else sells the last unit
    await db.execute(
        update(Product).where(Product.id == shop.yerba_id).values(quantity=0)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    with pytest.raises(StockRaceError):
        await reserve_stock(db, shop.merchant_id, order.id, needs)
    assert await stock(shop.yerba_id) == 0


async def test_last_unit_goes_to_exactly_one_order(db, shop, second_client, stock):
    first = await upsert_order(db, shop.merchant_id, shop.client_id, [LineRequest(shop.yerba_id, 1)])
    second = await upsert_order(db, shop.merchant_id, second_client.client_id, [LineRequest(shop.yerba_id, 1)])

    # both pre-checks see the unit
    assert await check_availability(db, shop.merchant_id, needs_by_product(first)) == []
    assert await check_availability(db, shop.merchant_id, needs_by_product(second)) == []

    first_id, second_id = first.id, second.id
    await reserve_stock(db, shop.merchant_id, first_id, needs_by_product(first))
    with pytest.raises(StockRaceError):
        await reserve_stock(db, shop.merchant_id, second_id, {shop.yerba_id: 1})

    assert await stock(shop.yerba_id) == 0
    assert (await crud.get_order(db, shop.merchant_id, first_id)).inventory_deducted
    assert not (await crud.get_order(db, shop.merchant_id, second_id)).inventory_deducted


async def test_check_availability_reports_each_shortfall(db, shop):
    shortages = await check_availability(
        db, shop.merchant_id, {shop.coca_id: 2, shop.yerba_id: 4, 9999: 1}
    )
    by_id = {s.product_id: s for s in shortages}
    assert set(by_id) == {shop.yerba_id, 9999}
    assert by_id[shop.yerba_id].have == 1
    assert by_id[shop.yerba_id].missing == 3
    assert by_id[9999].have == 0


async def test_shortages_for_order(db, shop):
    order = await upsert_order(
        db, shop.merchant_id, shop.client_id,
        [LineRequest(shop.coca_id, 2), LineRequest(shop.yerba_id, 3)],
    )
    shortages = shortages_for_order(order)
    assert [(s.name, s.have, s.need) for s in shortages] == [("Yerba Playadito 1kg", 1, 3)]


async def test_same_order_is_reserved_only_once(db, shop, stock):
    order = await upsert_order(db, shop.merchant_id, shop.client_id, [LineRequest(shop.coca_id, 2)])
    order_id = order.id
    needs = {shop.coca_id: 2}

    await reserve_stock(db, shop.merchant_id, order_id, needs)
    with pytest.raises(AlreadyReservedError):
        await reserve_stock(db, shop.merchant_id, order_id, needs)
    assert await stock(shop.coca_id) == 8

    order = await crud.get_order(db, shop.merchant_id, order_id)
    assert await restock_order(db, shop.merchant_id, order)
    assert await stock(shop.coca_id) == 10


async def test_cancelled_order_cannot_be_reserved(db, shop, stock):
    order = await upsert_order(db, shop.merchant_id, shop.client_id, [LineRequest(shop.coca_id, 3)])
    order_id = order.id
    await update_order_status(db, shop.merchant_id, order_id, status="cancelled")

    with pytest.raises(AlreadyReservedError):
        await reserve_stock(db, shop.merchant_id, order_id, {shop.coca_id: 3})
    assert await stock(shop.coca_id) == 10
    assert not (await crud.get_order(db, shop.merchant_id, order_id)).inventory_deducted
