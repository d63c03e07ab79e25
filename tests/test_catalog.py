import pytest

import factories
from pantry_api.catalog import StockCatalog
from pantry_api.errors import InsufficientStock, NotFound

pytestmark = pytest.mark.anyio


async def test_available_batches_are_fefo_with_undated_last(session) -> None:
    await factories.product("P1")
    undated = await factories.batch("P1", 5)
    late = await factories.batch("P1", 5, expiry=factories.day(10))
    soon = await factories.batch("P1", 5, expiry=factories.day(2))
    await factories.batch("P1", 5, expiry=factories.day(1), reserved=5)

    batches = await StockCatalog(session).get_available_batches("P1")

    assert [batch.id for batch in batches] == [soon, late, undated]


async def test_adjust_reservation_rejects_overflow_and_leaves_batch_unchanged(session) -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 10, reserved=8)
    catalog = StockCatalog(session)

    with pytest.raises(InsufficientStock):
        await catalog.adjust_reservation(batch_id, 3)
    with pytest.raises(InsufficientStock):
        await catalog.adjust_reservation(batch_id, -9)
    await session.commit()

    batch = await factories.get_batch(batch_id)
    assert (batch.quantity, batch.reserved_quantity, batch.version) == (10, 8, 0)


async def test_adjust_reservation_within_bounds_bumps_version(session) -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 10, reserved=2)
    catalog = StockCatalog(session)

    await catalog.adjust_reservation(batch_id, 8)
    await catalog.adjust_reservation(batch_id, -4)
    await session.commit()

    batch = await factories.get_batch(batch_id)
    assert batch.reserved_quantity == 6
    assert batch.version == 2


async def test_unknown_batch_is_not_found(session) -> None:
    with pytest.raises(NotFound):
        await StockCatalog(session).release("missing", 1)


async def test_consume_decrements_both_counters(session) -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 10, reserved=4)
    catalog = StockCatalog(session)

    await catalog.consume(batch_id, 4)
    await session.commit()

    batch = await factories.get_batch(batch_id)
    assert (batch.quantity, batch.reserved_quantity) == (6, 0)


async def test_consume_and_release_need_reserved_units(session) -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 10, reserved=2)
    catalog = StockCatalog(session)

    with pytest.raises(InsufficientStock):
        await catalog.consume(batch_id, 3)
    with pytest.raises(InsufficientStock):
        await catalog.release(batch_id, 3)


async def test_try_reserve_fails_on_stale_version(session) -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 10)
    catalog = StockCatalog(session)

    assert await catalog.try_reserve(batch_id, 3, expected_version=0)
    assert not await catalog.try_reserve(batch_id, 3, expected_version=0)
    assert await catalog.try_reserve(batch_id, 3, expected_version=1)
    assert not await catalog.try_reserve(batch_id, 5, expected_version=2)
    await session.commit()

    batch = await factories.get_batch(batch_id)
    assert batch.reserved_quantity == 6


async def test_allocate_walks_batches_in_expiry_order(session) -> None:
    await factories.product("P1")
    first = await factories.batch("P1", 3, expiry=factories.day(1))
    second = await factories.batch("P1", 4, expiry=factories.day(2))
    third = await factories.batch("P1", 4, expiry=factories.day(3))

    allocations = await StockCatalog(session).allocate("P1", 9)
    await session.commit()

    assert [(a.batch_id, a.quantity) for a in allocations] == [(first, 3), (second, 4), (third, 2)]
    assert (await factories.get_batch(third)).reserved_quantity == 2


async def test_remove_units_only_touches_unreserved_stock(session) -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 10, reserved=6)
    catalog = StockCatalog(session)

    with pytest.raises(InsufficientStock):
        await catalog.remove_units(batch_id, 5)
    await catalog.remove_units(batch_id, 4)
    await session.commit()

    batch = await factories.get_batch(batch_id)
    assert (batch.quantity, batch.reserved_quantity) == (6, 6)


async def test_add_batch_requires_known_product(session) -> None:
    with pytest.raises(NotFound):
        await StockCatalog(session).add_batch("nope", 3)


async def test_expiring_batches_window(session) -> None:
    await factories.product("P1")
    inside = await factories.batch("P1", 2, expiry=factories.day(2))
    await factories.batch("P1", 2, expiry=factories.day(5))
    await factories.batch("P1", 2, expiry=factories.day(-1))
    await factories.batch("P1", 0, expiry=factories.day(1))

    batches = await StockCatalog(session).expiring_batches(factories.day(3), factories.TODAY)

    assert [batch.id for batch in batches] == [inside]
