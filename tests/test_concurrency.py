import asyncio

import pytest

import factories
from pantry_api.audit import AuditSink
from pantry_api.deps import get_sessionmaker
from pantry_api.errors import NoStockAvailable
from pantry_api.lifecycle import Actor, RequestLifecycle

pytestmark = pytest.mark.anyio


async def _submit(index: int, ref: str, wanted: int) -> int:
    async with get_sessionmaker()() as session:
        lifecycle = RequestLifecycle(session, AuditSink(get_sessionmaker()))
        try:
            request = await lifecycle.submit_request(Actor(f"beneficiary-{index}"), {ref: wanted})
        except NoStockAvailable:
            return 0
        return request.total_items


async def test_concurrent_submissions_never_overbook_a_batch() -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 10)

    granted = await asyncio.gather(*(_submit(index, "P1", 4) for index in range(5)))

    batch = await factories.get_batch(batch_id)
    assert sum(granted) <= 10
    assert batch.reserved_quantity == sum(granted)
    assert batch.quantity == 10


async def test_concurrent_submissions_by_batch_id_never_overbook() -> None:
    await factories.product("P1")
    batch_id = await factories.batch("P1", 6)

    granted = await asyncio.gather(*(_submit(index, batch_id, 2) for index in range(4)))

    batch = await factories.get_batch(batch_id)
    assert sum(granted) <= 6
    assert batch.reserved_quantity == sum(granted)
