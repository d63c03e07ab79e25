import datetime as dt
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

import factories
from pantry_api import models
from pantry_api.errors import InvalidCursor
from pantry_api.lifecycle import REQUEST_ORDER
from pantry_api.models import RequestStatus
from pantry_api.pagination import Cursor, ordered_page

pytestmark = pytest.mark.anyio

BASE = dt.datetime(2030, 1, 1, 9, 0)


class _Result:
    def __init__(self, rows):
        self._rows = rows

    def scalars(self):
        return self

    def all(self):
        return list(self._rows)


class UnindexedSession:
    """Rejects every ordered query the way a database without the index would."""

    def __init__(self, rows):
        self.rows = rows
        self.rollbacks = 0

    async def execute(self, stmt):
        if stmt._order_by_clauses:
            raise OperationalError(str(stmt), {}, Exception("The query requires an index"))
        return _Result(self.rows)

    async def rollback(self):
        self.rollbacks += 1


def _row(minutes: int, request_id: str) -> SimpleNamespace:
    return SimpleNamespace(submission_date=BASE + dt.timedelta(minutes=minutes), id=request_id)


async def test_requests_are_paged_newest_first(lifecycle) -> None:
    ids = [
        await factories.request("u1", {}, submission_date=BASE + dt.timedelta(minutes=minute))
        for minute in range(5)
    ]

    first = await lifecycle.get_requests_paginated(2)
    second = await lifecycle.get_requests_paginated(2, first.next_cursor)
    third = await lifecycle.get_requests_paginated(2, second.next_cursor)

    assert [r.id for r in first.rows] == [ids[4], ids[3]]
    assert [r.id for r in second.rows] == [ids[2], ids[1]]
    assert [r.id for r in third.rows] == [ids[0]]
    assert first.has_more and second.has_more
    assert not third.has_more
    assert third.next_cursor is None


async def test_requests_with_equal_dates_are_split_by_id(lifecycle) -> None:
    ids = sorted([await factories.request("u1", {}, submission_date=BASE) for _ in range(3)], reverse=True)

    first = await lifecycle.get_requests_paginated(2)
    second = await lifecycle.get_requests_paginated(2, Cursor.decode(first.next_cursor.encode()))

    assert [r.id for r in first.rows + second.rows] == ids


async def test_requests_can_be_filtered_by_status(lifecycle) -> None:
    await factories.request("u1", {}, submission_date=BASE)
    accepted = await factories.request(
        "u1", {}, status=RequestStatus.ACCEPTED_PENDING_PICKUP, submission_date=BASE + dt.timedelta(hours=1)
    )

    page = await lifecycle.get_requests_paginated(10, status=RequestStatus.ACCEPTED_PENDING_PICKUP)

    assert [r.id for r in page.rows] == [accepted]
    assert not page.has_more


async def test_fallback_returns_the_same_pages_as_the_ordered_query() -> None:
    rows = [_row(3, "a"), _row(1, "b"), _row(3, "c"), _row(2, "d"), _row(1, "e")]
    session = UnindexedSession(rows)

    first = await ordered_page(session, select(models.Request), REQUEST_ORDER, 2)
    second = await ordered_page(session, select(models.Request), REQUEST_ORDER, 2, first.next_cursor)
    third = await ordered_page(session, select(models.Request), REQUEST_ORDER, 2, second.next_cursor)

    assert [r.id for r in first.rows] == ["c", "a"]
    assert [r.id for r in second.rows] == ["d", "e"]
    assert [r.id for r in third.rows] == ["b"]
    assert not third.has_more
    assert session.rollbacks == 3


async def test_cursor_with_wrong_arity_is_rejected() -> None:
    with pytest.raises(InvalidCursor):
        await ordered_page(UnindexedSession([]), select(models.Request), REQUEST_ORDER, 2, Cursor(("x",)))


@pytest.mark.parametrize(
    "values",
    [("Arroz", "B1"), (BASE.date(), "id-1"), (BASE, 7), (None, "id-1"), ("2030-01-01T09:00:00", "id-1")],
)
async def test_cursor_from_another_listing_is_rejected(values) -> None:
    session = UnindexedSession([_row(0, "a")])

    with pytest.raises(InvalidCursor):
        await ordered_page(session, select(models.Request), REQUEST_ORDER, 2, Cursor(values))
    assert session.rollbacks == 0


@pytest.mark.parametrize("token", ["%%%", "bm90LWpzb24", "W10", "eyJhIjoxfQ"])
def test_malformed_cursor_tokens_are_rejected(token: str) -> None:
    with pytest.raises(InvalidCursor):
        Cursor.decode(token)


def test_cursor_keeps_dates_and_datetimes() -> None:
    cursor = Cursor((BASE, dt.date(2030, 2, 1), "id-1", 3))

    assert Cursor.decode(cursor.encode()) == cursor
