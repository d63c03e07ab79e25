import asyncio
import datetime as dt

from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import select

from pantry_api import models
from pantry_api.lifecycle import REQUEST_ORDER
from pantry_api.pagination import ordered_page, sort_rows

from test_pagination import BASE, UnindexedSession, _row

rows_strategy = st.lists(
    st.tuples(st.integers(min_value=0, max_value=5), st.text(alphabet="abcdef", min_size=1, max_size=4)),
    unique_by=lambda pair: pair[1],
    max_size=25,
)


async def _walk(session, limit):
    seen = []
    page = await ordered_page(session, select(models.Request), REQUEST_ORDER, limit)
    seen.extend(page.rows)
    while page.has_more:
        page = await ordered_page(session, select(models.Request), REQUEST_ORDER, limit, page.next_cursor)
        seen.extend(page.rows)
    return seen


@settings(max_examples=60, deadline=None)
@given(pairs=rows_strategy, limit=st.integers(min_value=1, max_value=6))
def test_fallback_pages_visit_every_row_once_in_order(pairs, limit):
    rows = [_row(minutes, request_id) for minutes, request_id in pairs]

    seen = asyncio.run(_walk(UnindexedSession(rows), limit))

    assert [row.id for row in seen] == [row.id for row in sort_rows(rows, REQUEST_ORDER)]


@given(st.integers(min_value=0, max_value=10_000))
def test_sort_rows_orders_newest_first(offset):
    rows = [_row(offset, "a"), _row(offset + 1, "b")]

    assert [row.id for row in sort_rows(rows, REQUEST_ORDER)] == ["b", "a"]
    assert rows[0].submission_date == BASE + dt.timedelta(minutes=offset)
