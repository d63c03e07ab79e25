"""Opaque pagination cursors and ordered keyset pages with an unordered fallback."""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import and_, or_
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from .errors import InvalidCursor

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SortKey:
    """One ORM column of a keyset ordering and its direction."""

    column: Any
    descending: bool = False

    @property
    def attr(self) -> str:
        return self.column.key

    def order_clause(self):
        return self.column.desc() if self.descending else self.column.asc()


@dataclass(frozen=True)
class Cursor:
    """Position after the last row of a page, as the ordered key values of that row."""

    values: tuple[Any, ...]

    def encode(self) -> str:
        raw = json.dumps([_encode_value(value) for value in self.values], separators=(",", ":"))
        return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "Cursor":
        padded = token + "=" * (-len(token) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
            payload = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise InvalidCursor("Malformed pagination cursor") from exc
        if not isinstance(payload, list) or not payload:
            raise InvalidCursor("Malformed pagination cursor")
        return cls(tuple(_decode_value(value) for value in payload))

    @classmethod
    def from_row(cls, row: Any, keys: Sequence[SortKey]) -> "Cursor":
        return cls(_row_values(row, keys))


@dataclass
class Page(Generic[T]):
    rows: list[T] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Cursor | None = None


def _encode_value(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return {"dt": value.isoformat()}
    if isinstance(value, dt.date):
        return {"d": value.isoformat()}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        try:
            if "dt" in value:
                return dt.datetime.fromisoformat(value["dt"])
            if "d" in value:
                return dt.date.fromisoformat(value["d"])
        except (TypeError, ValueError) as exc:
            raise InvalidCursor("Malformed pagination cursor") from exc
        raise InvalidCursor("Malformed pagination cursor")
    return value


def _matches_column(key: SortKey, value: Any) -> bool:
    if value is None:
        return getattr(key.column.expression, "nullable", True)
    try:
        expected = key.column.type.python_type
    except NotImplementedError:
        return True
    if isinstance(value, bool) and expected is not bool:
        return False
    if expected is dt.date:
        return isinstance(value, dt.date) and not isinstance(value, dt.datetime)
    if expected is float:
        return isinstance(value, (int, float))
    return isinstance(value, expected)


def check_cursor(after: Cursor, keys: Sequence[SortKey]) -> None:
    """Reject cursors issued by a listing with a different ordering."""

    if len(after.values) != len(keys):
        raise InvalidCursor("Pagination cursor does not match this listing")
    for key, value in zip(keys, after.values):
        if not _matches_column(key, value):
            raise InvalidCursor("Pagination cursor does not match this listing")


def _row_values(row: Any, keys: Sequence[SortKey]) -> tuple[Any, ...]:
    return tuple(getattr(row, key.attr) for key in keys)


def keyset_predicate(keys: Sequence[SortKey], values: Sequence[Any]):
    """SQL predicate selecting rows strictly after ``values`` in the given ordering."""

    clauses = []
    for index, key in enumerate(keys):
        prefix = [keys[i].column == values[i] for i in range(index)]
        value = values[index]
        step = key.column < value if key.descending else key.column > value
        clauses.append(and_(*prefix, step))
    return or_(*clauses)


def _is_after(row_values: Sequence[Any], values: Sequence[Any], keys: Sequence[SortKey]) -> bool:
    for key, current, boundary in zip(keys, row_values, values):
        if current == boundary:
            continue
        return current < boundary if key.descending else current > boundary
    return False


def sort_rows(rows: list[T], keys: Sequence[SortKey]) -> list[T]:
    """Client-side equivalent of ``ORDER BY`` over ``keys`` with mixed directions."""

    ordered = list(rows)
    for key in reversed(keys):
        ordered.sort(key=lambda row, attr=key.attr: getattr(row, attr), reverse=key.descending)
    return ordered


async def ordered_page(
    session: AsyncSession,
    stmt: Select,
    keys: Sequence[SortKey],
    limit: int,
    after: Cursor | None = None,
) -> Page:
    """Fetch one keyset page of ``stmt`` ordered by ``keys``.

    When the database rejects the ordered query (for example because the
    ordering needs an index that does not exist), the same page is computed
    from an unordered scan: rows are sorted client-side by ``keys``, filtered
    to those after the cursor and cut to ``limit``. Both paths return the same
    rows in the same order.

    The fallback rolls the session back, so it must only be used from
    read-only sessions.
    """

    if after is not None:
        check_cursor(after, keys)

    ordered_stmt = stmt
    if after is not None:
        ordered_stmt = ordered_stmt.where(keyset_predicate(keys, after.values))
    ordered_stmt = ordered_stmt.order_by(*[key.order_clause() for key in keys]).limit(limit + 1)

    try:
        result = await session.execute(ordered_stmt)
        rows = list(result.scalars().all())
    except DBAPIError as exc:
        logger.warning("Ordered query failed, falling back to unordered scan: %s", exc.orig or exc)
        await session.rollback()
        result = await session.execute(stmt)
        rows = sort_rows(list(result.scalars().all()), keys)
        if after is not None:
            rows = [row for row in rows if _is_after(_row_values(row, keys), after.values, keys)]
        rows = rows[: limit + 1]

    has_more = len(rows) > limit
    rows = rows[:limit]
    next_cursor = Cursor.from_row(rows[-1], keys) if has_more and rows else None
    return Page(rows=rows, has_more=has_more, next_cursor=next_cursor)
