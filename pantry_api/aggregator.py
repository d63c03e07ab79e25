"""Requestable-item read model: available stock grouped per product."""

from __future__ import annotations

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .catalog import FEFO_ORDER
from .pagination import Cursor, SortKey, ordered_page

PRODUCT_ORDER = (SortKey(models.Product.name), SortKey(models.Product.barcode))


@dataclass
class BatchAvailability:
    batch_id: str
    available: int
    expiry_date: dt.date | None


@dataclass
class RequestableItem:
    product_ref: str
    name: str
    brand: str | None
    category: str
    image_url: str | None
    total_available: int
    nearest_expiry: dt.date | None
    pagination_cursor: Cursor
    batches: list[BatchAvailability] = field(default_factory=list)


@dataclass
class ItemsPage:
    items: list[RequestableItem]
    next_cursor: Cursor | None
    has_more: bool


def _has_available_batch():
    return exists().where(
        models.StockBatch.product_barcode == models.Product.barcode,
        models.StockBatch.quantity > 0,
        models.StockBatch.quantity > models.StockBatch.reserved_quantity,
    )


async def list_requestable_items(
    session: AsyncSession, page_size: int, cursor: Cursor | None = None
) -> ItemsPage:
    """One page of products with free stock, ordered by name then barcode.

    Pages are cut on product boundaries, so every batch of a product is
    aggregated into the same item and walking the cursors to the end yields
    each product exactly once.
    """

    page = await ordered_page(
        session,
        select(models.Product).where(_has_available_batch()),
        PRODUCT_ORDER,
        page_size,
        cursor,
    )
    products: list[models.Product] = page.rows
    if not products:
        return ItemsPage(items=[], next_cursor=None, has_more=False)

    result = await session.execute(
        select(models.StockBatch)
        .where(
            models.StockBatch.product_barcode.in_([product.barcode for product in products]),
            models.StockBatch.quantity > 0,
            models.StockBatch.quantity > models.StockBatch.reserved_quantity,
        )
        .order_by(*FEFO_ORDER)
    )
    grouped: dict[str, list[models.StockBatch]] = defaultdict(list)
    for batch in result.scalars().all():
        grouped[batch.product_barcode].append(batch)

    items: list[RequestableItem] = []
    for product in products:
        batches = grouped.get(product.barcode, [])
        if not batches:
            # reserved away between the two queries
            continue
        expiries = [batch.expiry_date for batch in batches if batch.expiry_date is not None]
        items.append(
            RequestableItem(
                product_ref=product.barcode,
                name=product.name,
                brand=product.brand,
                category=models.category_label(product.category),
                image_url=product.image_url,
                total_available=sum(batch.available for batch in batches),
                nearest_expiry=min(expiries) if expiries else None,
                pagination_cursor=Cursor.from_row(product, PRODUCT_ORDER),
                batches=[
                    BatchAvailability(batch.id, batch.available, batch.expiry_date) for batch in batches
                ],
            )
        )
    return ItemsPage(items=items, next_cursor=page.next_cursor, has_more=page.has_more)
