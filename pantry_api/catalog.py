"""Stock catalog: batch queries and the only code that writes batch quantities.

Every mutation is a single conditional ``UPDATE`` whose ``WHERE`` clause
encodes the ``0 <= reserved_quantity <= quantity`` invariant, so a change that
would break it matches no row and leaves the batch untouched. Reservations
taken during allocation are additionally keyed on the batch ``version`` and
retried with backoff when another writer got there first.

The catalog never commits. Callers own the transaction.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .errors import InsufficientStock, NotFound

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = int(os.getenv("STOCK_CAS_ATTEMPTS", "5"))
CAS_BACKOFF_S = float(os.getenv("STOCK_CAS_BACKOFF_S", "0.01"))

FEFO_ORDER = (
    models.StockBatch.expiry_date.is_(None),
    models.StockBatch.expiry_date.asc(),
    models.StockBatch.created_at.asc(),
    models.StockBatch.id.asc(),
)


@dataclass(frozen=True)
class Allocation:
    batch_id: str
    quantity: int


class StockCatalog:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_available_batches(self, product_ref: str) -> list[models.StockBatch]:
        """Batches of ``product_ref`` with free units, soonest expiry first and undated last."""

        result = await self.session.execute(
            select(models.StockBatch)
            .where(
                models.StockBatch.product_barcode == product_ref,
                models.StockBatch.quantity > models.StockBatch.reserved_quantity,
            )
            .order_by(*FEFO_ORDER)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_batch(self, batch_id: str) -> models.StockBatch | None:
        result = await self.session.execute(
            select(models.StockBatch)
            .where(models.StockBatch.id == batch_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _apply(self, batch_id: str, *conditions, **values) -> bool:
        values["version"] = models.StockBatch.version + 1
        values["updated_at"] = models.utcnow()
        result = await self.session.execute(
            update(models.StockBatch)
            .where(models.StockBatch.id == batch_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _fail(self, batch_id: str, detail: str) -> None:
        if await self.get_batch(batch_id) is None:
            raise NotFound(f"Stock batch {batch_id} not found")
        raise InsufficientStock(detail)

    async def try_reserve(self, batch_id: str, qty: int, expected_version: int) -> bool:
        """Reserve ``qty`` units if the batch is still at ``expected_version`` and has them free."""

        if qty <= 0:
            raise ValueError("qty must be positive")
        return await self._apply(
            batch_id,
            models.StockBatch.version == expected_version,
            models.StockBatch.reserved_quantity + qty <= models.StockBatch.quantity,
            reserved_quantity=models.StockBatch.reserved_quantity + qty,
        )

    async def reserve_from(self, batch: models.StockBatch, wanted: int) -> int:
        """Reserve up to ``wanted`` units from ``batch`` and return how many were taken."""

        batch_id = batch.id
        current: models.StockBatch | None = batch
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            if current is None:
                return 0
            take = min(wanted, current.available)
            if take <= 0:
                return 0
            if await self.try_reserve(batch_id, take, current.version):
                return take
            logger.info("Version conflict reserving batch %s (attempt %d)", batch_id, attempt)
            await asyncio.sleep(CAS_BACKOFF_S * attempt)
            current = await self.get_batch(batch_id)
        logger.warning("Skipping batch %s after %d conflicting reservation attempts", batch_id, MAX_CAS_ATTEMPTS)
        return 0

    async def allocate(self, product_ref: str, wanted: int) -> list[Allocation]:
        """Reserve up to ``wanted`` units of a product walking its batches in FEFO order."""

        allocations: list[Allocation] = []
        remaining = wanted
        for batch in await self.get_available_batches(product_ref):
            if remaining <= 0:
                break
            taken = await self.reserve_from(batch, remaining)
            if taken:
                allocations.append(Allocation(batch.id, taken))
                remaining -= taken
        return allocations

    async def allocate_from_batch(self, batch_id: str, wanted: int) -> list[Allocation]:
        batch = await self.get_batch(batch_id)
        if batch is None:
            return []
        taken = await self.reserve_from(batch, wanted)
        return [Allocation(batch_id, taken)] if taken else []

    async def adjust_reservation(self, batch_id: str, delta: int) -> None:
        applied = await self._apply(
            batch_id,
            models.StockBatch.reserved_quantity + delta >= 0,
            models.StockBatch.reserved_quantity + delta <= models.StockBatch.quantity,
            reserved_quantity=models.StockBatch.reserved_quantity + delta,
        )
        if not applied:
            await self._fail(batch_id, f"Cannot adjust reservation of batch {batch_id} by {delta}")

    async def consume(self, batch_id: str, qty: int) -> None:
        """Remove ``qty`` reserved units from physical stock."""

        applied = await self._apply(
            batch_id,
            models.StockBatch.reserved_quantity >= qty,
            models.StockBatch.quantity >= qty,
            quantity=models.StockBatch.quantity - qty,
            reserved_quantity=models.StockBatch.reserved_quantity - qty,
        )
        if not applied:
            await self._fail(batch_id, f"Batch {batch_id} has fewer than {qty} reserved units to consume")

    async def release(self, batch_id: str, qty: int) -> None:
        """Return ``qty`` reserved units to the available pool."""

        applied = await self._apply(
            batch_id,
            models.StockBatch.reserved_quantity >= qty,
            reserved_quantity=models.StockBatch.reserved_quantity - qty,
        )
        if not applied:
            await self._fail(batch_id, f"Batch {batch_id} has fewer than {qty} reserved units to release")

    async def add_batch(
        self,
        product_barcode: str,
        quantity: int,
        expiry_date: dt.date | None = None,
        campaign_id: str | None = None,
    ) -> models.StockBatch:
        product = await self.session.get(models.Product, product_barcode)
        if product is None:
            raise NotFound(f"Product {product_barcode} not found")
        batch = models.StockBatch(
            product_barcode=product_barcode,
            quantity=quantity,
            reserved_quantity=0,
            expiry_date=expiry_date,
            campaign_id=campaign_id,
            version=0,
        )
        self.session.add(batch)
        await self.session.flush()
        return batch

    async def remove_units(self, batch_id: str, qty: int) -> None:
        """Write off ``qty`` unreserved units, e.g. damaged or expired stock."""

        applied = await self._apply(
            batch_id,
            models.StockBatch.quantity - models.StockBatch.reserved_quantity >= qty,
            quantity=models.StockBatch.quantity - qty,
        )
        if not applied:
            await self._fail(batch_id, f"Batch {batch_id} has fewer than {qty} unreserved units")

    async def expiring_batches(self, until: dt.date, today: dt.date) -> list[models.StockBatch]:
        """Batches still holding stock whose expiry falls in ``[today, until]``."""

        result = await self.session.execute(
            select(models.StockBatch)
            .where(
                models.StockBatch.quantity > 0,
                models.StockBatch.expiry_date.is_not(None),
                models.StockBatch.expiry_date >= today,
                models.StockBatch.expiry_date <= until,
            )
            .order_by(*FEFO_ORDER)
        )
        return list(result.scalars().all())
