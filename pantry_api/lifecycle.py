"""Pickup request lifecycle: submission, negotiation, completion and cancellation.

Each operation runs as one unit of work on the session it was given: the
status change, every stock reservation or release it implies and the request
rows commit together, or the whole thing is rolled back (including when the
caller is cancelled mid-way). Status changes are conditional on the status the
operation read, so two concurrent transitions on the same request cannot both
apply.

The acting user is always passed in explicitly as an :class:`Actor`.
"""

from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import models
from .audit import AuditAction, AuditSink
from .catalog import Allocation, StockCatalog
from .errors import InvalidStateTransition, NoStockAvailable, NotFound, UpstreamFailure
from .models import RequestStatus
from .pagination import Cursor, Page, SortKey, ordered_page

logger = logging.getLogger(__name__)

REQUEST_ORDER = (
    SortKey(models.Request.submission_date, descending=True),
    SortKey(models.Request.id, descending=True),
)


@dataclass(frozen=True)
class Actor:
    user_id: str
    user_name: str | None = None


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _merge(allocations: list[Allocation]) -> list[Allocation]:
    totals: dict[str, int] = {}
    for allocation in allocations:
        totals[allocation.batch_id] = totals.get(allocation.batch_id, 0) + allocation.quantity
    return [Allocation(batch_id, quantity) for batch_id, quantity in totals.items()]


class RequestLifecycle:
    def __init__(self, session: AsyncSession, audit: AuditSink) -> None:
        self.session = session
        self.audit = audit
        self.catalog = StockCatalog(session)

    @asynccontextmanager
    async def _unit_of_work(self):
        try:
            yield
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise UpstreamFailure("Database operation failed") from exc
        except BaseException:
            await self.session.rollback()
            raise

    def _request_query(self):
        return (
            select(models.Request)
            .options(
                selectinload(models.Request.items)
                .selectinload(models.RequestItem.batch)
                .selectinload(models.StockBatch.product)
            )
            .execution_options(populate_existing=True)
        )

    def _detach(self, requests: list[models.Request]) -> list[models.Request]:
        """Expunge loaded request graphs so a later rollback cannot expire them."""

        for request in requests:
            if request in self.session:
                self.session.expunge(request)
            for item in request.items:
                if item in self.session:
                    self.session.expunge(item)
                batch = item.batch
                if batch is None:
                    continue
                for loaded in (batch, batch.product):
                    if loaded is not None and loaded in self.session:
                        self.session.expunge(loaded)
        return requests

    async def _load(self, request_id: str) -> models.Request:
        result = await self.session.execute(self._request_query().where(models.Request.id == request_id))
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        return self._detach([request])[0]

    async def _update(self, request: models.Request, expected: RequestStatus, **values: Any) -> None:
        current = RequestStatus(request.status)
        if current.is_terminal:
            raise InvalidStateTransition(f"Request {request.id} is already {current.name}")
        if current != expected:
            raise InvalidStateTransition(f"Request {request.id} is {current.name}, expected {expected.name}")
        values["updated_at"] = models.utcnow()
        result = await self.session.execute(
            update(models.Request)
            .where(models.Request.id == request.id, models.Request.status == int(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(f"Request {request.id} was changed by another operation")

    async def _log(self, actor: Actor, action: AuditAction, request_id: str, **details: Any) -> None:
        await self.audit.log_action(action, actor.user_id, {"requestId": request_id, **details}, actor.user_name)

    async def _allocate(self, selections: Mapping[str, int]) -> list[Allocation]:
        allocations: list[Allocation] = []
        for ref, wanted in selections.items():
            if wanted <= 0:
                continue
            if await self.session.get(models.Product, ref) is not None:
                allocations.extend(await self.catalog.allocate(ref, wanted))
            else:
                # references that are not a barcode are taken as a batch id
                allocations.extend(await self.catalog.allocate_from_batch(ref, wanted))
        return _merge(allocations)

    async def _find_by_idempotency_key(self, user_id: str, key: str) -> models.Request | None:
        result = await self.session.execute(
            self._request_query().where(
                models.Request.user_id == user_id,
                models.Request.idempotency_key == key,
            )
        )
        request = result.scalar_one_or_none()
        return self._detach([request])[0] if request is not None else None

    async def submit_request(
        self,
        actor: Actor,
        selections: Mapping[str, int],
        proposed_delivery_date: dt.datetime | None = None,
        idempotency_key: str | None = None,
    ) -> models.Request:
        """Reserve stock for ``selections`` and record a SUBMITTED request.

        Each selection is filled FEFO and may be filled partially; the request
        records what was actually reserved. Raises :class:`NoStockAvailable`
        when nothing could be reserved. Repeating a submission with the same
        ``idempotency_key`` returns the request created the first time.
        """

        if idempotency_key:
            existing = await self._find_by_idempotency_key(actor.user_id, idempotency_key)
            if existing is not None:
                logger.info("Replayed submission %s for user %s", idempotency_key, actor.user_id)
                return existing

        try:
            async with self._unit_of_work():
                allocations = await self._allocate(selections)
                if not allocations:
                    raise NoStockAvailable("None of the selected items has stock available")
                now = models.utcnow()
                request = models.Request(
                    id=models.new_id(),
                    user_id=actor.user_id,
                    status=int(RequestStatus.SUBMITTED),
                    submission_date=now,
                    total_items=sum(allocation.quantity for allocation in allocations),
                    proposed_delivery_date=models.as_naive_utc(proposed_delivery_date),
                    idempotency_key=idempotency_key,
                    updated_at=now,
                    items=[
                        models.RequestItem(batch_id=allocation.batch_id, quantity=allocation.quantity, position=index)
                        for index, allocation in enumerate(allocations)
                    ],
                )
                self.session.add(request)
        except IntegrityError as exc:
            existing = None
            if idempotency_key:
                existing = await self._find_by_idempotency_key(actor.user_id, idempotency_key)
            if existing is None:
                raise UpstreamFailure("Could not store the request") from exc
            logger.info("Concurrent replay of submission %s for user %s", idempotency_key, actor.user_id)
            return existing

        requested = sum(wanted for wanted in selections.values() if wanted > 0)
        if request.total_items < requested:
            logger.info(
                "Request %s reserved %d of %d requested units", request.id, request.total_items, requested
            )
        await self._log(
            actor,
            AuditAction.SUBMIT_REQUEST,
            request.id,
            totalItems=request.total_items,
            requestedItems=requested,
            items=[{"batchId": a.batch_id, "quantity": a.quantity} for a in allocations],
        )
        return await self._load(request.id)

    async def accept_request(self, actor: Actor, request_id: str, scheduled_pickup_date: dt.datetime) -> models.Request:
        scheduled = models.as_naive_utc(scheduled_pickup_date)
        async with self._unit_of_work():
            request = await self._load(request_id)
            await self._update(
                request,
                RequestStatus.SUBMITTED,
                status=int(RequestStatus.ACCEPTED_PENDING_PICKUP),
                scheduled_pickup_date=scheduled,
            )
        await self._log(actor, AuditAction.ACCEPT_REQUEST, request_id, scheduledPickupDate=_iso(scheduled))
        return await self._load(request_id)

    async def reject_request(self, actor: Actor, request_id: str, reason: str | None = None) -> models.Request:
        async with self._unit_of_work():
            request = await self._load(request_id)
            await self._update(
                request,
                RequestStatus.SUBMITTED,
                status=int(RequestStatus.REJECTED),
                rejection_reason=reason,
            )
            for item in request.items:
                await self.catalog.release(item.batch_id, item.quantity)
        await self._log(actor, AuditAction.DECLINE_REQUEST, request_id, reason=reason)
        return await self._load(request_id)

    async def propose_new_date(self, actor: Actor, request_id: str, date: dt.datetime) -> models.Request:
        """Employee proposes a pickup date; the request stays SUBMITTED."""

        proposed = models.as_naive_utc(date)
        async with self._unit_of_work():
            request = await self._load(request_id)
            await self._update(request, RequestStatus.SUBMITTED, scheduled_pickup_date=proposed)
        await self._log(actor, AuditAction.PROPOSE_NEW_DATE, request_id, proposedDate=_iso(proposed))
        return await self._load(request_id)

    async def propose_new_delivery_date(self, actor: Actor, request_id: str, date: dt.datetime) -> models.Request:
        """Beneficiary counter-proposal; clears the employee's date to restart negotiation."""

        proposed = models.as_naive_utc(date)
        async with self._unit_of_work():
            request = await self._load(request_id)
            await self._update(
                request,
                RequestStatus.SUBMITTED,
                proposed_delivery_date=proposed,
                scheduled_pickup_date=None,
            )
        await self._log(actor, AuditAction.PROPOSE_NEW_DELIVERY_DATE, request_id, proposedDate=_iso(proposed))
        return await self._load(request_id)

    async def accept_employee_proposed_date(self, actor: Actor, request_id: str) -> models.Request:
        async with self._unit_of_work():
            request = await self._load(request_id)
            if request.status == RequestStatus.SUBMITTED and request.scheduled_pickup_date is None:
                raise InvalidStateTransition(f"Request {request_id} has no proposed pickup date to accept")
            await self._update(request, RequestStatus.SUBMITTED, status=int(RequestStatus.ACCEPTED_PENDING_PICKUP))
            scheduled = request.scheduled_pickup_date
        await self._log(
            actor, AuditAction.ACCEPT_EMPLOYEE_PROPOSED_DATE, request_id, scheduledPickupDate=_iso(scheduled)
        )
        return await self._load(request_id)

    async def complete_request(self, actor: Actor, request_id: str) -> models.Request:
        async with self._unit_of_work():
            request = await self._load(request_id)
            await self._update(request, RequestStatus.ACCEPTED_PENDING_PICKUP, status=int(RequestStatus.COMPLETED))
            for item in request.items:
                await self.catalog.consume(item.batch_id, item.quantity)
            total = request.total_items
        await self._log(actor, AuditAction.COMPLETE_REQUEST, request_id, totalItems=total)
        return await self._load(request_id)

    async def cancel_delivery(
        self, actor: Actor, request_id: str, beneficiary_absent: bool = False
    ) -> models.Request:
        async with self._unit_of_work():
            request = await self._load(request_id)
            await self._update(request, RequestStatus.ACCEPTED_PENDING_PICKUP, status=int(RequestStatus.CANCELLED))
            for item in request.items:
                await self.catalog.release(item.batch_id, item.quantity)
            if beneficiary_absent:
                await self._record_absence(request.user_id)
        await self._log(actor, AuditAction.CANCEL_DELIVERY, request_id, beneficiaryAbsent=beneficiary_absent)
        return await self._load(request_id)

    async def _record_absence(self, user_id: str) -> None:
        result = await self.session.execute(
            update(models.User)
            .where(models.User.id == user_id)
            .values(absence_count=models.User.absence_count + 1, last_absence_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("User %s not found, absence not recorded", user_id)

    async def reschedule_delivery(
        self, actor: Actor, request_id: str, new_date: dt.datetime, by_employee: bool
    ) -> models.Request:
        """Reopen an accepted request for negotiation around ``new_date``."""

        proposed = models.as_naive_utc(new_date)
        if by_employee:
            dates = {"scheduled_pickup_date": proposed, "proposed_delivery_date": None}
        else:
            dates = {"scheduled_pickup_date": None, "proposed_delivery_date": proposed}
        async with self._unit_of_work():
            request = await self._load(request_id)
            await self._update(
                request, RequestStatus.ACCEPTED_PENDING_PICKUP, status=int(RequestStatus.SUBMITTED), **dates
            )
        await self._log(
            actor,
            AuditAction.RESCHEDULE_DELIVERY,
            request_id,
            newDate=_iso(proposed),
            isEmployeeRescheduling=by_employee,
        )
        return await self._load(request_id)

    async def create_urgent_request(
        self, actor: Actor, beneficiary_id: str, selections: Mapping[str, int]
    ) -> models.Request:
        """Hand stock over on the spot: reserve, consume and record a COMPLETED request."""

        async with self._unit_of_work():
            allocations = await self._allocate(selections)
            if not allocations:
                raise NoStockAvailable("None of the selected items has stock available")
            for allocation in allocations:
                await self.catalog.consume(allocation.batch_id, allocation.quantity)
            now = models.utcnow()
            request = models.Request(
                id=models.new_id(),
                user_id=beneficiary_id,
                status=int(RequestStatus.COMPLETED),
                submission_date=now,
                scheduled_pickup_date=now,
                total_items=sum(allocation.quantity for allocation in allocations),
                updated_at=now,
                items=[
                    models.RequestItem(batch_id=allocation.batch_id, quantity=allocation.quantity, position=index)
                    for index, allocation in enumerate(allocations)
                ],
            )
            self.session.add(request)
        await self._log(
            actor,
            AuditAction.CREATE_URGENT_REQUEST,
            request.id,
            beneficiaryId=beneficiary_id,
            totalItems=request.total_items,
        )
        return await self._load(request.id)

    async def get_request(self, request_id: str) -> models.Request:
        return await self._load(request_id)

    async def list_user_requests(self, user_id: str) -> list[models.Request]:
        result = await self.session.execute(
            self._request_query()
            .where(models.Request.user_id == user_id)
            .order_by(models.Request.submission_date.desc(), models.Request.id.desc())
        )
        return self._detach(list(result.scalars().all()))

    async def get_requests_paginated(
        self,
        limit: int,
        after: Cursor | None = None,
        status: RequestStatus | None = None,
    ) -> Page:
        stmt = self._request_query()
        if status is not None:
            stmt = stmt.where(models.Request.status == int(status))
        page = await ordered_page(self.session, stmt, REQUEST_ORDER, limit, after)
        self._detach(page.rows)
        return page

    async def get_pending_requests_count(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(models.Request).where(
                models.Request.status == int(RequestStatus.SUBMITTED)
            )
        )
        return int(result.scalar_one())
