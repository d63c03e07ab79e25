"""Routers for the pickup request lifecycle."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from .. import schemas
from ..auth import get_actor
from ..lifecycle import Actor, RequestLifecycle
from ..models import RequestStatus
from ..notifications import Notifier
from ..pagination import Cursor
from .common import build_request_response, get_lifecycle, get_notifier

router = APIRouter()


@router.post("", response_model=schemas.RequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    payload: schemas.SubmitRequestPayload,
    background: BackgroundTasks,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    notifier: Notifier = Depends(get_notifier),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.submit_request(
        actor,
        payload.items,
        proposed_delivery_date=payload.proposed_delivery_date,
        idempotency_key=payload.idempotency_key,
    )
    background.add_task(notifier.notify_new_request, request.id)
    return build_request_response(request)


@router.post("/urgent", response_model=schemas.RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_urgent_request(
    payload: schemas.UrgentRequestPayload,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.create_urgent_request(actor, payload.beneficiary_id, payload.items)
    return build_request_response(request)


@router.get("", response_model=schemas.RequestPage)
async def list_requests(
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
    status_filter: int | None = Query(None, alias="status", ge=0, le=4),
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
) -> schemas.RequestPage:
    after = Cursor.decode(cursor) if cursor else None
    page = await lifecycle.get_requests_paginated(
        limit, after, RequestStatus(status_filter) if status_filter is not None else None
    )
    return schemas.RequestPage(
        requests=[build_request_response(request) for request in page.rows],
        has_more=page.has_more,
        next_cursor=page.next_cursor.encode() if page.next_cursor else None,
    )


@router.get("/pending/count", response_model=schemas.PendingCount)
async def pending_count(lifecycle: RequestLifecycle = Depends(get_lifecycle)) -> schemas.PendingCount:
    return schemas.PendingCount(count=await lifecycle.get_pending_requests_count())


@router.get("/user/{user_id}", response_model=list[schemas.RequestResponse])
async def list_user_requests(
    user_id: str,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
) -> list[schemas.RequestResponse]:
    return [build_request_response(request) for request in await lifecycle.list_user_requests(user_id)]


@router.get("/{request_id}", response_model=schemas.RequestResponse)
async def get_request(
    request_id: str,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
) -> schemas.RequestResponse:
    return build_request_response(await lifecycle.get_request(request_id))


@router.post("/{request_id}/accept", response_model=schemas.RequestResponse)
async def accept_request(
    request_id: str,
    payload: schemas.AcceptRequestPayload,
    background: BackgroundTasks,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    notifier: Notifier = Depends(get_notifier),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.accept_request(actor, request_id, payload.scheduled_pickup_date)
    background.add_task(notifier.notify_request_accepted, request.id, request.user_id)
    return build_request_response(request)


@router.post("/{request_id}/reject", response_model=schemas.RequestResponse)
async def reject_request(
    request_id: str,
    payload: schemas.RejectRequestPayload,
    background: BackgroundTasks,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    notifier: Notifier = Depends(get_notifier),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.reject_request(actor, request_id, payload.reason)
    background.add_task(notifier.notify_request_rejected, request.id, request.user_id)
    return build_request_response(request)


@router.post("/{request_id}/propose-date", response_model=schemas.RequestResponse)
async def propose_new_date(
    request_id: str,
    payload: schemas.ProposeDatePayload,
    background: BackgroundTasks,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    notifier: Notifier = Depends(get_notifier),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.propose_new_date(actor, request_id, payload.date)
    background.add_task(notifier.notify_date_proposed_or_accepted, request.id, request.user_id, False)
    return build_request_response(request)


@router.post("/{request_id}/propose-delivery-date", response_model=schemas.RequestResponse)
async def propose_new_delivery_date(
    request_id: str,
    payload: schemas.ProposeDatePayload,
    background: BackgroundTasks,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    notifier: Notifier = Depends(get_notifier),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.propose_new_delivery_date(actor, request_id, payload.date)
    background.add_task(notifier.notify_beneficiary_date_proposal, request.id)
    return build_request_response(request)


@router.post("/{request_id}/accept-proposed-date", response_model=schemas.RequestResponse)
async def accept_employee_proposed_date(
    request_id: str,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    return build_request_response(await lifecycle.accept_employee_proposed_date(actor, request_id))


@router.post("/{request_id}/complete", response_model=schemas.RequestResponse)
async def complete_request(
    request_id: str,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    return build_request_response(await lifecycle.complete_request(actor, request_id))


@router.post("/{request_id}/cancel", response_model=schemas.RequestResponse)
async def cancel_delivery(
    request_id: str,
    payload: schemas.CancelDeliveryPayload,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.cancel_delivery(actor, request_id, beneficiary_absent=payload.beneficiary_absent)
    return build_request_response(request)


@router.post("/{request_id}/reschedule", response_model=schemas.RequestResponse)
async def reschedule_delivery(
    request_id: str,
    payload: schemas.ReschedulePayload,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
    actor: Actor = Depends(get_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.reschedule_delivery(actor, request_id, payload.new_date, payload.by_employee)
    return build_request_response(request)
