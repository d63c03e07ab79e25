"""Dependencies and response builders shared by the routers."""

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..audit import AuditSink
from ..deps import get_session, get_sessionmaker
from ..lifecycle import RequestLifecycle
from ..notifications import Notifier, PushGateway


def get_audit_sink() -> AuditSink:
    return AuditSink(get_sessionmaker())


def get_push_gateway() -> PushGateway:
    return PushGateway()


def get_notifier(gateway: PushGateway = Depends(get_push_gateway)) -> Notifier:
    return Notifier(get_sessionmaker(), gateway)


def get_lifecycle(
    session: AsyncSession = Depends(get_session),
    sink: AuditSink = Depends(get_audit_sink),
) -> RequestLifecycle:
    return RequestLifecycle(session, sink)


def build_request_response(request: models.Request) -> schemas.RequestResponse:
    items = []
    for item in request.items:
        batch = item.batch
        product = batch.product if batch is not None else None
        items.append(
            schemas.RequestItemResponse(
                batch_id=item.batch_id,
                quantity=item.quantity,
                product_ref=batch.product_barcode if batch is not None else None,
                product_name=product.name if product is not None else None,
                brand=product.brand if product is not None else None,
                category=models.category_label(product.category) if product is not None else None,
                expiry_date=batch.expiry_date if batch is not None else None,
            )
        )
    return schemas.RequestResponse(
        id=request.id,
        user_id=request.user_id,
        status=request.status,
        status_name=models.RequestStatus(request.status).name,
        submission_date=request.submission_date,
        total_items=request.total_items,
        scheduled_pickup_date=request.scheduled_pickup_date,
        proposed_delivery_date=request.proposed_delivery_date,
        rejection_reason=request.rejection_reason,
        items=items,
    )


def safe_detail(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if not isinstance(data, dict):
        return default
    for key in ("detail", "error", "message"):
        value = data.get(key)
        if isinstance(value, str):
            return value
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"]
    return default
