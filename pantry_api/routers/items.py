"""Routers for requestable items and stock intake."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..aggregator import list_requestable_items
from ..audit import AuditAction, AuditSink
from ..auth import get_actor
from ..catalog import StockCatalog
from ..deps import get_session
from ..errors import NotFound
from ..lifecycle import Actor
from ..pagination import Cursor
from .common import get_audit_sink

router = APIRouter()


def _build_batch_response(batch: models.StockBatch) -> schemas.StockBatchResponse:
    return schemas.StockBatchResponse(
        id=batch.id,
        product_barcode=batch.product_barcode,
        quantity=batch.quantity,
        reserved_quantity=batch.reserved_quantity,
        available=batch.available,
        expiry_date=batch.expiry_date,
        campaign_id=batch.campaign_id,
        version=batch.version,
    )


@router.get("", response_model=schemas.ItemsPageResponse)
async def list_items(
    page_size: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
) -> schemas.ItemsPageResponse:
    page = await list_requestable_items(session, page_size, Cursor.decode(cursor) if cursor else None)
    return schemas.ItemsPageResponse(
        items=[
            schemas.RequestableItemResponse(
                product_ref=item.product_ref,
                name=item.name,
                brand=item.brand,
                category=item.category,
                image_url=item.image_url,
                total_available=item.total_available,
                nearest_expiry=item.nearest_expiry,
                pagination_cursor=item.pagination_cursor.encode(),
                batches=[
                    schemas.BatchAvailabilityResponse(
                        batch_id=batch.batch_id,
                        available=batch.available,
                        expiry_date=batch.expiry_date,
                    )
                    for batch in item.batches
                ],
            )
            for item in page.items
        ],
        has_more=page.has_more,
        next_cursor=page.next_cursor.encode() if page.next_cursor else None,
    )


@router.post("/stock", response_model=schemas.StockBatchResponse, status_code=status.HTTP_201_CREATED)
async def add_stock(
    payload: schemas.StockBatchCreate,
    session: AsyncSession = Depends(get_session),
    sink: AuditSink = Depends(get_audit_sink),
    actor: Actor = Depends(get_actor),
) -> schemas.StockBatchResponse:
    campaign_name = None
    if payload.campaign_id:
        campaign = await session.get(models.Campaign, payload.campaign_id)
        # receipts are matched on the campaign name, see audit.campaign_products
        campaign_name = campaign.name if campaign is not None else payload.campaign_id
    batch = await StockCatalog(session).add_batch(
        payload.product_barcode,
        payload.quantity,
        expiry_date=payload.expiry_date,
        campaign_id=payload.campaign_id,
    )
    await session.commit()

    details = {"itemId": batch.id, "barcode": batch.product_barcode, "quantity": batch.quantity}
    if campaign_name:
        details["campaignId"] = campaign_name
    await sink.log_action(AuditAction.ADD_ITEM, actor.user_id, details, actor.user_name)
    return _build_batch_response(batch)


@router.get("/stock/{batch_id}", response_model=schemas.StockBatchResponse)
async def get_stock(batch_id: str, session: AsyncSession = Depends(get_session)) -> schemas.StockBatchResponse:
    batch = await StockCatalog(session).get_batch(batch_id)
    if batch is None:
        raise NotFound(f"Stock batch {batch_id} not found")
    return _build_batch_response(batch)


@router.post("/stock/{batch_id}/remove", response_model=schemas.StockBatchResponse)
async def remove_stock(
    batch_id: str,
    payload: schemas.StockRemove,
    session: AsyncSession = Depends(get_session),
    sink: AuditSink = Depends(get_audit_sink),
    actor: Actor = Depends(get_actor),
) -> schemas.StockBatchResponse:
    catalog = StockCatalog(session)
    await catalog.remove_units(batch_id, payload.quantity)
    await session.commit()
    batch = await catalog.get_batch(batch_id)

    await sink.log_action(
        AuditAction.REMOVE_ITEM,
        actor.user_id,
        {"itemId": batch_id, "barcode": batch.product_barcode, "quantity": payload.quantity, "reason": payload.reason},
        actor.user_name,
    )
    return _build_batch_response(batch)
