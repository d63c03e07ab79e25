import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..deps import get_session
from ..errors import api_error

logger = logging.getLogger(__name__)

router = APIRouter()


async def upsert_products(session: AsyncSession, items: list[schemas.ProductUpsert]) -> int:
    """Create or update catalog entries by barcode; the last entry for a barcode wins."""

    latest = {item.barcode: item for item in items}
    found = await session.execute(select(models.Product).where(models.Product.barcode.in_(list(latest))))
    existing = {product.barcode: product for product in found.scalars().all()}
    now = models.utcnow()
    for barcode, item in latest.items():
        fields = item.model_dump(exclude={"barcode"}, exclude_none=True)
        product = existing.get(barcode)
        if product is None:
            session.add(models.Product(barcode=barcode, created_at=now, updated_at=now, **fields))
            continue
        for name, value in fields.items():
            setattr(product, name, value)
        product.updated_at = now
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise api_error(
            status.HTTP_409_CONFLICT, "import.conflict", "Products changed while importing, retry the import"
        ) from exc
    logger.info("Upserted %d products (%d new)", len(latest), len(latest) - len(existing))
    return len(latest)


@router.post("/import", response_model=schemas.ProductImportResult)
async def import_products(
    payload: schemas.ProductImportRequest,
    session: AsyncSession = Depends(get_session),
) -> schemas.ProductImportResult:
    if not payload.items:
        raise api_error(status.HTTP_400_BAD_REQUEST, "import.empty", "At least one product is required")
    return schemas.ProductImportResult(imported=await upsert_products(session, payload.items))
