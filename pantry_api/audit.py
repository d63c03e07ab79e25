"""Audit trail: best-effort writer plus the read queries behind the audit routes."""

from __future__ import annotations

import datetime as dt
import enum
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models

logger = logging.getLogger(__name__)


class AuditAction(str, enum.Enum):
    ADD_ITEM = "add_item"
    REMOVE_ITEM = "remove_item"
    ACCEPT_REQUEST = "accept_request"
    DECLINE_REQUEST = "decline_request"
    ACCEPT_APPLICATION = "accept_application"
    DECLINE_APPLICATION = "decline_application"
    SUBMIT_REQUEST = "submit_request"
    PROPOSE_NEW_DATE = "propose_new_date"
    PROPOSE_NEW_DELIVERY_DATE = "propose_new_delivery_date"
    ACCEPT_EMPLOYEE_PROPOSED_DATE = "accept_employee_proposed_date"
    COMPLETE_REQUEST = "complete_request"
    CANCEL_DELIVERY = "cancel_delivery"
    RESCHEDULE_DELIVERY = "reschedule_delivery"
    CREATE_URGENT_REQUEST = "create_urgent_request"
    CAMPAIGN_RECEIVE_PRODUCT = "campaign_receive_product"


VALID_ACTIONS = [action.value for action in AuditAction]

CAMPAIGN_RECEIPT_ACTIONS = (AuditAction.ADD_ITEM.value, AuditAction.CAMPAIGN_RECEIVE_PRODUCT.value)


class AuditSink:
    """Writes audit entries in a session of their own.

    A failed write is logged and reported as ``False``; it never raises, so the
    state change being audited is unaffected.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def log_action(
        self,
        action: AuditAction | str,
        user_id: str | None,
        details: dict[str, Any] | None = None,
        user_name: str | None = None,
    ) -> bool:
        value = action.value if isinstance(action, AuditAction) else str(action)
        try:
            async with self._session_factory() as session:
                session.add(
                    models.AuditLog(
                        action=value,
                        timestamp=models.utcnow(),
                        user_id=user_id,
                        user_name=user_name,
                        details=details or {},
                    )
                )
                await session.commit()
        except Exception:
            logger.exception("Failed to write audit entry %s for user %s", value, user_id)
            return False
        logger.info("Audit entry written: %s by %s", value, user_id)
        return True


async def logs_between(session: AsyncSession, start: dt.datetime, end: dt.datetime) -> list[dict[str, Any]]:
    result = await session.execute(
        select(models.AuditLog)
        .where(models.AuditLog.timestamp >= start, models.AuditLog.timestamp <= end)
        .order_by(models.AuditLog.timestamp.desc(), models.AuditLog.id.desc())
    )
    rows = result.scalars().all()

    missing = {row.user_id for row in rows if row.user_id and not row.user_name}
    names: dict[str, str | None] = {}
    if missing:
        users = await session.execute(select(models.User.id, models.User.name).where(models.User.id.in_(missing)))
        names = {user_id: name for user_id, name in users.all()}

    return [
        {
            "id": row.id,
            "action": row.action,
            "timestamp": row.timestamp,
            "user_id": row.user_id,
            "user_name": row.user_name or names.get(row.user_id),
            "details": row.details or {},
        }
        for row in rows
    ]


async def campaign_products(session: AsyncSession, campaign_id: str) -> list[dict[str, Any]]:
    """Products received for a campaign, newest first.

    Receipts store the campaign *name* under ``details["campaignId"]``, so the
    campaign is resolved to its name first. When no campaign row exists the
    path value is matched as-is.
    """

    campaign = await session.get(models.Campaign, campaign_id)
    match = campaign.name if campaign is not None else campaign_id
    if campaign is None:
        logger.warning("Campaign %s not found, matching receipts on the raw value", campaign_id)

    result = await session.execute(
        select(models.AuditLog)
        .where(models.AuditLog.action.in_(CAMPAIGN_RECEIPT_ACTIONS))
        .order_by(models.AuditLog.timestamp.desc())
    )
    receipts = [row for row in result.scalars().all() if (row.details or {}).get("campaignId") == match]

    barcodes = {row.details.get("barcode") for row in receipts if row.details.get("barcode")}
    products: dict[str, models.Product] = {}
    if barcodes:
        found = await session.execute(select(models.Product).where(models.Product.barcode.in_(barcodes)))
        products = {product.barcode: product for product in found.scalars().all()}

    entries = []
    for row in receipts:
        barcode = row.details.get("barcode")
        product = products.get(barcode) if barcode else None
        entries.append(
            {
                "item_id": row.details.get("itemId"),
                "quantity": row.details.get("quantity") or 0,
                "barcode": barcode,
                "timestamp": row.timestamp,
                "user_id": row.user_id,
                "product": (
                    {
                        "id": product.barcode,
                        "name": product.name or "",
                        "brand": product.brand or "",
                        "category": product.category,
                        "image_url": product.image_url or "",
                    }
                    if product is not None
                    else None
                ),
            }
        )
    return entries
