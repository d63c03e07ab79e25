import datetime as dt
import logging

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import audit, models, schemas
from ..deps import get_session
from ..errors import api_error
from .common import get_audit_sink

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_iso(value: str | None, name: str) -> dt.datetime:
    if not value:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "audit.missing_dates",
            "Both startDate and endDate query parameters are required (ISO 8601 format)",
        )
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "audit.invalid_date",
            f"Invalid {name}. Use ISO 8601 format (e.g., 2024-01-01T00:00:00Z)",
        ) from exc
    return models.as_naive_utc(parsed)


async def _read_log_payload(request: Request) -> schemas.AuditLogCreate:
    try:
        return schemas.AuditLogCreate.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        raise api_error(status.HTTP_400_BAD_REQUEST, "audit.invalid_body", "Invalid audit log body") from exc


@router.post("/log", response_model=schemas.AuditLogCreated, status_code=status.HTTP_201_CREATED)
async def create_log(
    request: Request,
    sink: audit.AuditSink = Depends(get_audit_sink),
) -> schemas.AuditLogCreated:
    payload = await _read_log_payload(request)
    if payload.action not in audit.VALID_ACTIONS:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "audit.invalid_action",
            f"Invalid action type. Valid actions: {', '.join(audit.VALID_ACTIONS)}",
        )
    stored = await sink.log_action(payload.action, payload.user_id, payload.details, payload.user_name)
    if not stored:
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "audit.write_failed", "Failed to create audit log")
    return schemas.AuditLogCreated(success=True, message="Audit log created successfully")


@router.get("/logs", response_model=schemas.AuditLogList)
async def list_logs(
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    session: AsyncSession = Depends(get_session),
) -> schemas.AuditLogList:
    start = _parse_iso(start_date, "startDate")
    end = _parse_iso(end_date, "endDate")
    rows = await audit.logs_between(session, start, end)
    logger.info("Retrieved %d audit logs between %s and %s", len(rows), start_date, end_date)
    return schemas.AuditLogList(
        success=True,
        count=len(rows),
        logs=[schemas.AuditEntry(**row) for row in rows],
    )


@router.get("/campaign/{campaign_id}/products", response_model=schemas.CampaignProductList)
async def list_campaign_products(
    campaign_id: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.CampaignProductList:
    receipts = await audit.campaign_products(session, campaign_id)
    return schemas.CampaignProductList(
        success=True,
        count=len(receipts),
        products=[schemas.CampaignReceipt(**receipt) for receipt in receipts],
    )
