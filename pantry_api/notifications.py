"""Push notifications for request and application events.

Recipients are resolved from ``users`` (their ``fcm_token``) and messages are
handed to the push gateway over HTTP; delivery itself is the gateway's job.
Every ``notify_*`` call reports a :class:`NotificationResult` instead of
raising, because a notification must never fail the action that caused it.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from jinja2 import Template
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models
from .catalog import StockCatalog
from .deps import HTTP_TIMEOUT
from .models import RequestStatus

logger = logging.getLogger(__name__)

PUSH_GATEWAY_URL = os.getenv("PUSH_GATEWAY_URL", "http://push-gateway:8080")
PUSH_GATEWAY_KEY = os.getenv("PUSH_GATEWAY_KEY", "")
EXPIRY_WARNING_DAYS = int(os.getenv("EXPIRY_WARNING_DAYS", "3"))


@dataclass(frozen=True)
class Message:
    title: Template
    body: Template
    type: str
    screen: str
    channel: str = "default"


MESSAGES = {
    "new_application": Message(
        Template("Nova Candidatura"),
        Template("Uma nova candidatura foi submetida"),
        "new_application",
        "applicationDetail",
    ),
    "date_proposed_or_accepted": Message(
        Template("Nova Data {% if accepted %}Aceite{% else %}Proposta{% endif %}"),
        Template("Uma nova data de levantamento foi {% if accepted %}aceite{% else %}proposta{% endif %}"),
        "date_proposed_or_accepted",
        "requestDetails",
    ),
    "beneficiary_date_proposal": Message(
        Template("Nova Data Proposta"),
        Template("O beneficiário propôs uma nova data de levantamento"),
        "beneficiary_date_proposal",
        "requestDetails",
    ),
    "new_request": Message(
        Template("Novo Pedido"),
        Template("Um novo pedido foi submetido"),
        "new_request",
        "requestDetails",
    ),
    "pickup_reminder": Message(
        Template("Lembrete de Levantamento"),
        Template("Tens um levantamento agendado para hoje"),
        "pickup_reminder",
        "requestDetails",
    ),
    "request_accepted": Message(
        Template("Pedido Aceite"),
        Template("O teu pedido foi aceite"),
        "request_accepted",
        "requestDetails",
    ),
    "application_accepted": Message(
        Template("Candidatura Aceite"),
        Template("A tua candidatura foi aceite"),
        "application_accepted",
        "beneficiaryPortal",
    ),
    "application_rejected": Message(
        Template("Candidatura Rejeitada"),
        Template("A tua candidatura foi rejeitada"),
        "application_rejected",
        "applicationDetail",
    ),
    "request_rejected": Message(
        Template("Pedido Rejeitado"),
        Template("O teu pedido foi rejeitado"),
        "request_rejected",
        "requestDetails",
    ),
    "expiring_items": Message(
        Template("Aviso de Validade"),
        Template(
            "{{ count }} {% if count == 1 %}item está próximo{% else %}itens estão próximos{% endif %}"
            " do prazo de validade"
        ),
        "expiring_items",
        "expiringItems",
        channel="stock_warnings",
    ),
}


@dataclass
class NotificationResult:
    success: bool
    error: str | None = None
    sent: int = 0


class PushGateway:
    def __init__(
        self,
        base_url: str = PUSH_GATEWAY_URL,
        api_key: str = PUSH_GATEWAY_KEY,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def send(self, token: str, title: str, body: str, data: dict[str, Any], channel: str) -> NotificationResult:
        payload = {
            "token": token,
            "notification": {"title": title, "body": body},
            "data": {key: str(value) for key, value in data.items() if value is not None},
            "android": {"priority": "high", "notification": {"channelId": channel, "sound": "default"}},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                response = await client.post("/send", json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Push delivery to %s... failed: %s", token[:20], exc)
            return NotificationResult(success=False, error=str(exc))
        logger.info("Sent notification %r to %s...", title, token[:20])
        return NotificationResult(success=True, sent=1)


class Notifier:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], gateway: PushGateway) -> None:
        self._session_factory = session_factory
        self.gateway = gateway

    async def _user_token(self, user_id: str) -> str | None:
        async with self._session_factory() as session:
            user = await session.get(models.User, user_id)
        return user.fcm_token if user is not None else None

    async def _admin_tokens(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(models.User.fcm_token).where(
                    models.User.is_admin.is_(True),
                    models.User.fcm_token.is_not(None),
                )
            )
            return [token for token in result.scalars().all() if token]

    async def _deliver(self, tokens: list[str], kind: str, data: dict[str, Any], **context: Any) -> NotificationResult:
        message = MESSAGES[kind]
        title = message.title.render(**context)
        body = message.body.render(**context)
        payload = {**data, "type": message.type, "screen": message.screen}
        sent = 0
        errors: list[str] = []
        for token in tokens:
            result = await self.gateway.send(token, title, body, payload, message.channel)
            sent += result.sent
            if result.error:
                errors.append(result.error)
        logger.info("Sent %d/%d %s notifications", sent, len(tokens), kind)
        return NotificationResult(success=sent > 0, error=errors[0] if errors and not sent else None, sent=sent)

    async def _to_user(self, user_id: str, kind: str, data: dict[str, Any], **context: Any) -> NotificationResult:
        try:
            token = await self._user_token(user_id)
        except Exception as exc:
            logger.exception("Could not resolve push token for user %s", user_id)
            return NotificationResult(success=False, error=str(exc))
        if not token:
            logger.info("No push token for user %s, skipping %s", user_id, kind)
            return NotificationResult(success=False)
        return await self._deliver([token], kind, data, **context)

    async def _to_admins(self, kind: str, data: dict[str, Any], **context: Any) -> NotificationResult:
        try:
            tokens = await self._admin_tokens()
        except Exception as exc:
            logger.exception("Could not resolve admin push tokens")
            return NotificationResult(success=False, error=str(exc))
        if not tokens:
            logger.info("No admin users with push tokens for %s", kind)
            return NotificationResult(success=False)
        return await self._deliver(tokens, kind, data, **context)

    async def notify_new_application(self, application_id: str) -> NotificationResult:
        return await self._to_admins("new_application", {"applicationId": application_id})

    async def notify_date_proposed_or_accepted(
        self, request_id: str, recipient_user_id: str, is_accepted: bool = False
    ) -> NotificationResult:
        return await self._to_user(
            recipient_user_id, "date_proposed_or_accepted", {"requestId": request_id}, accepted=is_accepted
        )

    async def notify_beneficiary_date_proposal(self, request_id: str) -> NotificationResult:
        return await self._to_admins("beneficiary_date_proposal", {"requestId": request_id})

    async def notify_new_request(self, request_id: str) -> NotificationResult:
        return await self._to_admins("new_request", {"requestId": request_id})

    async def notify_pickup_reminder(self, request_id: str, beneficiary_user_id: str) -> NotificationResult:
        return await self._to_user(beneficiary_user_id, "pickup_reminder", {"requestId": request_id})

    async def notify_request_accepted(self, request_id: str, beneficiary_user_id: str) -> NotificationResult:
        return await self._to_user(beneficiary_user_id, "request_accepted", {"requestId": request_id})

    async def notify_application_accepted(self, application_id: str, applicant_user_id: str) -> NotificationResult:
        return await self._to_user(applicant_user_id, "application_accepted", {"applicationId": application_id})

    async def notify_application_rejected(self, application_id: str, applicant_user_id: str) -> NotificationResult:
        return await self._to_user(applicant_user_id, "application_rejected", {"applicationId": application_id})

    async def notify_request_rejected(self, request_id: str, beneficiary_user_id: str) -> NotificationResult:
        return await self._to_user(beneficiary_user_id, "request_rejected", {"requestId": request_id})

    async def send_pickup_reminders(self, day: dt.date | None = None) -> dict[str, Any]:
        """Remind every beneficiary with an accepted pickup scheduled on ``day``."""

        day = day or models.utcnow().date()
        start = dt.datetime.combine(day, dt.time.min)
        async with self._session_factory() as session:
            result = await session.execute(
                select(models.Request.id, models.Request.user_id).where(
                    models.Request.status == int(RequestStatus.ACCEPTED_PENDING_PICKUP),
                    models.Request.scheduled_pickup_date >= start,
                    models.Request.scheduled_pickup_date < start + dt.timedelta(days=1),
                )
            )
            pickups = result.all()
        logger.info("Found %d pickups scheduled for %s", len(pickups), day.isoformat())

        sent = 0
        for request_id, user_id in pickups:
            reminder = await self.notify_pickup_reminder(request_id, user_id)
            if reminder.success:
                sent += 1
        logger.info("Sent %d/%d pickup reminders", sent, len(pickups))
        return {"success": True, "reminders_sent": sent, "total_pickups": len(pickups)}

    async def check_expiring_items(
        self, days_threshold: int = EXPIRY_WARNING_DAYS, today: dt.date | None = None
    ) -> dict[str, Any]:
        """Warn admins about batches that expire within ``days_threshold`` days."""

        today = today or models.utcnow().date()
        async with self._session_factory() as session:
            batches = await StockCatalog(session).expiring_batches(today + dt.timedelta(days=days_threshold), today)
        count = len(batches)
        logger.info("Found %d batches expiring within %d days", count, days_threshold)

        sent = 0
        if count:
            result = await self._to_admins("expiring_items", {"itemCount": count}, count=count)
            sent = result.sent
        return {"success": True, "item_count": count, "notifications_sent": sent}
