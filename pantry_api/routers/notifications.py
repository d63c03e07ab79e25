import logging

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..errors import api_error
from ..notifications import NotificationResult, Notifier
from .common import get_notifier

logger = logging.getLogger(__name__)

router = APIRouter()


def _require(**fields: object) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "notifications.missing_fields",
            f"{' and '.join(fields)} {'is' if len(fields) == 1 else 'are'} required",
        )


def _respond(result: NotificationResult) -> schemas.NotificationResponse:
    return schemas.NotificationResponse(
        success=result.success,
        message="Notification sent" if result.success else "Failed to send notification",
        error=result.error,
    )


@router.post("/new-application", response_model=schemas.NotificationResponse)
async def new_application(
    payload: schemas.ApplicationNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(applicationId=payload.application_id)
    return _respond(await notifier.notify_new_application(payload.application_id))


@router.post("/date-proposed-or-accepted", response_model=schemas.NotificationResponse)
async def date_proposed_or_accepted(
    payload: schemas.DateProposedOrAcceptedNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(requestId=payload.request_id, recipientUserId=payload.recipient_user_id)
    result = await notifier.notify_date_proposed_or_accepted(
        payload.request_id, payload.recipient_user_id, payload.is_accepted
    )
    return _respond(result)


@router.post("/beneficiary-date-proposal", response_model=schemas.NotificationResponse)
async def beneficiary_date_proposal(
    payload: schemas.RequestNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(requestId=payload.request_id)
    return _respond(await notifier.notify_beneficiary_date_proposal(payload.request_id))


@router.post("/new-request", response_model=schemas.NotificationResponse)
async def new_request(
    payload: schemas.RequestNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(requestId=payload.request_id)
    return _respond(await notifier.notify_new_request(payload.request_id))


@router.post("/pickup-reminder", response_model=schemas.NotificationResponse)
async def pickup_reminder(
    payload: schemas.BeneficiaryNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(requestId=payload.request_id, beneficiaryUserId=payload.beneficiary_user_id)
    return _respond(await notifier.notify_pickup_reminder(payload.request_id, payload.beneficiary_user_id))


@router.post("/request-accepted", response_model=schemas.NotificationResponse)
async def request_accepted(
    payload: schemas.BeneficiaryNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(requestId=payload.request_id, beneficiaryUserId=payload.beneficiary_user_id)
    return _respond(await notifier.notify_request_accepted(payload.request_id, payload.beneficiary_user_id))


@router.post("/application-accepted", response_model=schemas.NotificationResponse)
async def application_accepted(
    payload: schemas.ApplicantNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(applicationId=payload.application_id, applicantUserId=payload.applicant_user_id)
    result = await notifier.notify_application_accepted(payload.application_id, payload.applicant_user_id)
    return _respond(result)


@router.post("/application-rejected", response_model=schemas.NotificationResponse)
async def application_rejected(
    payload: schemas.ApplicantNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(applicationId=payload.application_id, applicantUserId=payload.applicant_user_id)
    result = await notifier.notify_application_rejected(payload.application_id, payload.applicant_user_id)
    return _respond(result)


@router.post("/request-rejected", response_model=schemas.NotificationResponse)
async def request_rejected(
    payload: schemas.BeneficiaryNotification,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.NotificationResponse:
    _require(requestId=payload.request_id, beneficiaryUserId=payload.beneficiary_user_id)
    return _respond(await notifier.notify_request_rejected(payload.request_id, payload.beneficiary_user_id))


@router.post("/pickup-reminders", response_model=schemas.PickupReminderResult)
async def pickup_reminders(
    payload: schemas.PickupReminderSweep | None = None,
    notifier: Notifier = Depends(get_notifier),
) -> schemas.PickupReminderResult:
    result = await notifier.send_pickup_reminders(payload.day if payload else None)
    return schemas.PickupReminderResult(**result)
