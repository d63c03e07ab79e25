from __future__ import annotations

import datetime as dt
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Bodies of the routes the mobile app already calls with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)


Quantity = Annotated[int, Field(gt=0)]


class AuditLogCreate(CamelModel):
    action: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    user_name: Optional[str] = Field(default=None, alias="userName")
    details: Optional[dict[str, Any]] = None


class AuditLogCreated(BaseModel):
    success: bool
    message: str


class AuditEntry(CamelModel):
    id: str
    action: str
    timestamp: dt.datetime
    user_id: Optional[str] = Field(default=None, alias="userId")
    user_name: Optional[str] = Field(default=None, alias="userName")
    details: dict[str, Any] = Field(default_factory=dict)


class AuditLogList(BaseModel):
    success: bool
    count: int
    logs: list[AuditEntry]


class CampaignProduct(CamelModel):
    id: str
    name: str
    brand: str
    category: Optional[int] = None
    image_url: str = Field(alias="imageUrl")


class CampaignReceipt(CamelModel):
    item_id: Optional[str] = Field(default=None, alias="itemId")
    quantity: int
    barcode: Optional[str] = None
    timestamp: dt.datetime
    user_id: Optional[str] = Field(default=None, alias="userId")
    product: Optional[CampaignProduct] = None


class CampaignProductList(BaseModel):
    success: bool
    count: int
    products: list[CampaignReceipt]


class ApplicationNotification(CamelModel):
    application_id: Optional[str] = Field(default=None, alias="applicationId")


class ApplicantNotification(CamelModel):
    application_id: Optional[str] = Field(default=None, alias="applicationId")
    applicant_user_id: Optional[str] = Field(default=None, alias="applicantUserId")


class RequestNotification(CamelModel):
    request_id: Optional[str] = Field(default=None, alias="requestId")


class BeneficiaryNotification(CamelModel):
    request_id: Optional[str] = Field(default=None, alias="requestId")
    beneficiary_user_id: Optional[str] = Field(default=None, alias="beneficiaryUserId")


class DateProposedOrAcceptedNotification(CamelModel):
    request_id: Optional[str] = Field(default=None, alias="requestId")
    recipient_user_id: Optional[str] = Field(default=None, alias="recipientUserId")
    is_accepted: bool = Field(default=False, alias="isAccepted")


class NotificationResponse(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None


class PickupReminderSweep(BaseModel):
    day: Optional[dt.date] = None


class PickupReminderResult(BaseModel):
    success: bool
    reminders_sent: int
    total_pickups: int


class ExpirationCheckResult(BaseModel):
    success: bool
    item_count: int
    notifications_sent: int


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    messages: list[dict[str, Any]] = Field(min_length=1)


class SubmitRequestPayload(BaseModel):
    items: dict[str, Quantity] = Field(min_length=1)
    proposed_delivery_date: Optional[dt.datetime] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class UrgentRequestPayload(BaseModel):
    beneficiary_id: str = Field(min_length=1)
    items: dict[str, Quantity] = Field(min_length=1)


class AcceptRequestPayload(BaseModel):
    scheduled_pickup_date: dt.datetime


class RejectRequestPayload(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1024)


class ProposeDatePayload(BaseModel):
    date: dt.datetime


class CancelDeliveryPayload(BaseModel):
    beneficiary_absent: bool = False


class ReschedulePayload(BaseModel):
    new_date: dt.datetime
    by_employee: bool = True


class RequestItemResponse(BaseModel):
    batch_id: str
    quantity: int
    product_ref: Optional[str] = None
    product_name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    expiry_date: Optional[dt.date] = None


class RequestResponse(BaseModel):
    id: str
    user_id: str
    status: int
    status_name: str
    submission_date: dt.datetime
    total_items: int
    scheduled_pickup_date: Optional[dt.datetime] = None
    proposed_delivery_date: Optional[dt.datetime] = None
    rejection_reason: Optional[str] = None
    items: list[RequestItemResponse] = Field(default_factory=list)


class RequestPage(BaseModel):
    requests: list[RequestResponse]
    has_more: bool
    next_cursor: Optional[str] = None


class PendingCount(BaseModel):
    count: int


class BatchAvailabilityResponse(BaseModel):
    batch_id: str
    available: int
    expiry_date: Optional[dt.date] = None


class RequestableItemResponse(BaseModel):
    product_ref: str
    name: str
    brand: Optional[str] = None
    category: str
    image_url: Optional[str] = None
    total_available: int
    nearest_expiry: Optional[dt.date] = None
    pagination_cursor: str
    batches: list[BatchAvailabilityResponse] = Field(default_factory=list)


class ItemsPageResponse(BaseModel):
    items: list[RequestableItemResponse]
    has_more: bool
    next_cursor: Optional[str] = None


class StockBatchCreate(BaseModel):
    product_barcode: str = Field(min_length=1, max_length=64)
    quantity: Quantity
    expiry_date: Optional[dt.date] = None
    campaign_id: Optional[str] = Field(default=None, max_length=255)


class StockRemove(BaseModel):
    quantity: Quantity
    reason: Optional[str] = None


class StockBatchResponse(BaseModel):
    id: str
    product_barcode: str
    quantity: int
    reserved_quantity: int
    available: int
    expiry_date: Optional[dt.date] = None
    campaign_id: Optional[str] = None
    version: int


class ProductUpsert(BaseModel):
    barcode: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    brand: Optional[str] = None
    category: Optional[int] = None
    image_url: Optional[str] = None


class ProductImportRequest(BaseModel):
    items: list[ProductUpsert]


class ProductImportResult(BaseModel):
    imported: int

