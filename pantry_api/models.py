"""SQLAlchemy models for the pantry API service."""

import datetime as dt
import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> dt.datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""

    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: dt.datetime | None) -> dt.datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class RequestStatus(enum.IntEnum):
    SUBMITTED = 0
    ACCEPTED_PENDING_PICKUP = 1
    COMPLETED = 2
    CANCELLED = 3
    REJECTED = 4

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.REJECTED}
)


class ProductCategory(enum.IntEnum):
    FOOD = 1
    HOUSEHOLD = 2
    PERSONAL_HYGIENE = 3


CATEGORY_LABELS = {
    ProductCategory.FOOD: "Alimentar",
    ProductCategory.HOUSEHOLD: "Limpeza",
    ProductCategory.PERSONAL_HYGIENE: "Higiene",
}


def category_label(category: int | None) -> str:
    try:
        return CATEGORY_LABELS[ProductCategory(category)]
    except ValueError:
        return "Geral"


class Product(Base):
    """Catalog metadata keyed by barcode."""

    __tablename__ = "products"

    barcode = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    brand = Column(String(255))
    category = Column(Integer)
    image_url = Column(String(1024))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    batches = relationship("StockBatch", back_populates="product")


class StockBatch(Base):
    """One receipt of physical stock for a product."""

    __tablename__ = "stock_batches"

    id = Column(String(36), primary_key=True, default=new_id)
    product_barcode = Column(String(64), ForeignKey("products.barcode"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    expiry_date = Column(Date)
    campaign_id = Column(String(255))
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    product = relationship("Product", back_populates="batches")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="stock_batches_quantity_non_negative"),
        CheckConstraint(
            "reserved_quantity >= 0 AND reserved_quantity <= quantity",
            name="stock_batches_reserved_within_quantity",
        ),
        Index("stock_batches_product_expiry_idx", product_barcode, expiry_date),
    )

    @property
    def available(self) -> int:
        return self.quantity - self.reserved_quantity


class Request(Base):
    """A beneficiary's pickup request."""

    __tablename__ = "requests"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True)
    status = Column(Integer, nullable=False, default=int(RequestStatus.SUBMITTED))
    submission_date = Column(DateTime, nullable=False, default=utcnow)
    total_items = Column(Integer, nullable=False, default=0)
    scheduled_pickup_date = Column(DateTime)
    proposed_delivery_date = Column(DateTime)
    rejection_reason = Column(String(1024))
    idempotency_key = Column(String(128))
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    items = relationship(
        "RequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestItem.position",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="requests_user_idempotency_uq"),
        Index("requests_status_submission_idx", status, submission_date),
    )


class RequestItem(Base):
    """Units of one stock batch allocated to a request."""

    __tablename__ = "request_items"

    id = Column(String(36), primary_key=True, default=new_id)
    request_id = Column(String(36), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False)
    batch_id = Column(String(36), ForeignKey("stock_batches.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    request = relationship("Request", back_populates="items")
    batch = relationship("StockBatch")

    __table_args__ = (
        UniqueConstraint("request_id", "batch_id", name="request_items_request_batch_uq"),
        CheckConstraint("quantity > 0", name="request_items_quantity_positive"),
    )


class AuditLog(Base):
    """Append-only audit trail entry."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(64), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    user_id = Column(String(128))
    user_name = Column(String(255))
    details = Column(JSON, nullable=False, default=dict)


class User(Base):
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    name = Column(String(255))
    email = Column(String(255))
    fcm_token = Column(String(512))
    is_admin = Column(Boolean, nullable=False, default=False)
    absence_count = Column(Integer, nullable=False, default=0)
    last_absence_at = Column(DateTime)


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    start_date = Column(Date)
    end_date = Column(Date)
