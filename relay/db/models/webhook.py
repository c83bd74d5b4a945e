"""Webhook and delivery models.

Includes:
- Webhook: subscription to tenant events with signing secret and retry policy
- WebhookDelivery: one logical delivery of one event to one webhook,
  updated in place across retry attempts
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field, SQLModel

from relay.config import (
    WEBHOOK_DEFAULT_BACKOFF_MULTIPLIER,
    WEBHOOK_DEFAULT_INITIAL_DELAY_MS,
    WEBHOOK_DEFAULT_MAX_RETRIES,
)
from relay.db.models.base import UUIDModel, TimestampMixin
from relay.resilience.retry import RetryPolicy


# =============================================================================
# Enums
# =============================================================================


class DeliveryStatus(str, Enum):
    """Status of a webhook delivery.

    pending -> success | retrying | failed
    retrying -> success | retrying | failed
    success and failed are terminal until a manual retry resets to pending.
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


class DeliveryOutcome(str, Enum):
    """Outcome of a single attempt, recorded as the webhook's last delivery status."""

    SUCCESS = "success"
    FAILED = "failed"  # endpoint answered with a non-2xx status
    ERROR = "error"  # timeout or transport error


class WebhookEventType(str, Enum):
    """Events the portal emits."""

    TEST_PING = "test.ping"
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    INVOICE_CREATED = "invoice.created"
    INVOICE_PAID = "invoice.paid"
    DOCUMENT_PROCESSED = "document.processed"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"


EVENT_DESCRIPTIONS: dict[WebhookEventType, str] = {
    WebhookEventType.TEST_PING: "Test event for webhook verification",
    WebhookEventType.USER_CREATED: "A new user was created",
    WebhookEventType.USER_UPDATED: "A user was updated",
    WebhookEventType.USER_DELETED: "A user was deleted",
    WebhookEventType.SUBSCRIPTION_CREATED: "A new subscription was created",
    WebhookEventType.SUBSCRIPTION_UPDATED: "A subscription was updated",
    WebhookEventType.SUBSCRIPTION_CANCELLED: "A subscription was cancelled",
    WebhookEventType.PAYMENT_SUCCEEDED: "A payment was successful",
    WebhookEventType.PAYMENT_FAILED: "A payment failed",
    WebhookEventType.INVOICE_CREATED: "An invoice was created",
    WebhookEventType.INVOICE_PAID: "An invoice was paid",
    WebhookEventType.DOCUMENT_PROCESSED: "A document was processed by AI",
    WebhookEventType.WORKFLOW_COMPLETED: "A workflow completed execution",
    WebhookEventType.WORKFLOW_FAILED: "A workflow failed execution",
}


# =============================================================================
# Webhook
# =============================================================================


class WebhookBase(SQLModel):
    """Base fields for webhooks."""

    name: str = Field(index=True, max_length=100)
    url: str  # Target URL for webhook delivery
    events: list[str] = Field(default_factory=list, sa_type=JSON)
    headers: dict[str, str] = Field(default_factory=dict, sa_type=JSON)
    is_active: bool = Field(default=True, index=True)

    # Retry policy
    max_retries: int = Field(default=WEBHOOK_DEFAULT_MAX_RETRIES)
    initial_delay_ms: int = Field(default=WEBHOOK_DEFAULT_INITIAL_DELAY_MS)
    backoff_multiplier: float = Field(default=WEBHOOK_DEFAULT_BACKOFF_MULTIPLIER)


class Webhook(UUIDModel, WebhookBase, TimestampMixin, table=True):
    """Webhook endpoint registration.

    The signing secret is stored in full because every outbound payload is
    signed with it. It must never appear in list views.
    """

    __tablename__ = "webhooks"

    tenant_id: UUID = Field(index=True)
    created_by_id: Optional[UUID] = None

    secret: str
    secret_prefix: str = Field(max_length=16)

    # Stats, only ever incremented
    total_deliveries: int = Field(default=0)
    successful_deliveries: int = Field(default=0)
    failed_deliveries: int = Field(default=0)
    last_delivery_at: Optional[datetime] = None
    last_delivery_status: Optional[str] = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay_ms=self.initial_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
        )

    def subscribes_to(self, event: str) -> bool:
        return event in (self.events or [])


class WebhookRead(WebhookBase):
    """Schema for reading webhook data (signing secret omitted)."""

    id: UUID
    tenant_id: UUID
    created_by_id: Optional[UUID]
    secret_prefix: str
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    last_delivery_at: Optional[datetime]
    last_delivery_status: Optional[str]
    created_at: datetime

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> "WebhookRead":
        return cls(
            id=webhook.id,
            tenant_id=webhook.tenant_id,
            created_by_id=webhook.created_by_id,
            name=webhook.name,
            url=webhook.url,
            events=list(webhook.events),
            headers=dict(webhook.headers or {}),
            is_active=webhook.is_active,
            max_retries=webhook.max_retries,
            initial_delay_ms=webhook.initial_delay_ms,
            backoff_multiplier=webhook.backoff_multiplier,
            secret_prefix=webhook.secret_prefix,
            total_deliveries=webhook.total_deliveries,
            successful_deliveries=webhook.successful_deliveries,
            failed_deliveries=webhook.failed_deliveries,
            last_delivery_at=webhook.last_delivery_at,
            last_delivery_status=webhook.last_delivery_status,
            created_at=webhook.created_at,
        )


# =============================================================================
# Webhook Delivery
# =============================================================================


class WebhookDeliveryBase(SQLModel):
    """Base fields for webhook deliveries."""

    event: str = Field(index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    status: str = Field(default=DeliveryStatus.PENDING.value, index=True)

    # Completed HTTP calls; never incremented by a scheduling decision
    attempts: int = Field(default=0)

    # Response details
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    delivered_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = Field(default=None, index=True)


class WebhookDelivery(UUIDModel, WebhookDeliveryBase, TimestampMixin, table=True):
    """Record of one event delivered to one webhook."""

    __tablename__ = "webhook_deliveries"

    webhook_id: UUID = Field(foreign_key="webhooks.id", index=True)


class WebhookDeliveryRead(WebhookDeliveryBase):
    """Schema for reading webhook delivery data."""

    id: UUID
    webhook_id: UUID
    created_at: datetime
