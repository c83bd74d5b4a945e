"""SQLModel table definitions.

Model Categories:
- API keys: APIKey
- Webhooks: Webhook, WebhookDelivery
"""

from relay.db.models.base import UUIDModel, TimestampMixin, utcnow
from relay.db.models.api_key import APIKey, APIKeyBase, APIKeyRead
from relay.db.models.webhook import (
    DeliveryOutcome,
    DeliveryStatus,
    EVENT_DESCRIPTIONS,
    Webhook,
    WebhookBase,
    WebhookDelivery,
    WebhookDeliveryBase,
    WebhookDeliveryRead,
    WebhookEventType,
    WebhookRead,
)

__all__ = [
    "UUIDModel",
    "TimestampMixin",
    "utcnow",
    "APIKey",
    "APIKeyBase",
    "APIKeyRead",
    "DeliveryOutcome",
    "DeliveryStatus",
    "EVENT_DESCRIPTIONS",
    "Webhook",
    "WebhookBase",
    "WebhookDelivery",
    "WebhookDeliveryBase",
    "WebhookDeliveryRead",
    "WebhookEventType",
    "WebhookRead",
]
