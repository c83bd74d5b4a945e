"""Storage interface consumed by the API key and webhook services.

Every tenant-facing lookup takes (id, tenant_id) and returns None on any
mismatch, so callers cannot tell "wrong tenant" from "missing". The
unscoped lookups (get_webhook, get_delivery, list_due_retries) are for the
delivery engine only.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from relay.db.models import APIKey, Webhook, WebhookDelivery


class Storage(ABC):
    """Persistence for API keys, webhooks and deliveries."""

    # ==========================================================================
    # API Keys
    # ==========================================================================

    @abstractmethod
    def save_api_key(self, api_key: APIKey) -> APIKey:
        """Insert or update an API key."""

    @abstractmethod
    def get_api_key(self, key_id: UUID, tenant_id: UUID) -> Optional[APIKey]:
        """Tenant-scoped lookup by id."""

    @abstractmethod
    def find_api_key_by_prefix_and_fingerprint(
        self, prefix: str, key_hash: str
    ) -> Optional[APIKey]:
        """Find an active key by prefix and fingerprint."""

    @abstractmethod
    def update_api_key_fields(self, key_id: UUID, **fields: Any) -> Optional[APIKey]:
        """Write only the given columns. Returns the updated row."""

    @abstractmethod
    def update_api_key_usage(self, key_id: UUID, used_at: datetime) -> None:
        """Increment usage_count and set last_used_at in one write."""

    @abstractmethod
    def list_api_keys_by_tenant(self, tenant_id: UUID) -> list[APIKey]:
        """All keys for a tenant, newest first."""

    @abstractmethod
    def delete_api_key(self, key_id: UUID, tenant_id: UUID) -> bool:
        """Hard delete. Returns False if nothing matched."""

    # ==========================================================================
    # Webhooks
    # ==========================================================================

    @abstractmethod
    def save_webhook(self, webhook: Webhook) -> Webhook:
        """Insert or update a webhook."""

    @abstractmethod
    def find_webhook_by_id(self, webhook_id: UUID, tenant_id: UUID) -> Optional[Webhook]:
        """Tenant-scoped lookup by id."""

    @abstractmethod
    def get_webhook(self, webhook_id: UUID) -> Optional[Webhook]:
        """Unscoped lookup used when re-checking a webhook before a retry."""

    @abstractmethod
    def list_webhooks_by_tenant(self, tenant_id: UUID) -> list[Webhook]:
        """All webhooks for a tenant, newest first."""

    @abstractmethod
    def list_active_webhooks_for_event(self, tenant_id: UUID, event: str) -> list[Webhook]:
        """Active webhooks of a tenant subscribed to an event."""

    @abstractmethod
    def update_webhook_fields(self, webhook_id: UUID, **fields: Any) -> Optional[Webhook]:
        """Write only the given columns, leaving delivery counters untouched."""

    @abstractmethod
    def update_webhook_stats(
        self, webhook_id: UUID, outcome: str, delivered_at: datetime
    ) -> None:
        """Increment delivery counters for one attempt outcome in one write."""

    @abstractmethod
    def delete_webhook(self, webhook_id: UUID, tenant_id: UUID) -> bool:
        """Delete a webhook and its delivery history."""

    # ==========================================================================
    # Deliveries
    # ==========================================================================

    @abstractmethod
    def save_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Insert a delivery record."""

    @abstractmethod
    def get_delivery(self, delivery_id: UUID) -> Optional[WebhookDelivery]:
        """Unscoped lookup by id."""

    @abstractmethod
    def find_delivery_for_tenant(
        self, delivery_id: UUID, tenant_id: UUID
    ) -> Optional[tuple[WebhookDelivery, Webhook]]:
        """Delivery joined to its webhook, only if the webhook belongs to tenant_id."""

    @abstractmethod
    def update_delivery_status(
        self, delivery_id: UUID, **fields: Any
    ) -> Optional[WebhookDelivery]:
        """Single-row update of delivery fields. Returns the updated row."""

    @abstractmethod
    def list_deliveries_for_webhook(
        self, webhook_id: UUID, limit: int = 50
    ) -> list[WebhookDelivery]:
        """Most recent deliveries for a webhook."""

    @abstractmethod
    def list_due_retries(self, now: datetime, limit: int = 100) -> list[WebhookDelivery]:
        """Deliveries in retrying status whose next_retry_at has passed.

        Only deliveries of active webhooks are returned.
        """
