"""Webhook service for managing webhook registrations and deliveries.

Provides:
- Webhook registration and management
- Event triggering (fan-out to the delivery engine)
- Delivery history and manual retry
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from relay.config import WEBHOOK_FORBID_RESERVED_HEADERS, WEBHOOK_MAX_PAYLOAD_BYTES
from relay.db.models import (
    EVENT_DESCRIPTIONS,
    DeliveryStatus,
    Webhook,
    WebhookDelivery,
    WebhookDeliveryRead,
    WebhookEventType,
    WebhookRead,
)
from relay.delivery import DeliveryEngine, WebhookStats, canonical_json
from relay.delivery.signing import shadowed_reserved_headers
from relay.logging import get_logger
from relay.secrets_codec import generate_signing_secret
from relay.storage import Storage
from portal.exceptions import (
    DeliveryNotFoundError,
    ValidationError,
    WebhookNotFoundError,
)
from portal.schemas import CreateWebhookRequest, UpdateWebhookRequest, validate

logger = get_logger(__name__)


class WebhookService:
    """Service for managing webhooks and deliveries."""

    def __init__(
        self,
        storage: Storage,
        engine: DeliveryEngine,
        forbid_reserved_headers: bool = WEBHOOK_FORBID_RESERVED_HEADERS,
        max_payload_bytes: int = WEBHOOK_MAX_PAYLOAD_BYTES,
    ):
        self.storage = storage
        self.engine = engine
        self.forbid_reserved_headers = forbid_reserved_headers
        self.max_payload_bytes = max_payload_bytes

    # ==========================================================================
    # Webhook Management
    # ==========================================================================

    def create_webhook(
        self,
        tenant_id: UUID,
        name: str,
        url: str,
        events: list[str],
        created_by_id: Optional[UUID] = None,
        headers: Optional[dict[str, str]] = None,
        retry_policy: Optional[dict[str, Any]] = None,
    ) -> tuple[Webhook, str]:
        """Create a new webhook.

        Returns:
            tuple: (Webhook model, plaintext signing secret)
            The secret is only returned once at creation.

        Raises:
            ValidationError: If the URL, events, headers or retry policy are invalid
            SecretGenerationError: If the entropy source fails
        """
        data: dict[str, Any] = {"name": name, "url": url, "events": events}
        if headers is not None:
            data["headers"] = headers
        if retry_policy is not None:
            data["retry_policy"] = retry_policy
        request = validate(CreateWebhookRequest, data)

        self._check_reserved_headers(request.headers)

        generated = generate_signing_secret()

        webhook = Webhook(
            tenant_id=tenant_id,
            created_by_id=created_by_id,
            name=request.name,
            url=request.url,
            events=request.events,
            headers=request.headers,
            max_retries=request.retry_policy.max_retries,
            initial_delay_ms=request.retry_policy.initial_delay_ms,
            backoff_multiplier=request.retry_policy.backoff_multiplier,
            secret=generated.secret,
            secret_prefix=generated.prefix,
        )
        webhook = self.storage.save_webhook(webhook)

        logger.info(
            "webhook_created",
            webhook_id=str(webhook.id),
            tenant_id=str(tenant_id),
            events=webhook.events,
        )
        return webhook, generated.secret

    def list_webhooks(self, tenant_id: UUID) -> list[WebhookRead]:
        """Get all webhooks for a tenant, newest first. Secrets are omitted."""
        return [
            WebhookRead.from_webhook(w)
            for w in self.storage.list_webhooks_by_tenant(tenant_id)
        ]

    def get_webhook(self, webhook_id: UUID, tenant_id: UUID) -> WebhookRead:
        """Get a specific webhook."""
        return WebhookRead.from_webhook(self._get(webhook_id, tenant_id))

    def update_webhook(
        self,
        webhook_id: UUID,
        tenant_id: UUID,
        **updates: Any,
    ) -> WebhookRead:
        """Update a webhook. Fields not supplied (or None) keep their value."""
        self._get(webhook_id, tenant_id)

        allowed_fields = {"name", "url", "events", "headers", "retry_policy"}
        request = validate(
            UpdateWebhookRequest,
            {k: v for k, v in updates.items() if k in allowed_fields and v is not None},
        )
        changes = request.model_dump(exclude_unset=True, exclude_none=True)

        if "headers" in changes:
            self._check_reserved_headers(changes["headers"])

        policy = changes.pop("retry_policy", None)
        if policy:
            changes.update(policy)

        if changes:
            webhook = self.storage.update_webhook_fields(webhook_id, **changes)
        else:
            webhook = self._get(webhook_id, tenant_id)

        logger.info(
            "webhook_updated",
            webhook_id=str(webhook_id),
            tenant_id=str(tenant_id),
            fields=sorted(changes),
        )
        return WebhookRead.from_webhook(webhook)

    def toggle_webhook(
        self,
        webhook_id: UUID,
        tenant_id: UUID,
        is_active: bool,
    ) -> WebhookRead:
        """Enable or disable a webhook.

        A disabled webhook is skipped by trigger() and its scheduled
        retries abort before their next attempt.
        """
        self._get(webhook_id, tenant_id)
        webhook = self.storage.update_webhook_fields(webhook_id, is_active=is_active)

        logger.info(
            "webhook_toggled",
            webhook_id=str(webhook_id),
            tenant_id=str(tenant_id),
            is_active=is_active,
        )
        return WebhookRead.from_webhook(webhook)

    def regenerate_secret(self, webhook_id: UUID, tenant_id: UUID) -> str:
        """Replace the webhook signing secret.

        Returns:
            The new plaintext secret
        """
        self._get(webhook_id, tenant_id)

        generated = generate_signing_secret()
        self.storage.update_webhook_fields(
            webhook_id,
            secret=generated.secret,
            secret_prefix=generated.prefix,
        )

        logger.info(
            "webhook_secret_regenerated",
            webhook_id=str(webhook_id),
            tenant_id=str(tenant_id),
            secret_prefix=generated.prefix,
        )
        return generated.secret

    def delete_webhook(self, webhook_id: UUID, tenant_id: UUID) -> None:
        """Delete a webhook and its delivery history."""
        if not self.storage.delete_webhook(webhook_id, tenant_id):
            raise WebhookNotFoundError()

        logger.info("webhook_deleted", webhook_id=str(webhook_id), tenant_id=str(tenant_id))

    def get_stats(self, webhook_id: UUID, tenant_id: UUID) -> WebhookStats:
        """Delivery counters for a webhook."""
        return WebhookStats.from_webhook(self._get(webhook_id, tenant_id))

    @staticmethod
    def list_event_types() -> list[dict[str, str]]:
        """Events the portal emits, with descriptions."""
        return [
            {"event": event.value, "description": EVENT_DESCRIPTIONS[event]}
            for event in WebhookEventType
        ]

    # ==========================================================================
    # Event Triggering
    # ==========================================================================

    async def trigger(
        self,
        tenant_id: UUID,
        event: str,
        payload: dict[str, Any],
    ) -> int:
        """Fan an event out to every active webhook subscribed to it.

        Creates one pending delivery per match and hands each to the
        delivery engine without waiting for it.

        Returns:
            Number of webhooks matched (not the number delivered)

        Raises:
            ValidationError: If the payload is not JSON-serializable or too large
        """
        try:
            body = canonical_json(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Payload is not JSON-serializable: {e}") from e

        size = len(body.encode())
        if size > self.max_payload_bytes:
            raise ValidationError(
                "Payload too large",
                details={"size": size, "max_size": self.max_payload_bytes},
            )

        webhooks = self.storage.list_active_webhooks_for_event(tenant_id, event)

        for webhook in webhooks:
            delivery = self.storage.save_delivery(
                WebhookDelivery(
                    webhook_id=webhook.id,
                    event=event,
                    payload=payload,
                    status=DeliveryStatus.PENDING.value,
                )
            )
            self.engine.dispatch(webhook, delivery)

        logger.info(
            "webhook_event_triggered",
            tenant_id=str(tenant_id),
            event=event,
            matched=len(webhooks),
        )
        return len(webhooks)

    async def send_test_event(self, webhook_id: UUID, tenant_id: UUID) -> int:
        """Trigger a test.ping event carrying the webhook's id.

        The ping goes through the normal trigger path, so every active
        webhook of the tenant subscribed to test.ping receives it.
        """
        webhook = self._get(webhook_id, tenant_id)
        payload = {
            "test": True,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "webhookId": str(webhook.id),
        }
        return await self.trigger(tenant_id, WebhookEventType.TEST_PING.value, payload)

    # ==========================================================================
    # Delivery Management
    # ==========================================================================

    def get_deliveries(
        self,
        webhook_id: UUID,
        tenant_id: UUID,
        limit: int = 50,
    ) -> list[WebhookDeliveryRead]:
        """Get delivery records for a webhook, newest first."""
        self._get(webhook_id, tenant_id)
        return [
            WebhookDeliveryRead.model_validate(d, from_attributes=True)
            for d in self.storage.list_deliveries_for_webhook(webhook_id, limit)
        ]

    async def retry_delivery(
        self,
        delivery_id: UUID,
        tenant_id: UUID,
    ) -> WebhookDeliveryRead:
        """Manually retry a delivery.

        Resets the delivery to pending with zero attempts and dispatches
        immediately, skipping any backoff delay.
        """
        found = self.storage.find_delivery_for_tenant(delivery_id, tenant_id)
        if found is None:
            raise DeliveryNotFoundError()
        delivery, webhook = found

        reset = self.engine.restart(delivery, webhook)

        logger.info(
            "webhook_delivery_manual_retry",
            delivery_id=str(delivery_id),
            webhook_id=str(webhook.id),
            tenant_id=str(tenant_id),
        )
        return WebhookDeliveryRead.model_validate(reset or delivery, from_attributes=True)

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _get(self, webhook_id: UUID, tenant_id: UUID) -> Webhook:
        webhook = self.storage.find_webhook_by_id(webhook_id, tenant_id)
        if not webhook:
            raise WebhookNotFoundError()
        return webhook

    def _check_reserved_headers(self, headers: Optional[dict[str, str]]) -> None:
        shadowed = shadowed_reserved_headers(headers)
        if not shadowed:
            return

        if self.forbid_reserved_headers:
            raise ValidationError(
                "Custom headers may not override reserved headers",
                details={"headers": shadowed},
            )
        logger.warning("webhook_reserved_headers_overridden", headers=shadowed)
