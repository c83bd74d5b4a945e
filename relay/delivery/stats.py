"""Per-webhook delivery statistics.

Counters are accumulated per attempt: a delivery that fails twice and
then succeeds adds 3 to total, 2 to failed and 1 to successful.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from relay.db.models import DeliveryOutcome, Webhook, utcnow
from relay.storage import Storage


@dataclass(frozen=True)
class WebhookStats:
    """Snapshot of a webhook's delivery counters."""

    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    last_delivery_at: Optional[datetime]
    last_delivery_status: Optional[str]

    @property
    def success_rate(self) -> Optional[float]:
        if self.total_deliveries == 0:
            return None
        return self.successful_deliveries / self.total_deliveries

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> "WebhookStats":
        return cls(
            total_deliveries=webhook.total_deliveries,
            successful_deliveries=webhook.successful_deliveries,
            failed_deliveries=webhook.failed_deliveries,
            last_delivery_at=webhook.last_delivery_at,
            last_delivery_status=webhook.last_delivery_status,
        )


class DeliveryStatsAggregator:
    """Records attempt outcomes against the owning webhook."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def record(
        self,
        webhook_id: UUID,
        outcome: DeliveryOutcome,
        at: Optional[datetime] = None,
    ) -> None:
        self.storage.update_webhook_stats(webhook_id, outcome.value, at or utcnow())

    def snapshot(self, webhook_id: UUID) -> Optional[WebhookStats]:
        webhook = self.storage.get_webhook(webhook_id)
        if webhook is None:
            return None
        return WebhookStats.from_webhook(webhook)
