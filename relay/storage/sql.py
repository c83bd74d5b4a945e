"""SQLModel-backed storage.

Each operation runs in its own short session. Counter updates are issued
as single UPDATE statements (col = col + 1) so concurrent attempts for
the same webhook never lose increments. Edits to existing webhooks and
keys go through update_*_fields, which write only the named columns.

Usage:
    from relay.db import build_engine, init_db
    from relay.storage import SQLStorage

    engine = build_engine()
    init_db(engine)
    storage = SQLStorage(engine)
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlmodel import col, select

from relay.db.engine import session_scope
from relay.db.models import (
    APIKey,
    DeliveryOutcome,
    DeliveryStatus,
    Webhook,
    WebhookDelivery,
)
from relay.storage.base import Storage


class SQLStorage(Storage):
    """Storage implementation over a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _save(self, obj):
        with session_scope(self.engine) as session:
            merged = session.merge(obj)
            session.commit()
            session.refresh(merged)
            return merged

    # ==========================================================================
    # API Keys
    # ==========================================================================

    def save_api_key(self, api_key: APIKey) -> APIKey:
        return self._save(api_key)

    def get_api_key(self, key_id: UUID, tenant_id: UUID) -> Optional[APIKey]:
        with session_scope(self.engine) as session:
            api_key = session.get(APIKey, key_id)
            if not api_key or api_key.tenant_id != tenant_id:
                return None
            return api_key

    def find_api_key_by_prefix_and_fingerprint(
        self, prefix: str, key_hash: str
    ) -> Optional[APIKey]:
        with session_scope(self.engine) as session:
            return session.exec(
                select(APIKey).where(
                    APIKey.key_prefix == prefix,
                    APIKey.key_hash == key_hash,
                    APIKey.is_active == True,  # noqa: E712
                )
            ).first()

    def update_api_key_fields(self, key_id: UUID, **fields: Any) -> Optional[APIKey]:
        with session_scope(self.engine) as session:
            session.execute(
                update(APIKey).where(col(APIKey.id) == key_id).values(**fields)
            )
            session.commit()
            return session.get(APIKey, key_id, populate_existing=True)

    def update_api_key_usage(self, key_id: UUID, used_at: datetime) -> None:
        with session_scope(self.engine) as session:
            session.execute(
                update(APIKey)
                .where(col(APIKey.id) == key_id)
                .values(
                    usage_count=APIKey.usage_count + 1,
                    last_used_at=used_at,
                )
            )
            session.commit()

    def list_api_keys_by_tenant(self, tenant_id: UUID) -> list[APIKey]:
        with session_scope(self.engine) as session:
            stmt = (
                select(APIKey)
                .where(APIKey.tenant_id == tenant_id)
                .order_by(col(APIKey.created_at).desc())
            )
            return list(session.exec(stmt).all())

    def delete_api_key(self, key_id: UUID, tenant_id: UUID) -> bool:
        with session_scope(self.engine) as session:
            api_key = session.get(APIKey, key_id)
            if not api_key or api_key.tenant_id != tenant_id:
                return False
            session.delete(api_key)
            session.commit()
            return True

    # ==========================================================================
    # Webhooks
    # ==========================================================================

    def save_webhook(self, webhook: Webhook) -> Webhook:
        return self._save(webhook)

    def find_webhook_by_id(self, webhook_id: UUID, tenant_id: UUID) -> Optional[Webhook]:
        with session_scope(self.engine) as session:
            webhook = session.get(Webhook, webhook_id)
            if not webhook or webhook.tenant_id != tenant_id:
                return None
            return webhook

    def get_webhook(self, webhook_id: UUID) -> Optional[Webhook]:
        with session_scope(self.engine) as session:
            return session.get(Webhook, webhook_id)

    def list_webhooks_by_tenant(self, tenant_id: UUID) -> list[Webhook]:
        with session_scope(self.engine) as session:
            stmt = (
                select(Webhook)
                .where(Webhook.tenant_id == tenant_id)
                .order_by(col(Webhook.created_at).desc())
            )
            return list(session.exec(stmt).all())

    def list_active_webhooks_for_event(self, tenant_id: UUID, event: str) -> list[Webhook]:
        with session_scope(self.engine) as session:
            webhooks = session.exec(
                select(Webhook).where(
                    Webhook.tenant_id == tenant_id,
                    Webhook.is_active == True,  # noqa: E712
                )
            ).all()

        # JSON containment is dialect-specific; filter subscriptions here
        return [w for w in webhooks if w.subscribes_to(event)]

    def update_webhook_fields(self, webhook_id: UUID, **fields: Any) -> Optional[Webhook]:
        with session_scope(self.engine) as session:
            session.execute(
                update(Webhook).where(col(Webhook.id) == webhook_id).values(**fields)
            )
            session.commit()
            return session.get(Webhook, webhook_id, populate_existing=True)

    def update_webhook_stats(
        self, webhook_id: UUID, outcome: str, delivered_at: datetime
    ) -> None:
        values: dict[str, Any] = {
            "total_deliveries": Webhook.total_deliveries + 1,
            "last_delivery_at": delivered_at,
            "last_delivery_status": outcome,
        }
        if outcome == DeliveryOutcome.SUCCESS.value:
            values["successful_deliveries"] = Webhook.successful_deliveries + 1
        else:
            values["failed_deliveries"] = Webhook.failed_deliveries + 1

        with session_scope(self.engine) as session:
            session.execute(
                update(Webhook).where(col(Webhook.id) == webhook_id).values(**values)
            )
            session.commit()

    def delete_webhook(self, webhook_id: UUID, tenant_id: UUID) -> bool:
        with session_scope(self.engine) as session:
            webhook = session.get(Webhook, webhook_id)
            if not webhook or webhook.tenant_id != tenant_id:
                return False
            session.execute(
                delete(WebhookDelivery).where(col(WebhookDelivery.webhook_id) == webhook_id)
            )
            session.delete(webhook)
            session.commit()
            return True

    # ==========================================================================
    # Deliveries
    # ==========================================================================

    def save_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        return self._save(delivery)

    def get_delivery(self, delivery_id: UUID) -> Optional[WebhookDelivery]:
        with session_scope(self.engine) as session:
            return session.get(WebhookDelivery, delivery_id)

    def find_delivery_for_tenant(
        self, delivery_id: UUID, tenant_id: UUID
    ) -> Optional[tuple[WebhookDelivery, Webhook]]:
        with session_scope(self.engine) as session:
            row = session.exec(
                select(WebhookDelivery, Webhook)
                .join(Webhook, col(WebhookDelivery.webhook_id) == col(Webhook.id))
                .where(
                    WebhookDelivery.id == delivery_id,
                    Webhook.tenant_id == tenant_id,
                )
            ).first()
            if row is None:
                return None
            delivery, webhook = row
            return delivery, webhook

    def update_delivery_status(
        self, delivery_id: UUID, **fields: Any
    ) -> Optional[WebhookDelivery]:
        with session_scope(self.engine) as session:
            session.execute(
                update(WebhookDelivery)
                .where(col(WebhookDelivery.id) == delivery_id)
                .values(**fields)
            )
            session.commit()
            return session.get(WebhookDelivery, delivery_id, populate_existing=True)

    def list_deliveries_for_webhook(
        self, webhook_id: UUID, limit: int = 50
    ) -> list[WebhookDelivery]:
        with session_scope(self.engine) as session:
            stmt = (
                select(WebhookDelivery)
                .where(WebhookDelivery.webhook_id == webhook_id)
                .order_by(col(WebhookDelivery.created_at).desc())
                .limit(limit)
            )
            return list(session.exec(stmt).all())

    def list_due_retries(self, now: datetime, limit: int = 100) -> list[WebhookDelivery]:
        with session_scope(self.engine) as session:
            stmt = (
                select(WebhookDelivery)
                .join(Webhook, col(WebhookDelivery.webhook_id) == col(Webhook.id))
                .where(
                    WebhookDelivery.status == DeliveryStatus.RETRYING.value,
                    col(WebhookDelivery.next_retry_at) <= now,
                    Webhook.is_active == True,  # noqa: E712
                )
                .order_by(col(WebhookDelivery.next_retry_at))
                .limit(limit)
            )
            return list(session.exec(stmt).all())
