"""Unit tests for WebhookService.

The delivery engine is mocked; dispatch behaviour is covered in
test_delivery_engine.py.
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from portal.exceptions import (
    DeliveryNotFoundError,
    ValidationError,
    WebhookNotFoundError,
)
from portal.services.webhook_service import WebhookService
from relay.db.models import DeliveryStatus, WebhookDelivery, utcnow
from relay.delivery import DeliveryEngine

URL = "https://hooks.example.com/receive"


@pytest.fixture
def delivery_engine():
    return MagicMock(spec=DeliveryEngine)


@pytest.fixture
def service(storage, delivery_engine):
    return WebhookService(storage, delivery_engine)


# =============================================================================
# Creation and validation
# =============================================================================


class TestCreateWebhook:
    """Tests for create_webhook()."""

    def test_returns_secret(self, service, tenant_id):
        webhook, secret = service.create_webhook(
            tenant_id, name="Orders", url=URL, events=["user.created"]
        )

        assert secret.startswith("whsec_")
        assert webhook.secret == secret
        assert webhook.secret_prefix == secret[:10]
        assert webhook.is_active is True

    def test_default_retry_policy(self, service, tenant_id):
        webhook, _ = service.create_webhook(
            tenant_id, name="Orders", url=URL, events=["user.created"]
        )

        assert webhook.max_retries == 3
        assert webhook.initial_delay_ms == 5000
        assert webhook.backoff_multiplier == 2.0

    def test_custom_retry_policy_and_headers(self, service, tenant_id):
        webhook, _ = service.create_webhook(
            tenant_id,
            name="Orders",
            url=URL,
            events=["user.created", " user.created ", "invoice.paid"],
            headers={"Authorization": "Bearer t"},
            retry_policy={"max_retries": 5, "initial_delay_ms": 1000, "backoff_multiplier": 3},
        )

        assert webhook.events == ["user.created", "invoice.paid"]
        assert webhook.headers == {"Authorization": "Bearer t"}
        assert webhook.retry_policy.max_retries == 5
        assert webhook.retry_policy.get_delay_ms(1) == 3000

    @pytest.mark.parametrize(
        "fields",
        [
            {"url": "not a url"},
            {"url": "ftp://hooks.example.com"},
            {"url": "/relative/path"},
            {"events": []},
            {"events": ["  "]},
            {"name": ""},
            {"headers": {"X-Bad": "a\r\nb"}},
            {"retry_policy": {"max_retries": 11}},
            {"retry_policy": {"initial_delay_ms": 999}},
            {"retry_policy": {"backoff_multiplier": 6}},
        ],
    )
    def test_rejects_invalid_input(self, service, tenant_id, fields):
        data = {"name": "Orders", "url": URL, "events": ["user.created"], **fields}

        with pytest.raises(ValidationError):
            service.create_webhook(tenant_id, **data)

        assert service.list_webhooks(tenant_id) == []

    def test_reserved_header_allowed_by_default(self, service, tenant_id):
        webhook, _ = service.create_webhook(
            tenant_id,
            name="Orders",
            url=URL,
            events=["user.created"],
            headers={"X-Webhook-Event": "override"},
        )

        assert webhook.headers == {"X-Webhook-Event": "override"}

    def test_reserved_header_forbidden_when_configured(self, storage, delivery_engine, tenant_id):
        service = WebhookService(storage, delivery_engine, forbid_reserved_headers=True)

        with pytest.raises(ValidationError) as exc_info:
            service.create_webhook(
                tenant_id,
                name="Orders",
                url=URL,
                events=["user.created"],
                headers={"x-webhook-signature": "forged"},
            )

        assert exc_info.value.details == {"headers": ["x-webhook-signature"]}


# =============================================================================
# Management
# =============================================================================


class TestManageWebhooks:
    """Tests for reads, updates, toggling, secret regeneration and deletion."""

    def _create(self, service, tenant_id, **fields):
        data = {"name": "Orders", "url": URL, "events": ["user.created"], **fields}
        webhook, _ = service.create_webhook(tenant_id, **data)
        return webhook

    def test_reads_hide_secret(self, service, tenant_id):
        webhook = self._create(service, tenant_id)

        fetched = service.get_webhook(webhook.id, tenant_id)
        listed = service.list_webhooks(tenant_id)

        for read in [fetched, *listed]:
            assert "secret" not in read.model_dump()
            assert webhook.secret not in read.model_dump_json()
            assert read.secret_prefix == webhook.secret_prefix

    def test_tenant_isolation(self, service, tenant_id):
        """Another tenant sees NotFound even though the row exists."""
        webhook = self._create(service, tenant_id)
        other = uuid4()

        with pytest.raises(WebhookNotFoundError):
            service.get_webhook(webhook.id, other)
        with pytest.raises(WebhookNotFoundError):
            service.update_webhook(webhook.id, other, name="Hijacked")
        with pytest.raises(WebhookNotFoundError):
            service.toggle_webhook(webhook.id, other, False)
        with pytest.raises(WebhookNotFoundError):
            service.regenerate_secret(webhook.id, other)
        with pytest.raises(WebhookNotFoundError):
            service.delete_webhook(webhook.id, other)

        assert service.get_webhook(webhook.id, tenant_id).name == "Orders"

    def test_update_merges_supplied_fields(self, service, tenant_id):
        webhook = self._create(service, tenant_id, retry_policy={"initial_delay_ms": 2000})

        updated = service.update_webhook(
            webhook.id,
            tenant_id,
            name="Renamed",
            url=None,
            retry_policy={"max_retries": 5},
            ignored_field="x",
        )

        assert updated.name == "Renamed"
        assert updated.url == URL
        assert updated.events == ["user.created"]
        assert updated.max_retries == 5
        assert updated.initial_delay_ms == 2000

    def test_update_validates(self, service, tenant_id):
        webhook = self._create(service, tenant_id)

        with pytest.raises(ValidationError):
            service.update_webhook(webhook.id, tenant_id, events=[])
        with pytest.raises(ValidationError):
            service.update_webhook(webhook.id, tenant_id, url="mailto:someone")

    def test_toggle(self, service, tenant_id):
        webhook = self._create(service, tenant_id)

        assert service.toggle_webhook(webhook.id, tenant_id, False).is_active is False
        assert service.toggle_webhook(webhook.id, tenant_id, True).is_active is True

    def test_regenerate_secret(self, service, storage, tenant_id):
        webhook = self._create(service, tenant_id)

        new_secret = service.regenerate_secret(webhook.id, tenant_id)

        stored = storage.get_webhook(webhook.id)
        assert new_secret != webhook.secret
        assert stored.secret == new_secret
        assert stored.secret_prefix == new_secret[:10]

    def test_edits_keep_delivery_counters(self, service, storage, tenant_id, monkeypatch):
        """Counters bumped after the webhook was loaded survive the edit."""
        webhook = self._create(service, tenant_id)
        stale = storage.find_webhook_by_id(webhook.id, tenant_id)
        storage.update_webhook_stats(webhook.id, "success", utcnow())
        monkeypatch.setattr(storage, "find_webhook_by_id", lambda *args: stale)

        service.update_webhook(webhook.id, tenant_id, name="Renamed")
        service.toggle_webhook(webhook.id, tenant_id, False)
        service.regenerate_secret(webhook.id, tenant_id)

        stored = storage.get_webhook(webhook.id)
        assert stored.name == "Renamed"
        assert stored.is_active is False
        assert stored.total_deliveries == 1
        assert stored.successful_deliveries == 1

    def test_delete(self, service, tenant_id):
        webhook = self._create(service, tenant_id)

        service.delete_webhook(webhook.id, tenant_id)

        with pytest.raises(WebhookNotFoundError):
            service.get_webhook(webhook.id, tenant_id)

    def test_stats_start_empty(self, service, tenant_id):
        webhook = self._create(service, tenant_id)

        stats = service.get_stats(webhook.id, tenant_id)

        assert stats.total_deliveries == 0
        assert stats.success_rate is None
        assert stats.last_delivery_status is None

    def test_event_catalogue(self, service):
        events = service.list_event_types()
        names = [e["event"] for e in events]

        assert "test.ping" in names
        assert "workflow.failed" in names
        assert len(names) == 14
        assert all(e["description"] for e in events)


# =============================================================================
# Triggering
# =============================================================================


class TestTrigger:
    """Tests for trigger() and send_test_event()."""

    @pytest.mark.asyncio
    async def test_fans_out_to_matching_webhooks(self, service, storage, delivery_engine, make_webhook, tenant_id):
        first = make_webhook(events=["user.created"])
        second = make_webhook(events=["user.created", "user.deleted"])
        make_webhook(events=["user.deleted"])
        make_webhook(events=["user.created"], is_active=False)
        make_webhook(events=["user.created"], tenant=uuid4())

        matched = await service.trigger(tenant_id, "user.created", {"id": "u_1"})

        assert matched == 2
        assert delivery_engine.dispatch.call_count == 2

        dispatched = {call.args[0].id: call.args[1] for call in delivery_engine.dispatch.call_args_list}
        assert set(dispatched) == {first.id, second.id}
        for delivery in dispatched.values():
            assert delivery.status == DeliveryStatus.PENDING.value
            assert delivery.attempts == 0
            assert delivery.payload == {"id": "u_1"}
            assert storage.get_delivery(delivery.id) is not None

    @pytest.mark.asyncio
    async def test_no_match(self, service, delivery_engine, tenant_id):
        assert await service.trigger(tenant_id, "user.created", {}) == 0
        delivery_engine.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_payload_too_large(self, storage, delivery_engine, make_webhook, tenant_id):
        make_webhook()
        service = WebhookService(storage, delivery_engine, max_payload_bytes=16)

        with pytest.raises(ValidationError):
            await service.trigger(tenant_id, "user.created", {"data": "x" * 100})

        delivery_engine.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_payload_not_serializable(self, service, make_webhook, tenant_id):
        make_webhook()

        with pytest.raises(ValidationError):
            await service.trigger(tenant_id, "user.created", {"when": object()})

    @pytest.mark.asyncio
    async def test_send_test_event(self, service, delivery_engine, make_webhook, tenant_id):
        webhook = make_webhook(events=["test.ping"])

        matched = await service.send_test_event(webhook.id, tenant_id)

        assert matched == 1
        delivery = delivery_engine.dispatch.call_args.args[1]
        assert delivery.event == "test.ping"
        assert delivery.payload["test"] is True
        assert delivery.payload["webhookId"] == str(webhook.id)
        assert "timestamp" in delivery.payload

    @pytest.mark.asyncio
    async def test_send_test_event_other_tenant(self, service, make_webhook):
        webhook = make_webhook(events=["test.ping"])

        with pytest.raises(WebhookNotFoundError):
            await service.send_test_event(webhook.id, uuid4())


# =============================================================================
# Deliveries
# =============================================================================


class TestDeliveries:
    """Tests for get_deliveries() and retry_delivery()."""

    def test_get_deliveries_scoped(self, service, storage, make_webhook, tenant_id):
        webhook = make_webhook()
        for i in range(3):
            storage.save_delivery(
                WebhookDelivery(webhook_id=webhook.id, event="user.created", payload={"i": i})
            )

        assert len(service.get_deliveries(webhook.id, tenant_id)) == 3
        assert len(service.get_deliveries(webhook.id, tenant_id, limit=2)) == 2
        with pytest.raises(WebhookNotFoundError):
            service.get_deliveries(webhook.id, uuid4())

    @pytest.mark.asyncio
    async def test_retry_delivery_restarts_through_engine(self, service, storage, delivery_engine, make_webhook, tenant_id):
        webhook = make_webhook()
        delivery = storage.save_delivery(
            WebhookDelivery(
                webhook_id=webhook.id,
                event="user.created",
                status=DeliveryStatus.FAILED.value,
                attempts=4,
            )
        )
        delivery_engine.restart.return_value = storage.update_delivery_status(
            delivery.id, status=DeliveryStatus.PENDING.value, attempts=0
        )

        result = await service.retry_delivery(delivery.id, tenant_id)

        restarted, owner = delivery_engine.restart.call_args.args
        assert restarted.id == delivery.id
        assert owner.id == webhook.id
        assert result.status == "pending"
        assert result.attempts == 0

    @pytest.mark.asyncio
    async def test_retry_delivery_other_tenant(self, service, storage, delivery_engine, make_webhook):
        webhook = make_webhook()
        delivery = storage.save_delivery(
            WebhookDelivery(webhook_id=webhook.id, event="user.created", status="failed")
        )

        with pytest.raises(DeliveryNotFoundError):
            await service.retry_delivery(delivery.id, uuid4())

        delivery_engine.restart.assert_not_called()
