"""End-to-end tests for the DeveloperPortal container."""

import pytest

from portal import DeveloperPortal
from relay.db import build_engine
from relay.db.models import DeliveryStatus
from relay.delivery import verify_signature
from tests.conftest import RecordingEndpoint, RecordingScheduler


@pytest.fixture
def endpoint():
    return RecordingEndpoint(200)


@pytest.fixture
def portal(endpoint):
    return DeveloperPortal(
        db_engine=build_engine("sqlite://"),
        transport=endpoint.transport,
        scheduler=RecordingScheduler(),
    )


class TestDeveloperPortal:
    """Tests for wiring, lifecycle and authenticate()."""

    @pytest.mark.asyncio
    async def test_authenticate_consumes_rate_limit(self, portal, tenant_id):
        async with portal:
            api_key, full_key = portal.api_keys.create_key(
                tenant_id, name="CI", permissions=["webhooks:*"], rate_limit=2, rate_limit_window=60
            )

            first = portal.authenticate(full_key)
            second = portal.authenticate(full_key)
            third = portal.authenticate(full_key)

        assert first["valid"] is True
        assert first["key_id"] == api_key.id
        assert first["tenant_id"] == tenant_id
        assert first["permissions"] == ["webhooks:*"]
        assert first["rate_limit"]["allowed"] is True
        assert first["rate_limit"]["remaining"] == 1
        assert second["rate_limit"]["remaining"] == 0
        assert third["valid"] is True
        assert third["rate_limit"]["allowed"] is False

    @pytest.mark.asyncio
    async def test_authenticate_invalid_key(self, portal):
        async with portal:
            result = portal.authenticate("dp_00000000_nope")

        assert result == {"valid": False, "error": "Invalid API key"}

    @pytest.mark.asyncio
    async def test_trigger_delivers_signed_event(self, portal, endpoint, tenant_id):
        async with portal:
            webhook, secret = portal.webhooks.create_webhook(
                tenant_id,
                name="Orders",
                url="https://hooks.example.com/orders",
                events=["invoice.paid"],
            )

            matched = await portal.webhooks.trigger(tenant_id, "invoice.paid", {"invoice": "in_1"})
            await portal.engine.drain()

            [delivery] = portal.webhooks.get_deliveries(webhook.id, tenant_id)

        assert matched == 1
        assert delivery.status == DeliveryStatus.SUCCESS.value
        request = endpoint.requests[0]
        assert verify_signature(
            secret,
            request.headers["X-Webhook-Timestamp"],
            request.content.decode(),
            request.headers["X-Webhook-Signature"],
        )

    @pytest.mark.asyncio
    async def test_close_releases_limiter_state(self, portal, tenant_id):
        await portal.start()
        _, full_key = portal.api_keys.create_key(tenant_id, name="CI")
        portal.authenticate(full_key)
        assert len(portal.limiter) == 1

        await portal.close()

        assert len(portal.limiter) == 0
