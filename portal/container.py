"""Process-wide wiring for the developer portal services.

DeveloperPortal owns every piece of long-lived state (database engine,
rate-limit windows, retry timers, reconciliation task) and gives it an
explicit lifecycle instead of module-level singletons.

Usage:
    portal = DeveloperPortal()
    await portal.start()

    api_key, full_key = portal.api_keys.create_key(tenant_id, name="CI")
    auth = portal.authenticate(full_key)

    await portal.webhooks.trigger(tenant_id, "user.created", {"id": "u_1"})

    await portal.close()
"""

from typing import Any, Optional

import httpx
from sqlalchemy.engine import Engine

from relay.config import LOG_JSON, LOG_LEVEL
from relay.db import build_engine, init_db
from relay.delivery import DeliveryEngine, RetryScheduler
from relay.logging import configure_structlog, get_logger
from relay.resilience import FixedWindowRateLimiter
from relay.storage import SQLStorage, Storage
from portal.services.api_key_service import APIKeyService
from portal.services.webhook_service import WebhookService

logger = get_logger(__name__)


class DeveloperPortal:
    """Container for storage, rate limiter, delivery engine and services."""

    def __init__(
        self,
        storage: Optional[Storage] = None,
        db_engine: Optional[Engine] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        scheduler: Optional[RetryScheduler] = None,
        limiter: Optional[FixedWindowRateLimiter] = None,
        configure_logging: bool = False,
    ):
        """Wire up the portal.

        Args:
            storage: Storage implementation (defaults to SQLStorage over db_engine)
            db_engine: SQLAlchemy engine (defaults to one for DATABASE_URL)
            transport: httpx transport for outbound deliveries
            scheduler: Retry scheduler (defaults to event loop timers)
            limiter: Rate limiter (defaults to a fresh fixed-window limiter)
            configure_logging: Configure structlog from LOG_LEVEL / LOG_JSON
        """
        if configure_logging:
            configure_structlog(json_format=LOG_JSON, log_level=LOG_LEVEL)

        self.db_engine = db_engine
        if storage is None:
            self.db_engine = db_engine or build_engine()
            storage = SQLStorage(self.db_engine)

        self.storage = storage
        self.limiter = limiter or FixedWindowRateLimiter()
        self.engine = DeliveryEngine(storage, scheduler=scheduler, transport=transport)
        self.api_keys = APIKeyService(storage)
        self.webhooks = WebhookService(storage, self.engine)
        self._started = False

    async def start(self) -> None:
        """Create tables, start the rate-limit sweep and the retry reconciler."""
        if self._started:
            return
        if self.db_engine is not None:
            init_db(self.db_engine)
        self.limiter.start()
        await self.engine.start()
        self._started = True
        logger.info("developer_portal_started")

    async def close(self) -> None:
        """Stop background work and release in-memory state."""
        await self.engine.close()
        self.limiter.stop()
        self._started = False
        logger.info("developer_portal_stopped")

    async def __aenter__(self) -> "DeveloperPortal":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def authenticate(self, full_key: str) -> dict[str, Any]:
        """Validate an API key and consume one unit of its rate limit.

        Returns:
            dict with "valid", and either "error" or "key_id", "tenant_id",
            "permissions" and "rate_limit" ({allowed, remaining, reset_at})
        """
        result = self.api_keys.validate_key(full_key)
        if not result.valid or result.key is None:
            return {"valid": False, "error": result.error}

        api_key = result.key
        limit = self.limiter.check(
            str(api_key.id), api_key.rate_limit, api_key.rate_limit_window
        )
        if not limit.allowed:
            logger.warning(
                "api_key_rate_limited",
                key_id=str(api_key.id),
                tenant_id=str(api_key.tenant_id),
            )

        return {
            "valid": True,
            "key_id": api_key.id,
            "tenant_id": api_key.tenant_id,
            "permissions": list(api_key.permissions),
            "rate_limit": {
                "allowed": limit.allowed,
                "remaining": limit.remaining,
                "reset_at": limit.reset_at,
            },
        }
