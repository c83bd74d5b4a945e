"""Webhook delivery engine.

Runs the per-delivery state machine:

    pending  -> success | retrying | failed
    retrying -> success | retrying | failed

Each attempt is an independent asyncio task. After a failed attempt the
next one is scheduled as a timer callback with exponential backoff, so
attempt n+1 never starts before attempt n has been recorded. Failures
never propagate to whoever triggered the event; they are visible only in
the delivery record and the webhook's stats.

Retries are durable: status=retrying and next_retry_at are persisted
before the timer is armed, and reconcile() re-queues any overdue retry
that this process is not already tracking (e.g. after a restart).

Usage:
    engine = DeliveryEngine(storage)
    await engine.start()

    engine.dispatch(webhook, delivery)   # returns immediately

    await engine.close()
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Coroutine, Optional
from uuid import UUID

import httpx

from relay.config import (
    WEBHOOK_RECONCILE_INTERVAL_SECONDS,
    WEBHOOK_RESPONSE_BODY_LIMIT,
    WEBHOOK_TIMEOUT_SECONDS,
)
from relay.db.models import (
    DeliveryOutcome,
    DeliveryStatus,
    Webhook,
    WebhookDelivery,
    utcnow,
)
from relay.delivery.scheduler import AsyncioRetryScheduler, RetryScheduler
from relay.delivery.signing import build_headers, canonical_json
from relay.delivery.stats import DeliveryStatsAggregator
from relay.logging import get_logger
from relay.storage import Storage

logger = get_logger(__name__)


class DeliveryFailure(Exception):
    """A transient failure of one delivery attempt.

    Raised for non-2xx responses, timeouts and transport errors. Handled
    inside the engine by scheduling a retry or marking the delivery failed.
    """

    def __init__(
        self,
        message: str,
        outcome: DeliveryOutcome = DeliveryOutcome.ERROR,
        response_status: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.outcome = outcome
        self.response_status = response_status
        self.response_body = response_body


class DeliveryEngine:
    """Dispatches signed webhook requests and drives retries."""

    def __init__(
        self,
        storage: Storage,
        scheduler: Optional[RetryScheduler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        response_body_limit: int = WEBHOOK_RESPONSE_BODY_LIMIT,
        reconcile_interval: float = WEBHOOK_RECONCILE_INTERVAL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the engine.

        Args:
            storage: Persistence for deliveries and webhook stats
            scheduler: Delayed-retry scheduler (defaults to loop timers)
            transport: httpx transport override, mainly for tests
            timeout: Per-request timeout in seconds
            response_body_limit: Stored response bodies are cut to this many characters
            reconcile_interval: Seconds between overdue-retry sweeps
            clock: Returns epoch seconds, used for the signature timestamp
        """
        self.storage = storage
        self.stats = DeliveryStatsAggregator(storage)
        self.timeout = timeout
        self.response_body_limit = response_body_limit
        self.reconcile_interval = reconcile_interval
        self._scheduler = scheduler or AsyncioRetryScheduler()
        self._transport = transport
        self._clock = clock or time.time

        self._tasks: set[asyncio.Task] = set()
        self._in_flight: dict[UUID, int] = {}
        self._generations: dict[UUID, int] = {}
        self._reconciler: Optional[asyncio.Task] = None
        self._closed = False

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def start(self) -> None:
        """Re-queue overdue retries and start the periodic reconciliation sweep."""
        self._closed = False
        if self._reconciler is None:
            self._reconciler = asyncio.get_running_loop().create_task(
                self._reconcile_loop()
            )

    async def close(self) -> None:
        """Stop sweeping, cancel pending retries and wait for in-flight attempts."""
        self._closed = True
        if self._reconciler is not None:
            self._reconciler.cancel()
            try:
                await self._reconciler
            except asyncio.CancelledError:
                pass
            self._reconciler = None

        self._scheduler.close()

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def drain(self, poll_interval: float = 0.01) -> None:
        """Wait until no attempt is running and no retry is pending."""
        while self._tasks or self._scheduler.pending_count():
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(poll_interval)

    # ==========================================================================
    # Entry points
    # ==========================================================================

    def dispatch(self, webhook: Webhook, delivery: WebhookDelivery) -> Optional[asyncio.Task]:
        """Start the first attempt of a new delivery without waiting for it."""
        return self._spawn(
            delivery.id,
            self._attempt(delivery.id, webhook, delivery.event, delivery.payload, 0),
        )

    def restart(self, delivery: WebhookDelivery, webhook: Webhook) -> Optional[WebhookDelivery]:
        """Reset a delivery to pending with zero attempts and attempt it immediately.

        Any pending automatic retry is cancelled and any attempt still in
        flight for this delivery has its outcome discarded. On a closed
        engine the delivery is stored as a retry due now instead, so
        reconcile() picks it up after the next start().
        """
        if self._closed:
            logger.warning("delivery_restart_deferred_engine_closed", delivery_id=str(delivery.id))
            return self.storage.update_delivery_status(
                delivery.id,
                status=DeliveryStatus.RETRYING.value,
                attempts=0,
                next_retry_at=utcnow(),
                error=None,
            )

        self._scheduler.cancel(delivery.id)
        self._generations[delivery.id] = self._generations.get(delivery.id, 0) + 1

        reset = self.storage.update_delivery_status(
            delivery.id,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
            next_retry_at=None,
            error=None,
        )
        self._spawn(
            delivery.id,
            self._attempt(delivery.id, webhook, delivery.event, delivery.payload, 0),
        )
        return reset

    def reconcile(self, now: Optional[datetime] = None) -> int:
        """Re-queue overdue retries not tracked by this process.

        Returns:
            Number of deliveries re-queued
        """
        requeued = 0
        for delivery in self.storage.list_due_retries(now or utcnow()):
            if self._scheduler.is_scheduled(delivery.id) or delivery.id in self._in_flight:
                continue

            webhook = self.storage.get_webhook(delivery.webhook_id)
            if webhook is None or not webhook.is_active:
                continue

            self._spawn(delivery.id, self._retry(delivery.id, webhook.id, delivery.attempts))
            requeued += 1

        if requeued:
            logger.info("webhook_retries_requeued", count=requeued)
        return requeued

    def is_tracking(self, delivery_id: UUID) -> bool:
        """Whether an attempt or timer exists for the delivery in this process."""
        return delivery_id in self._in_flight or self._scheduler.is_scheduled(delivery_id)

    # ==========================================================================
    # Attempts
    # ==========================================================================

    def _spawn(
        self, delivery_id: UUID, coro: Coroutine[Any, Any, None]
    ) -> Optional[asyncio.Task]:
        if self._closed:
            coro.close()
            logger.warning("delivery_dropped_engine_closed", delivery_id=str(delivery_id))
            return None

        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        self._in_flight[delivery_id] = self._in_flight.get(delivery_id, 0) + 1

        def done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            remaining = self._in_flight.get(delivery_id, 1) - 1
            if remaining > 0:
                self._in_flight[delivery_id] = remaining
            else:
                self._in_flight.pop(delivery_id, None)
                # Generations only order attempts that overlap in flight
                self._generations.pop(delivery_id, None)

            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "delivery_task_crashed",
                    delivery_id=str(delivery_id),
                    exc_info=t.exception(),
                )

        task.add_done_callback(done)
        return task

    async def _retry(self, delivery_id: UUID, webhook_id: UUID, attempt: int) -> None:
        # Reload so a deactivated webhook stops its retries and a
        # regenerated secret or edited URL takes effect.
        webhook = self.storage.get_webhook(webhook_id)
        if webhook is None or not webhook.is_active:
            logger.info(
                "webhook_retry_aborted",
                delivery_id=str(delivery_id),
                webhook_id=str(webhook_id),
                reason="webhook deleted" if webhook is None else "webhook inactive",
            )
            return

        delivery = self.storage.get_delivery(delivery_id)
        if delivery is None or delivery.status != DeliveryStatus.RETRYING.value:
            return

        await self._attempt(delivery_id, webhook, delivery.event, delivery.payload, attempt)

    async def _attempt(
        self,
        delivery_id: UUID,
        webhook: Webhook,
        event: str,
        payload: dict[str, Any],
        attempt: int,
    ) -> None:
        generation = self._generations.get(delivery_id, 0)
        policy = webhook.retry_policy

        body = canonical_json(payload)
        timestamp = int(self._clock() * 1000)
        headers = build_headers(
            secret=webhook.secret,
            event=event,
            delivery_id=str(delivery_id),
            timestamp=timestamp,
            body=body,
            custom_headers=webhook.headers,
        )

        start_time = time.monotonic()
        failure: Optional[DeliveryFailure] = None
        try:
            response = await self._send(webhook.url, body, headers)
        except DeliveryFailure as e:
            failure = e
        duration_ms = int((time.monotonic() - start_time) * 1000)

        if self._generations.get(delivery_id, 0) != generation:
            logger.info("stale_delivery_attempt_discarded", delivery_id=str(delivery_id))
            return

        now = utcnow()

        if failure is None:
            self.storage.update_delivery_status(
                delivery_id,
                status=DeliveryStatus.SUCCESS.value,
                attempts=attempt + 1,
                response_status=response.status_code,
                response_body=self._truncate(response.text),
                error=None,
                duration_ms=duration_ms,
                delivered_at=now,
                next_retry_at=None,
            )
            self.stats.record(webhook.id, DeliveryOutcome.SUCCESS, now)
            logger.info(
                "webhook_delivered",
                delivery_id=str(delivery_id),
                webhook_id=str(webhook.id),
                event=event,
                attempt=attempt + 1,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            return

        fields: dict[str, Any] = {
            "attempts": attempt + 1,
            "response_status": failure.response_status,
            "response_body": self._truncate(failure.response_body),
            "error": failure.message,
            "duration_ms": duration_ms,
        }

        retry_delay: Optional[float] = None
        if policy.should_retry(attempt):
            retry_delay = policy.get_delay(attempt)
            fields["status"] = DeliveryStatus.RETRYING.value
            fields["next_retry_at"] = now + timedelta(seconds=retry_delay)
        else:
            fields["status"] = DeliveryStatus.FAILED.value
            fields["next_retry_at"] = None

        self.storage.update_delivery_status(delivery_id, **fields)
        self.stats.record(webhook.id, failure.outcome, now)

        if retry_delay is None:
            logger.error(
                "webhook_delivery_failed",
                delivery_id=str(delivery_id),
                webhook_id=str(webhook.id),
                event=event,
                attempts=attempt + 1,
                error=failure.message,
            )
            return

        if self._closed:
            # Persisted as retrying; reconcile() picks it up after restart
            return

        logger.warning(
            "webhook_retry_scheduled",
            delivery_id=str(delivery_id),
            webhook_id=str(webhook.id),
            attempt=attempt + 1,
            error=failure.message,
            delay_seconds=retry_delay,
        )
        webhook_id = webhook.id
        self._scheduler.schedule(
            delivery_id,
            retry_delay,
            lambda: self._spawn(delivery_id, self._retry(delivery_id, webhook_id, attempt + 1)),
        )

    async def _send(self, url: str, body: str, headers: dict[str, str]) -> httpx.Response:
        """POST one request. Raises DeliveryFailure for anything but a 2xx."""
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.timeout,
            ) as client:
                # httpx timeouts are per phase; wait_for bounds the whole request
                response = await asyncio.wait_for(
                    client.post(url, content=body.encode(), headers=headers),
                    timeout=self.timeout,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            raise DeliveryFailure("Request timed out")
        except httpx.RequestError as e:
            raise DeliveryFailure(str(e) or e.__class__.__name__)
        except Exception as e:
            raise DeliveryFailure(f"Unexpected error: {str(e)}")

        if not response.is_success:
            raise DeliveryFailure(
                f"HTTP {response.status_code}",
                outcome=DeliveryOutcome.FAILED,
                response_status=response.status_code,
                response_body=response.text,
            )
        return response

    def _truncate(self, text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return text[: self.response_body_limit]

    async def _reconcile_loop(self) -> None:
        while True:
            try:
                self.reconcile()
            except Exception:
                logger.exception("webhook_reconcile_failed")
            await asyncio.sleep(self.reconcile_interval)
