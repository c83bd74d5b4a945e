"""Webhook delivery: signing, dispatch, retries and stats.

Components:
- signing.py: canonical JSON and HMAC-SHA256 signatures
- scheduler.py: delayed retry timers keyed by delivery id
- stats.py: per-webhook delivery counters
- engine.py: async dispatch with bounded exponential backoff
"""

from relay.delivery.engine import DeliveryEngine, DeliveryFailure
from relay.delivery.scheduler import AsyncioRetryScheduler, RetryScheduler
from relay.delivery.signing import (
    build_headers,
    canonical_json,
    compute_signature,
    verify_signature,
)
from relay.delivery.stats import DeliveryStatsAggregator, WebhookStats

__all__ = [
    "DeliveryEngine",
    "DeliveryFailure",
    "AsyncioRetryScheduler",
    "RetryScheduler",
    "build_headers",
    "canonical_json",
    "compute_signature",
    "verify_signature",
    "DeliveryStatsAggregator",
    "WebhookStats",
]
