"""Resilience primitives for the delivery subsystem.

This module provides:
- Retry policies with exponential backoff for webhook deliveries
- Fixed-window rate limiting for API keys

Usage:
    from relay.resilience import RetryPolicy, FixedWindowRateLimiter

    policy = RetryPolicy(max_retries=3, initial_delay_ms=1000)
    limiter = FixedWindowRateLimiter()
"""

from relay.resilience.retry import (
    RetryPolicy,
    DEFAULT_POLICY,
)
from relay.resilience.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitResult,
    RateLimitWindow,
)

__all__ = [
    "RetryPolicy",
    "DEFAULT_POLICY",
    "FixedWindowRateLimiter",
    "RateLimitResult",
    "RateLimitWindow",
]
