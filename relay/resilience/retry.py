"""Retry policy with exponential backoff for webhook deliveries.

The delay before retry n (0-indexed by the attempt that just failed) is:

    initial_delay_ms * backoff_multiplier ** n

No jitter and no cap: receivers rely on the schedule being predictable.

Usage:
    policy = RetryPolicy(max_retries=3, initial_delay_ms=1000, backoff_multiplier=2)

    policy.should_retry(0)       # True
    policy.get_delay_ms(0)       # 1000.0
    policy.get_delay_ms(2)       # 4000.0
    policy.should_retry(3)       # False
"""

from dataclasses import dataclass

from relay.config import (
    WEBHOOK_DEFAULT_BACKOFF_MULTIPLIER,
    WEBHOOK_DEFAULT_INITIAL_DELAY_MS,
    WEBHOOK_DEFAULT_MAX_RETRIES,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for delivery retry behavior.

    Attributes:
        max_retries: Retries after the initial attempt (default 3)
        initial_delay_ms: Delay before the first retry in milliseconds (default 5000)
        backoff_multiplier: Growth factor between successive delays (default 2.0)
    """

    max_retries: int = WEBHOOK_DEFAULT_MAX_RETRIES
    initial_delay_ms: int = WEBHOOK_DEFAULT_INITIAL_DELAY_MS
    backoff_multiplier: float = WEBHOOK_DEFAULT_BACKOFF_MULTIPLIER

    def get_delay_ms(self, attempt: int) -> float:
        """Delay after the given failed attempt (0-indexed)."""
        return self.initial_delay_ms * (self.backoff_multiplier**attempt)

    def get_delay(self, attempt: int) -> float:
        """Delay after the given failed attempt, in seconds."""
        return self.get_delay_ms(attempt) / 1000.0

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt follows a failure of `attempt` (0-indexed)."""
        return attempt < self.max_retries

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1


DEFAULT_POLICY = RetryPolicy()
