"""Delayed retry scheduling.

Retries are timer callbacks on the event loop, not sleeping tasks, so a
backoff interval holds nothing but a TimerHandle. At most one pending
retry exists per delivery id; scheduling again replaces the previous one.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Hashable, Optional

from relay.logging import get_logger

logger = get_logger(__name__)


class RetryScheduler(ABC):
    """Runs a callback after a delay, keyed by delivery id."""

    @abstractmethod
    def schedule(self, key: Hashable, delay: float, callback: Callable[[], None]) -> None:
        """Run callback after `delay` seconds, replacing any pending callback for key."""

    @abstractmethod
    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending callback for key. Returns True if one was pending."""

    @abstractmethod
    def is_scheduled(self, key: Hashable) -> bool:
        """Whether a callback is pending for key."""

    @abstractmethod
    def pending_count(self) -> int:
        """Number of pending callbacks."""

    @abstractmethod
    def close(self) -> None:
        """Cancel everything still pending."""


class AsyncioRetryScheduler(RetryScheduler):
    """Scheduler backed by loop.call_later."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: dict[Hashable, asyncio.TimerHandle] = {}

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, key: Hashable, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(key)

        def fire() -> None:
            self._handles.pop(key, None)
            callback()

        self._handles[key] = self._get_loop().call_later(delay, fire)

    def cancel(self, key: Hashable) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_scheduled(self, key: Hashable) -> bool:
        return key in self._handles

    def pending_count(self) -> int:
        return len(self._handles)

    def close(self) -> None:
        if self._handles:
            logger.info("retry_scheduler_closed", cancelled=len(self._handles))
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
