"""Shared fixtures and test doubles."""

import os

# Set test environment variables before relay.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")

from typing import Callable, Hashable, Optional
from uuid import UUID, uuid4

import httpx
import pytest

from relay.db import build_engine, drop_all_tables, init_db
from relay.db.models import Webhook
from relay.delivery import RetryScheduler
from relay.secrets_codec import generate_signing_secret
from relay.storage import SQLStorage


class RecordingScheduler(RetryScheduler):
    """Scheduler that records requested delays instead of waiting.

    With auto_fire (default) callbacks run immediately. Otherwise they are
    held until release() is called.
    """

    def __init__(self, auto_fire: bool = True):
        self.auto_fire = auto_fire
        self.delays: list[float] = []
        self.keys: list[Hashable] = []
        self.held: dict[Hashable, Callable[[], None]] = {}
        self.cancelled: list[Hashable] = []

    def schedule(self, key: Hashable, delay: float, callback: Callable[[], None]) -> None:
        self.delays.append(delay)
        self.keys.append(key)
        if self.auto_fire:
            callback()
        else:
            self.held[key] = callback

    def cancel(self, key: Hashable) -> bool:
        self.cancelled.append(key)
        return self.held.pop(key, None) is not None

    def is_scheduled(self, key: Hashable) -> bool:
        return key in self.held

    def pending_count(self) -> int:
        # Held callbacks only fire on release(), so drain() must not wait for them
        return 0

    def release(self) -> None:
        held, self.held = self.held, {}
        for callback in held.values():
            callback()

    def close(self) -> None:
        self.held.clear()


class RecordingEndpoint:
    """httpx handler that records requests and answers with canned responses.

    responses is consumed in order; the last entry repeats.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        answer = self.responses[index]
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            # A fresh response per request; the client binds each one to its request
            return httpx.Response(answer.status_code, content=answer.content)
        return httpx.Response(answer, text="ok" if answer < 300 else "error")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture
def storage(db_engine):
    return SQLStorage(db_engine)


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_webhook(storage, tenant_id):
    """Insert a webhook directly, bypassing input validation."""

    def _make(
        url: str = "https://hooks.example.com/receive",
        events: Optional[list[str]] = None,
        tenant: Optional[UUID] = None,
        **fields,
    ) -> Webhook:
        generated = generate_signing_secret()
        webhook = Webhook(
            tenant_id=tenant or tenant_id,
            name=fields.pop("name", "Test hook"),
            url=url,
            events=events or ["user.created"],
            secret=generated.secret,
            secret_prefix=generated.prefix,
            **fields,
        )
        return storage.save_webhook(webhook)

    return _make
