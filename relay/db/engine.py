"""SQLModel engine and session management.

This module provides:
- Engine creation for the configured DATABASE_URL
- Session context manager
- Table initialization utilities
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from relay.config import DATABASE_URL


def build_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create an engine.

    In-memory SQLite URLs get a StaticPool so every session shares the one
    connection that holds the data.
    """
    url = database_url or DATABASE_URL

    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    # pool_pre_ping ensures connections are valid before use
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


@contextmanager
def session_scope(engine: Engine) -> Generator[Session, None, None]:
    """Get a database session.

    Objects stay readable after the session closes (expire_on_commit=False)
    so services can hand them back to callers.

    Usage:
        with session_scope(engine) as session:
            webhook = session.get(Webhook, webhook_id)
            session.add(delivery)
            session.commit()
    """
    with Session(engine, expire_on_commit=False) as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise


def init_db(engine: Engine) -> None:
    """Create all tables.

    Intended for development and tests; production schemas are managed
    outside this package.
    """
    # Import models so they are registered with SQLModel metadata
    from relay.db.models import APIKey, Webhook, WebhookDelivery  # noqa: F401

    SQLModel.metadata.create_all(engine)


def drop_all_tables(engine: Engine) -> None:
    """Drop all tables. USE WITH CAUTION - data loss will occur."""
    SQLModel.metadata.drop_all(engine)
