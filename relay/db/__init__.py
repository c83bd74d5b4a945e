"""Database layer: SQLModel tables and engine management."""

from relay.db.engine import build_engine, drop_all_tables, init_db, session_scope

__all__ = ["build_engine", "drop_all_tables", "init_db", "session_scope"]
