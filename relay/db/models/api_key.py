"""API key model.

Keys are stored as a SHA-256 fingerprint plus a public prefix. The full
key is only ever returned by create and rotate.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from relay.config import (
    API_KEY_DEFAULT_PERMISSIONS,
    API_KEY_DEFAULT_RATE_LIMIT,
    API_KEY_DEFAULT_RATE_LIMIT_WINDOW,
)
from relay.db.models.base import UUIDModel, TimestampMixin, utcnow


class APIKeyBase(SQLModel):
    """Base fields for API keys."""

    name: str = Field(index=True, max_length=100)
    permissions: list[str] = Field(
        default_factory=lambda: list(API_KEY_DEFAULT_PERMISSIONS),
        sa_type=JSON,
    )
    rate_limit: int = Field(default=API_KEY_DEFAULT_RATE_LIMIT)
    rate_limit_window: int = Field(default=API_KEY_DEFAULT_RATE_LIMIT_WINDOW)  # seconds
    expires_at: Optional[datetime] = None


class APIKey(UUIDModel, APIKeyBase, TimestampMixin, table=True):
    """API key for programmatic access."""

    __tablename__ = "api_keys"

    tenant_id: UUID = Field(index=True)
    created_by_id: Optional[UUID] = None

    # Only the fingerprint is stored; the prefix identifies the key in listings
    key_prefix: str = Field(max_length=16, unique=True, index=True)
    key_hash: str = Field(max_length=128)

    # Usage tracking
    usage_count: int = Field(default=0)
    last_used_at: Optional[datetime] = None
    is_active: bool = Field(default=True, index=True)

    meta: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())


class APIKeyRead(APIKeyBase):
    """Schema for reading API key data (without the fingerprint)."""

    id: UUID
    tenant_id: UUID
    created_by_id: Optional[UUID]
    key_prefix: str
    usage_count: int
    last_used_at: Optional[datetime]
    is_active: bool
    meta: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_key(cls, api_key: APIKey) -> "APIKeyRead":
        return cls(
            id=api_key.id,
            tenant_id=api_key.tenant_id,
            created_by_id=api_key.created_by_id,
            name=api_key.name,
            permissions=list(api_key.permissions),
            rate_limit=api_key.rate_limit,
            rate_limit_window=api_key.rate_limit_window,
            expires_at=api_key.expires_at,
            key_prefix=api_key.key_prefix,
            usage_count=api_key.usage_count,
            last_used_at=api_key.last_used_at,
            is_active=api_key.is_active,
            meta=dict(api_key.meta or {}),
            created_at=api_key.created_at,
        )
