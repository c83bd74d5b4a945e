"""Input validation for API key and webhook operations.

Services accept plain keyword arguments and validate them through these
models; pydantic errors are re-raised as portal ValidationError.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from relay.config import (
    API_KEY_DEFAULT_PERMISSIONS,
    API_KEY_DEFAULT_RATE_LIMIT,
    API_KEY_DEFAULT_RATE_LIMIT_WINDOW,
    WEBHOOK_DEFAULT_BACKOFF_MULTIPLIER,
    WEBHOOK_DEFAULT_INITIAL_DELAY_MS,
    WEBHOOK_DEFAULT_MAX_RETRIES,
)
from portal.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate data against a model, raising portal ValidationError on failure."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Validation failed",
            details={"errors": json.loads(e.json(include_url=False))},
        ) from e


def _check_url(value: str) -> str:
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError) as e:
        raise ValueError(f"Invalid URL: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError("URL must be an absolute http(s) URL")
    return value


def _check_events(events: list[str]) -> list[str]:
    cleaned: list[str] = []
    for event in events:
        name = event.strip()
        if not name:
            raise ValueError("Event names must be non-empty")
        if name not in cleaned:
            cleaned.append(name)
    if not cleaned:
        raise ValueError("At least one event is required")
    return cleaned


def _check_headers(headers: dict[str, str]) -> dict[str, str]:
    for name, value in headers.items():
        if not name.strip():
            raise ValueError("Header names must be non-empty")
        if any(c in name + value for c in "\r\n"):
            raise ValueError(f"Header {name!r} contains a line break")
    return headers


# =============================================================================
# Webhooks
# =============================================================================


class RetryPolicyInput(BaseModel):
    """Retry policy for a webhook (delays in milliseconds)."""

    max_retries: int = Field(default=WEBHOOK_DEFAULT_MAX_RETRIES, ge=0, le=10)
    initial_delay_ms: int = Field(default=WEBHOOK_DEFAULT_INITIAL_DELAY_MS, ge=1000, le=300000)
    backoff_multiplier: float = Field(default=WEBHOOK_DEFAULT_BACKOFF_MULTIPLIER, ge=1, le=5)


class CreateWebhookRequest(BaseModel):
    """Request to create a webhook."""

    name: str = Field(min_length=1, max_length=100)
    url: str = Field(min_length=1)
    events: list[str] = Field(min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    retry_policy: RetryPolicyInput = Field(default_factory=RetryPolicyInput)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str]) -> list[str]:
        return _check_events(value)

    @field_validator("headers")
    @classmethod
    def validate_headers(cls, value: dict[str, str]) -> dict[str, str]:
        return _check_headers(value)


class UpdateWebhookRequest(BaseModel):
    """Request to update a webhook. Only supplied fields change."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    url: Optional[str] = Field(default=None, min_length=1)
    events: Optional[list[str]] = Field(default=None, min_length=1)
    headers: Optional[dict[str, str]] = None
    retry_policy: Optional[RetryPolicyInput] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _check_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return None if value is None else _check_events(value)

    @field_validator("headers")
    @classmethod
    def validate_headers(cls, value: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
        return None if value is None else _check_headers(value)


# =============================================================================
# API Keys
# =============================================================================


class CreateAPIKeyRequest(BaseModel):
    """Request to create an API key."""

    name: str = Field(min_length=1, max_length=100)
    permissions: list[str] = Field(default_factory=lambda: list(API_KEY_DEFAULT_PERMISSIONS))
    rate_limit: int = Field(default=API_KEY_DEFAULT_RATE_LIMIT, ge=1, le=100000)
    rate_limit_window: int = Field(default=API_KEY_DEFAULT_RATE_LIMIT_WINDOW, ge=60, le=86400)
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
