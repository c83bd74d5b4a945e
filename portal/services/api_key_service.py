"""API Key service for managing programmatic access.

Provides:
- API key creation with one-time secret disclosure
- Key validation with usage tracking
- Rotation, revocation and deletion
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from relay.db.models import APIKey, APIKeyRead, utcnow
from relay.logging import get_logger
from relay.secrets_codec import (
    fingerprint,
    fingerprints_match,
    generate_api_key,
    split_prefix,
)
from relay.storage import Storage
from portal.exceptions import KeyNotFoundError
from portal.schemas import CreateAPIKeyRequest, validate

logger = get_logger(__name__)

INVALID_KEY_MESSAGE = "Invalid API key"
EXPIRED_KEY_MESSAGE = "API key expired"


@dataclass(frozen=True)
class KeyValidationResult:
    """Outcome of validating a presented API key."""

    valid: bool
    key: Optional[APIKey] = None
    error: Optional[str] = None


class APIKeyService:
    """Service for managing API keys."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def create_key(
        self,
        tenant_id: UUID,
        name: str,
        created_by_id: Optional[UUID] = None,
        permissions: Optional[list[str]] = None,
        rate_limit: Optional[int] = None,
        rate_limit_window: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> tuple[APIKey, str]:
        """Create a new API key.

        Returns:
            tuple: (APIKey model, plaintext key)
            The plaintext key is only returned once at creation.

        Raises:
            ValidationError: If any field is out of range
            SecretGenerationError: If the entropy source fails
        """
        fields: dict[str, Any] = {
            "name": name,
            "permissions": permissions,
            "rate_limit": rate_limit,
            "rate_limit_window": rate_limit_window,
            "expires_at": expires_at,
            "metadata": metadata,
        }
        request = validate(
            CreateAPIKeyRequest,
            {k: v for k, v in fields.items() if v is not None},
        )

        generated = generate_api_key()

        api_key = APIKey(
            tenant_id=tenant_id,
            created_by_id=created_by_id,
            name=request.name,
            permissions=request.permissions,
            rate_limit=request.rate_limit,
            rate_limit_window=request.rate_limit_window,
            expires_at=request.expires_at,
            key_prefix=generated.prefix,
            key_hash=generated.fingerprint,
            meta=request.metadata,
        )
        api_key = self.storage.save_api_key(api_key)

        logger.info(
            "api_key_created",
            key_id=str(api_key.id),
            tenant_id=str(tenant_id),
            key_prefix=api_key.key_prefix,
        )
        return api_key, generated.secret

    def list_keys(self, tenant_id: UUID) -> list[APIKeyRead]:
        """Get all API keys for a tenant, newest first."""
        return [APIKeyRead.from_key(k) for k in self.storage.list_api_keys_by_tenant(tenant_id)]

    def get_key(self, key_id: UUID, tenant_id: UUID) -> APIKeyRead:
        """Get a specific API key by ID."""
        return APIKeyRead.from_key(self._get(key_id, tenant_id))

    def validate_key(self, full_key: str) -> KeyValidationResult:
        """Validate a presented API key.

        Unknown, revoked and malformed keys all yield the same generic
        error. The expiry message is only returned once prefix and
        fingerprint have matched.
        """
        prefix = split_prefix(full_key)
        if not prefix:
            return KeyValidationResult(valid=False, error=INVALID_KEY_MESSAGE)

        key_hash = fingerprint(full_key)
        api_key = self.storage.find_api_key_by_prefix_and_fingerprint(prefix, key_hash)

        if not api_key or not fingerprints_match(full_key, api_key.key_hash):
            return KeyValidationResult(valid=False, error=INVALID_KEY_MESSAGE)

        if api_key.is_expired():
            return KeyValidationResult(valid=False, error=EXPIRED_KEY_MESSAGE)

        # Usage is tracked with a single increment; the result does not depend on it
        used_at = utcnow()
        self.storage.update_api_key_usage(api_key.id, used_at)
        api_key.usage_count += 1
        api_key.last_used_at = used_at

        return KeyValidationResult(valid=True, key=api_key)

    def rotate_key(self, key_id: UUID, tenant_id: UUID) -> tuple[APIKey, str]:
        """Issue a new prefix and secret for an existing key and reset usage.

        Returns:
            tuple: (APIKey model, new plaintext key)
        """
        self._get(key_id, tenant_id)

        generated = generate_api_key()
        api_key = self.storage.update_api_key_fields(
            key_id,
            key_prefix=generated.prefix,
            key_hash=generated.fingerprint,
            usage_count=0,
            last_used_at=None,
        )

        logger.info(
            "api_key_rotated",
            key_id=str(api_key.id),
            tenant_id=str(tenant_id),
            key_prefix=api_key.key_prefix,
        )
        return api_key, generated.secret

    def revoke_key(self, key_id: UUID, tenant_id: UUID) -> APIKeyRead:
        """Deactivate a key without deleting it."""
        self._get(key_id, tenant_id)
        api_key = self.storage.update_api_key_fields(key_id, is_active=False)

        logger.info("api_key_revoked", key_id=str(key_id), tenant_id=str(tenant_id))
        return APIKeyRead.from_key(api_key)

    def delete_key(self, key_id: UUID, tenant_id: UUID) -> None:
        """Permanently delete a key."""
        if not self.storage.delete_api_key(key_id, tenant_id):
            raise KeyNotFoundError()

        logger.info("api_key_deleted", key_id=str(key_id), tenant_id=str(tenant_id))

    def has_permission(self, api_key: APIKey, required: str) -> bool:
        """Check if an API key grants a permission.

        Supports exact matches, resource wildcards ("webhooks:*" matches
        "webhooks:write") and the global "*" / "admin" permissions.
        """
        granted = set(api_key.permissions or [])

        if required in granted:
            return True

        resource = required.split(":")[0]
        if f"{resource}:*" in granted:
            return True

        return "admin" in granted or "*" in granted

    def _get(self, key_id: UUID, tenant_id: UUID) -> APIKey:
        api_key = self.storage.get_api_key(key_id, tenant_id)
        if not api_key:
            raise KeyNotFoundError()
        return api_key
