"""Business logic services for the developer portal."""

from portal.services.api_key_service import APIKeyService, KeyValidationResult
from portal.services.webhook_service import WebhookService

__all__ = ["APIKeyService", "KeyValidationResult", "WebhookService"]
