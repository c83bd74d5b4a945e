"""Storage collaborator for API keys, webhooks and deliveries."""

from relay.storage.base import Storage
from relay.storage.sql import SQLStorage

__all__ = ["Storage", "SQLStorage"]
