"""Developer portal services: API keys and webhooks."""

from portal.container import DeveloperPortal

__all__ = ["DeveloperPortal"]
