"""Webhook delivery and API key infrastructure for the developer portal."""
