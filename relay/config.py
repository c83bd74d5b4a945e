"""Centralized configuration for the developer portal delivery subsystem."""

import os
from pathlib import Path

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# =============================================================================
# Database
# =============================================================================

# SQLAlchemy connection URL used by SQLStorage
# Use DATABASE_URL env var to point at PostgreSQL in production
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{PROJECT_ROOT / 'portal.db'}",
)

# =============================================================================
# Webhook Delivery
# =============================================================================

# Per-request timeout for outbound webhook POSTs
WEBHOOK_TIMEOUT_SECONDS = float(os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "30"))

# Stored response bodies are truncated to this many characters
WEBHOOK_RESPONSE_BODY_LIMIT = int(
    os.environ.get("WEBHOOK_RESPONSE_BODY_LIMIT", "10000")
)

# Largest canonical JSON payload accepted by trigger()
WEBHOOK_MAX_PAYLOAD_BYTES = int(
    os.environ.get("WEBHOOK_MAX_PAYLOAD_BYTES", str(1024 * 1024))
)

# How often the reconciliation sweep re-queues overdue retries
WEBHOOK_RECONCILE_INTERVAL_SECONDS = float(
    os.environ.get("WEBHOOK_RECONCILE_INTERVAL_SECONDS", "60")
)

# When true, custom webhook headers may not shadow Content-Type / X-Webhook-*
WEBHOOK_FORBID_RESERVED_HEADERS = (
    os.environ.get("WEBHOOK_FORBID_RESERVED_HEADERS", "false").lower() == "true"
)

# Default retry policy (initial delay in milliseconds)
WEBHOOK_DEFAULT_MAX_RETRIES = 3
WEBHOOK_DEFAULT_INITIAL_DELAY_MS = 5000
WEBHOOK_DEFAULT_BACKOFF_MULTIPLIER = 2.0

# =============================================================================
# API Keys and Rate Limiting
# =============================================================================

API_KEY_PREFIX = os.environ.get("API_KEY_PREFIX", "dp")
WEBHOOK_SECRET_PREFIX = os.environ.get("WEBHOOK_SECRET_PREFIX", "whsec")

API_KEY_DEFAULT_RATE_LIMIT = 1000
API_KEY_DEFAULT_RATE_LIMIT_WINDOW = 3600  # seconds
API_KEY_DEFAULT_PERMISSIONS = ["read"]

# Expired rate-limit windows are evicted on this interval
RATE_LIMIT_SWEEP_INTERVAL_SECONDS = float(
    os.environ.get("RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "60")
)

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_JSON = os.environ.get("LOG_JSON", "true").lower() == "true"
