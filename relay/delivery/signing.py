"""Webhook payload signing.

Wire contract for every outbound delivery:

    POST <webhook.url>
    Content-Type: application/json
    X-Webhook-Event: <event>
    X-Webhook-Signature: v1=<hex HMAC-SHA256>
    X-Webhook-Timestamp: <unix millis>
    X-Webhook-ID: <delivery id>
    <custom webhook headers, merged last>

    <canonical JSON payload>

The signature covers the exact string "{timestamp}.{body}" where body is
the request body byte-for-byte. Receivers verify with verify_signature().
"""

import hashlib
import hmac
import json
from typing import Any, Mapping, Optional

SIGNATURE_VERSION = "v1"

HEADER_EVENT = "X-Webhook-Event"
HEADER_SIGNATURE = "X-Webhook-Signature"
HEADER_TIMESTAMP = "X-Webhook-Timestamp"
HEADER_DELIVERY_ID = "X-Webhook-ID"

RESERVED_HEADERS = frozenset(
    h.lower()
    for h in (
        "Content-Type",
        HEADER_EVENT,
        HEADER_SIGNATURE,
        HEADER_TIMESTAMP,
        HEADER_DELIVERY_ID,
    )
)


def canonical_json(payload: Any) -> str:
    """Serialize a payload exactly as it is sent and signed."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def compute_signature(secret: str, timestamp: int, body: str) -> str:
    """Hex HMAC-SHA256 over "{timestamp}.{body}"."""
    message = f"{timestamp}.{body}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def build_headers(
    *,
    secret: str,
    event: str,
    delivery_id: str,
    timestamp: int,
    body: str,
    custom_headers: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Build the request headers for one attempt.

    Custom headers are merged after the standard ones and can override
    them, including the signature.
    """
    signature = compute_signature(secret, timestamp, body)
    headers = {
        "Content-Type": "application/json",
        HEADER_EVENT: event,
        HEADER_SIGNATURE: f"{SIGNATURE_VERSION}={signature}",
        HEADER_TIMESTAMP: str(timestamp),
        HEADER_DELIVERY_ID: delivery_id,
    }
    if custom_headers:
        headers.update(custom_headers)
    return headers


def shadowed_reserved_headers(custom_headers: Optional[Mapping[str, str]]) -> list[str]:
    """Custom header names that would replace a standard header."""
    if not custom_headers:
        return []
    return sorted(name for name in custom_headers if name.lower() in RESERVED_HEADERS)


def verify_signature(
    secret: str,
    timestamp: str,
    body: str,
    signature_header: str,
) -> bool:
    """Receiver-side check of an X-Webhook-Signature header."""
    version, _, received = signature_header.partition("=")
    if version != SIGNATURE_VERSION or not received:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    expected = compute_signature(secret, ts, body)
    return hmac.compare_digest(expected, received)
