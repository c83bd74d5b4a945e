"""Secret generation and fingerprinting.

API keys and webhook signing secrets are opaque bearer tokens. Only a
SHA-256 fingerprint of an API key is ever persisted; the key itself is
handed to the caller once. The public prefix is drawn from independent
randomness so it reveals nothing about the secret part.

Format:
    API key:         {API_KEY_PREFIX}_{8 hex chars}_{43 urlsafe chars}
    Signing secret:  {WEBHOOK_SECRET_PREFIX}_{64 hex chars}
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass

from relay.config import API_KEY_PREFIX, WEBHOOK_SECRET_PREFIX

SECRET_BYTES = 32  # 256 bits
PREFIX_BYTES = 4


class SecretGenerationError(Exception):
    """Raised when the OS entropy source cannot produce random bytes.

    Fatal: callers must abort the create/rotate operation, never retry.
    """

    pass


@dataclass(frozen=True)
class GeneratedSecret:
    """A freshly generated secret.

    Attributes:
        secret: Full secret. Returned to the caller exactly once.
        prefix: Short public identifier, safe to store and display.
        fingerprint: Hex SHA-256 of the full secret.
    """

    secret: str
    prefix: str
    fingerprint: str

    def __repr__(self) -> str:
        return f"GeneratedSecret(prefix={self.prefix!r})"


def fingerprint(secret: str) -> str:
    """Compute the one-way fingerprint stored in place of a secret."""
    return hashlib.sha256(secret.encode()).hexdigest()


def fingerprints_match(secret: str, stored_fingerprint: str) -> bool:
    """Constant-time comparison of a secret against a stored fingerprint."""
    return hmac.compare_digest(fingerprint(secret), stored_fingerprint)


def _random_hex(nbytes: int) -> str:
    try:
        return secrets.token_hex(nbytes)
    except (OSError, NotImplementedError) as e:
        raise SecretGenerationError("Entropy source unavailable") from e


def _random_urlsafe(nbytes: int) -> str:
    try:
        return secrets.token_urlsafe(nbytes)
    except (OSError, NotImplementedError) as e:
        raise SecretGenerationError("Entropy source unavailable") from e


def generate_api_key() -> GeneratedSecret:
    """Generate a new API key.

    Raises:
        SecretGenerationError: If the entropy source fails
    """
    prefix = f"{API_KEY_PREFIX}_{_random_hex(PREFIX_BYTES)}"
    key = f"{prefix}_{_random_urlsafe(SECRET_BYTES)}"
    return GeneratedSecret(secret=key, prefix=prefix, fingerprint=fingerprint(key))


def generate_signing_secret() -> GeneratedSecret:
    """Generate a webhook signing secret.

    Unlike API keys the full signing secret is stored, since it is needed
    to sign every outbound payload.
    """
    secret = f"{WEBHOOK_SECRET_PREFIX}_{_random_hex(SECRET_BYTES)}"
    return GeneratedSecret(
        secret=secret,
        prefix=secret[: len(WEBHOOK_SECRET_PREFIX) + 5],
        fingerprint=fingerprint(secret),
    )


def split_prefix(full_key: str) -> str:
    """Extract the public prefix from a full API key.

    The prefix is the first two underscore-separated components. The random
    tail may itself contain underscores, so only the head is inspected.
    """
    parts = full_key.split("_")
    if len(parts) < 3:
        return ""
    return "_".join(parts[:2])
