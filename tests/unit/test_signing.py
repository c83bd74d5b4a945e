"""Unit tests for webhook payload signing."""

import hashlib
import hmac

from relay.delivery.signing import (
    build_headers,
    canonical_json,
    compute_signature,
    shadowed_reserved_headers,
    verify_signature,
)

SECRET = "whsec_test"


class TestCanonicalJson:
    def test_compact(self):
        assert canonical_json({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'

    def test_keeps_unicode(self):
        assert canonical_json({"name": "Zoë"}) == '{"name":"Zoë"}'


class TestComputeSignature:
    def test_matches_hmac_sha256(self):
        body = '{"id":1}'
        expected = hmac.new(
            SECRET.encode(), f"1700000000000.{body}".encode(), hashlib.sha256
        ).hexdigest()

        assert compute_signature(SECRET, 1700000000000, body) == expected


class TestBuildHeaders:
    """Tests for build_headers()."""

    def _headers(self, custom=None):
        return build_headers(
            secret=SECRET,
            event="user.created",
            delivery_id="d-1",
            timestamp=1700000000000,
            body='{"id":1}',
            custom_headers=custom,
        )

    def test_standard_headers(self):
        headers = self._headers()

        assert headers["Content-Type"] == "application/json"
        assert headers["X-Webhook-Event"] == "user.created"
        assert headers["X-Webhook-ID"] == "d-1"
        assert headers["X-Webhook-Timestamp"] == "1700000000000"
        assert headers["X-Webhook-Signature"] == (
            "v1=" + compute_signature(SECRET, 1700000000000, '{"id":1}')
        )

    def test_custom_headers_merged_last(self):
        """Custom headers are added and may override standard ones."""
        headers = self._headers({"Authorization": "Bearer t", "X-Webhook-Event": "custom"})

        assert headers["Authorization"] == "Bearer t"
        assert headers["X-Webhook-Event"] == "custom"


class TestShadowedReservedHeaders:
    def test_detects_case_insensitively(self):
        custom = {"x-webhook-signature": "x", "Content-Type": "text/plain", "X-Other": "y"}
        assert shadowed_reserved_headers(custom) == ["Content-Type", "x-webhook-signature"]

    def test_none(self):
        assert shadowed_reserved_headers(None) == []
        assert shadowed_reserved_headers({"Authorization": "t"}) == []


class TestVerifySignature:
    """Receiver-side verification."""

    def test_round_trip(self):
        body = canonical_json({"id": 1})
        header = "v1=" + compute_signature(SECRET, 1700000000000, body)

        assert verify_signature(SECRET, "1700000000000", body, header) is True

    def test_rejects_tampered_body(self):
        header = "v1=" + compute_signature(SECRET, 1700000000000, '{"id":1}')
        assert verify_signature(SECRET, "1700000000000", '{"id":2}', header) is False

    def test_rejects_wrong_secret(self):
        header = "v1=" + compute_signature(SECRET, 1700000000000, '{"id":1}')
        assert verify_signature("whsec_other", "1700000000000", '{"id":1}', header) is False

    def test_rejects_unknown_version(self):
        signature = compute_signature(SECRET, 1700000000000, '{"id":1}')
        assert verify_signature(SECRET, "1700000000000", '{"id":1}', f"v0={signature}") is False
        assert verify_signature(SECRET, "1700000000000", '{"id":1}', signature) is False

    def test_rejects_bad_timestamp(self):
        header = "v1=" + compute_signature(SECRET, 1700000000000, '{"id":1}')
        assert verify_signature(SECRET, "not-a-number", '{"id":1}', header) is False
