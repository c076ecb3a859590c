"""Tests for ROAM webhook signature verification."""

import base64
import json
from unittest.mock import patch

import pytest

from connectors.roam.roam_webhook_handler import (
    INVALID_TIMESTAMP_ERROR,
    MISSING_HEADERS_ERROR,
    SIGNATURE_MISMATCH_ERROR,
    STALE_TIMESTAMP_ERROR,
    RoamWebhookVerifier,
    compute_roam_signature,
    decode_signing_secret,
    extract_roam_webhook_metadata,
    verify_roam_webhook,
)

KEY = b"roam-test-signing-key-0123456789"
SECRET = "whsec_" + base64.b64encode(KEY).decode()
NOW = 1_760_000_000
BODY = json.dumps(
    {"type": "chat.message.dm", "data": {"id": "msg_1", "text": "hello"}}
).encode()


def _signed_headers(
    body: bytes = BODY,
    webhook_id: str = "msg_2Lb0hPz",
    timestamp: int = NOW,
    key: bytes = KEY,
) -> dict[str, str]:
    signature = compute_roam_signature(key, webhook_id, str(timestamp), body)
    return {
        "webhook-id": webhook_id,
        "webhook-timestamp": str(timestamp),
        "webhook-signature": f"v1,{signature}",
    }


def _flip_byte(value: str, position: int) -> str:
    chars = list(value)
    chars[position] = chr(ord(chars[position]) ^ 0x01)
    return "".join(chars)


class TestVerifyRoamWebhook:
    def test_valid_signature_accepted(self):
        verify_roam_webhook(_signed_headers(), BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_secret_without_prefix_accepted(self):
        bare_secret = base64.b64encode(KEY).decode()
        verify_roam_webhook(_signed_headers(), BODY, bare_secret, tolerance_seconds=300, now=NOW)

    @pytest.mark.parametrize("position", [0, 1, 10, len(BODY) // 2, len(BODY) - 1])
    def test_body_byte_flip_rejected(self, position):
        headers = _signed_headers()
        tampered = bytearray(BODY)
        tampered[position] ^= 0x01

        with pytest.raises(ValueError, match=SIGNATURE_MISMATCH_ERROR):
            verify_roam_webhook(headers, bytes(tampered), SECRET, tolerance_seconds=300, now=NOW)

    @pytest.mark.parametrize("position", [0, 3, 4, -1])
    def test_webhook_id_byte_flip_rejected(self, position):
        headers = _signed_headers()
        headers["webhook-id"] = _flip_byte(headers["webhook-id"], position)

        with pytest.raises(ValueError, match=SIGNATURE_MISMATCH_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    @pytest.mark.parametrize("position", [0, 4, 8, -2, -1])
    def test_timestamp_byte_flip_rejected(self, position):
        # Early digits push the timestamp out of tolerance, late ones break the signature
        headers = _signed_headers()
        headers["webhook-timestamp"] = _flip_byte(headers["webhook-timestamp"], position)

        with pytest.raises(ValueError):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_timestamp_change_within_tolerance_rejected(self):
        headers = _signed_headers()
        headers["webhook-timestamp"] = str(NOW + 1)

        with pytest.raises(ValueError, match=SIGNATURE_MISMATCH_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_wrong_key_rejected(self):
        headers = _signed_headers(key=b"some-other-key")

        with pytest.raises(ValueError, match=SIGNATURE_MISMATCH_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_expired_timestamp_rejected(self):
        headers = _signed_headers(timestamp=NOW - 301)

        with pytest.raises(ValueError, match=STALE_TIMESTAMP_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_future_timestamp_rejected(self):
        headers = _signed_headers(timestamp=NOW + 301)

        with pytest.raises(ValueError, match=STALE_TIMESTAMP_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_timestamp_at_tolerance_boundary_accepted(self):
        headers = _signed_headers(timestamp=NOW - 300)
        verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_tolerance_defaults_to_config(self, monkeypatch):
        monkeypatch.setenv("ROAM_WEBHOOK_TOLERANCE_SECONDS", "10")
        headers = _signed_headers(timestamp=NOW - 11)

        with pytest.raises(ValueError, match=STALE_TIMESTAMP_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, now=NOW)

    @pytest.mark.parametrize(
        "missing", ["webhook-id", "webhook-timestamp", "webhook-signature"]
    )
    def test_missing_header_rejected(self, missing):
        headers = _signed_headers()
        del headers[missing]

        with pytest.raises(ValueError, match=MISSING_HEADERS_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    @pytest.mark.parametrize(
        "timestamp",
        [
            "yesterday",
            "1_760_000_000",
            "+1760000000",
            "-1760000000",
            " 1760000000",
            "1760000000 ",
            "1760000000.0",
            "\u0661\u0667\u0666\u0660\u0660\u0660\u0660\u0660\u0660\u0660",
        ],
    )
    def test_non_decimal_timestamp_rejected(self, timestamp):
        headers = _signed_headers()
        headers["webhook-timestamp"] = timestamp

        with pytest.raises(ValueError, match=INVALID_TIMESTAMP_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_any_matching_v1_entry_accepted(self):
        headers = _signed_headers()
        valid = headers["webhook-signature"]
        headers["webhook-signature"] = f"v1,bm90LXRoZS1zaWduYXR1cmU= {valid}"

        verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_unknown_versions_ignored(self):
        headers = _signed_headers()
        signature = headers["webhook-signature"].split(",", 1)[1]
        headers["webhook-signature"] = f"v2,{signature}"

        with pytest.raises(ValueError, match=SIGNATURE_MISMATCH_ERROR):
            verify_roam_webhook(headers, BODY, SECRET, tolerance_seconds=300, now=NOW)

    def test_undecodable_secret_is_configuration_error(self):
        with pytest.raises(ValueError, match="not configured"):
            verify_roam_webhook(
                _signed_headers(), BODY, "whsec_***not base64***", tolerance_seconds=300, now=NOW
            )


class TestDecodeSigningSecret:
    def test_strips_prefix(self):
        assert decode_signing_secret(SECRET) == KEY

    def test_plain_base64(self):
        assert decode_signing_secret(base64.b64encode(KEY).decode()) == KEY


class TestRoamWebhookVerifier:
    @pytest.mark.asyncio
    async def test_missing_secret_reports_not_configured(self, monkeypatch):
        monkeypatch.delenv("ROAM_WEBHOOK_SECRET", raising=False)

        result = await RoamWebhookVerifier().verify(_signed_headers(), BODY, "tenant-1")

        assert result.success is False
        assert "not configured" in (result.error or "")

    @pytest.mark.asyncio
    async def test_valid_delivery(self, monkeypatch):
        monkeypatch.setenv("ROAM_WEBHOOK_SECRET", SECRET)

        with patch("connectors.roam.roam_webhook_handler.time.time", return_value=NOW):
            result = await RoamWebhookVerifier().verify(_signed_headers(), BODY, "tenant-1")

        assert result.success is True
        assert result.error is None

    @pytest.mark.asyncio
    async def test_bad_signature_reports_generic_error(self, monkeypatch):
        monkeypatch.setenv("ROAM_WEBHOOK_SECRET", SECRET)
        headers = _signed_headers(key=b"wrong")

        with patch("connectors.roam.roam_webhook_handler.time.time", return_value=NOW):
            result = await RoamWebhookVerifier().verify(headers, BODY, "tenant-1")

        assert result.success is False
        assert result.error == SIGNATURE_MISMATCH_ERROR


class TestExtractRoamWebhookMetadata:
    def test_direct_event(self):
        metadata = extract_roam_webhook_metadata({"webhook-id": "wh_1"}, BODY.decode())

        assert metadata["payload_size"] == len(BODY)
        assert metadata["webhook_id"] == "wh_1"
        assert metadata["event_type"] == "chat.message.dm"
        assert metadata["message_id"] == "msg_1"

    def test_push_envelope(self):
        body = json.dumps(
            {
                "message": {
                    "data": base64.b64encode(BODY).decode(),
                    "messageId": "push-42",
                    "attributes": {"eventType": "chat.message.dm"},
                },
                "subscription": "projects/x/subscriptions/roam",
            }
        )

        metadata = extract_roam_webhook_metadata({}, body)

        assert metadata["push_envelope"] is True
        assert metadata["push_message_id"] == "push-42"
        assert metadata["event_type"] == "chat.message.dm"

    def test_invalid_json_never_raises(self):
        metadata = extract_roam_webhook_metadata({}, "{not json")

        assert metadata["parse_error"] == "Failed to parse JSON"
