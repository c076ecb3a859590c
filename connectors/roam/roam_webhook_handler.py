"""
ROAM webhook verification utilities.

ROAM signs deliveries with the Standard Webhooks scheme:

- ``webhook-id``: unique delivery id
- ``webhook-timestamp``: unix seconds
- ``webhook-signature``: space-separated ``v1,<base64 HMAC-SHA256>`` entries

The signed content is ``"{id}.{timestamp}.{raw body}"`` and the key is the
base64 payload of the secret, after stripping an optional ``whsec_`` prefix.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time

from src.ingest.gatekeeper.verification import BaseSigningSecretVerifier
from src.utils.config import get_roam_webhook_secret, get_roam_webhook_tolerance_seconds
from src.utils.logging import get_logger

logger = get_logger(__name__)

WEBHOOK_ID_HEADER = "webhook-id"
WEBHOOK_TIMESTAMP_HEADER = "webhook-timestamp"
WEBHOOK_SIGNATURE_HEADER = "webhook-signature"
SECRET_PREFIX = "whsec_"
SIGNATURE_VERSION = "v1"

MISSING_HEADERS_ERROR = "Missing required webhook headers"
INVALID_TIMESTAMP_ERROR = "Invalid webhook timestamp"
STALE_TIMESTAMP_ERROR = "Webhook timestamp too old or too far in the future"
SIGNATURE_MISMATCH_ERROR = "Signature verification failed"


class RoamWebhookVerifier(BaseSigningSecretVerifier):
    """Verifier for ROAM webhooks using the process-wide ROAM_WEBHOOK_SECRET."""

    source_type = "roam"
    verify_func = staticmethod(lambda h, b, s: verify_roam_webhook(h, b, s))

    def load_secret(self, tenant_id: str) -> str | None:
        del tenant_id  # one app-level secret covers every tenant
        return get_roam_webhook_secret()


def decode_signing_secret(secret: str) -> bytes:
    """Strip the ``whsec_`` prefix and base64-decode the signing key."""
    raw = secret[len(SECRET_PREFIX) :] if secret.startswith(SECRET_PREFIX) else secret
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("ROAM webhook signing secret is not configured as valid base64") from e


def compute_roam_signature(key: bytes, webhook_id: str, timestamp: str, body: bytes) -> str:
    signed_content = f"{webhook_id}.{timestamp}.".encode() + body
    digest = hmac.new(key, signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_roam_webhook(
    headers: dict[str, str],
    body: bytes,
    secret: str,
    *,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> None:
    """Verify a ROAM webhook delivery.

    Args:
        headers: Webhook headers (lower-cased names)
        body: Raw webhook body, byte-for-byte as received
        secret: Signing secret, with or without the ``whsec_`` prefix
        tolerance_seconds: Allowed clock skew, defaults to ROAM_WEBHOOK_TOLERANCE_SECONDS
        now: Current unix time, for tests

    Raises:
        ValueError: If verification fails for any reason
    """
    webhook_id = headers.get(WEBHOOK_ID_HEADER, "")
    timestamp = headers.get(WEBHOOK_TIMESTAMP_HEADER, "")
    signature_header = headers.get(WEBHOOK_SIGNATURE_HEADER, "")
    if not webhook_id or not timestamp or not signature_header:
        raise ValueError(MISSING_HEADERS_ERROR)

    # Plain unix seconds only: no sign, separators, padding or non-ASCII digits
    if not (timestamp.isascii() and timestamp.isdigit()):
        raise ValueError(INVALID_TIMESTAMP_ERROR)
    timestamp_seconds = int(timestamp)

    if tolerance_seconds is None:
        tolerance_seconds = get_roam_webhook_tolerance_seconds()
    current_time = time.time() if now is None else now
    if abs(current_time - timestamp_seconds) > tolerance_seconds:
        raise ValueError(STALE_TIMESTAMP_ERROR)

    key = decode_signing_secret(secret)
    expected = compute_roam_signature(key, webhook_id, timestamp, body)

    matched = False
    for entry in signature_header.split():
        version, _, candidate = entry.partition(",")
        if version != SIGNATURE_VERSION or not candidate:
            continue
        # Keep scanning after a match so timing does not depend on entry position
        if hmac.compare_digest(candidate.encode(), expected.encode()):
            matched = True

    if not matched:
        raise ValueError(SIGNATURE_MISMATCH_ERROR)


def extract_roam_webhook_metadata(
    headers: dict[str, str], body_str: str
) -> dict[str, str | int | bool]:
    """Extract metadata from a ROAM webhook for observability. Never raises."""
    metadata: dict[str, str | int | bool] = {
        "payload_size": len(body_str),
        "webhook_id": headers.get(WEBHOOK_ID_HEADER, ""),
    }

    try:
        payload = json.loads(body_str)
    except (json.JSONDecodeError, ValueError):
        metadata["parse_error"] = "Failed to parse JSON"
        return metadata

    if not isinstance(payload, dict):
        return metadata

    message = payload.get("message")
    if isinstance(message, dict):
        metadata["push_envelope"] = True
        attributes = message.get("attributes") or {}
        if isinstance(attributes, dict) and attributes.get("eventType"):
            metadata["event_type"] = str(attributes["eventType"])
        if message.get("messageId"):
            metadata["push_message_id"] = str(message["messageId"])
        return metadata

    if payload.get("type"):
        metadata["event_type"] = str(payload["type"])
    data = payload.get("data")
    if isinstance(data, dict) and data.get("id"):
        metadata["message_id"] = str(data["id"])

    return metadata
