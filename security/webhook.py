"""Svix-style webhook signature verification (used by Resend).

A request carries three headers: ``svix-id``, ``svix-timestamp`` and
``svix-signature``. The signature header holds one or more space-separated
``version,base64-signature`` pairs, one per active signing key, so a key can be
rotated without dropping deliveries.

See https://resend.com/docs/dashboard/webhooks/verify-webhook-signature
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Mapping, NamedTuple, Optional, Union

logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"
SUPPORTED_VERSION = "v1"
TOLERANCE_IN_SECONDS = 300


class WebhookHeaders(NamedTuple):
    id: str
    timestamp: str
    signature: str

    @classmethod
    def from_mapping(cls, headers: Mapping[str, str]) -> Optional["WebhookHeaders"]:
        """Pull the svix-* headers out of a request; None if any is missing."""
        msg_id = headers.get("svix-id")
        timestamp = headers.get("svix-timestamp")
        signature = headers.get("svix-signature")
        if not msg_id or not timestamp or not signature:
            return None
        return cls(msg_id, timestamp, signature)


def signing_key(secret: str) -> bytes:
    # "whsec_<base64 key>" -> raw key bytes; anything else is used as-is
    if secret.startswith(SECRET_PREFIX):
        return base64.b64decode(secret[len(SECRET_PREFIX):], validate=True)
    return secret.encode("utf-8")


def sign(payload: Union[str, bytes], timestamp: str, secret: str) -> str:
    """Base64 HMAC-SHA256 over ``"{timestamp}.{payload}"``."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    signed = timestamp.encode("utf-8") + b"." + payload
    digest = hmac.new(signing_key(secret), signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _candidate_signatures(header: str) -> list:
    candidates = []
    for part in header.split():
        version, sep, value = part.partition(",")
        if sep and version == SUPPORTED_VERSION and value:
            candidates.append(value)
    return candidates


def verify_webhook_signature(
    payload: Union[str, bytes],
    headers: WebhookHeaders,
    secret: str,
    tolerance: int = TOLERANCE_IN_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """True only if one of the v1 signatures matches and the timestamp is fresh.

    `payload` must be the body exactly as received. Never raises: malformed
    input of any kind is a rejection.
    """
    try:
        timestamp = int(headers.timestamp)
    except (TypeError, ValueError):
        logger.warning("Webhook rejected: unparsable timestamp")
        return False

    now = int(time.time() if now is None else now)
    if abs(now - timestamp) > tolerance:
        logger.warning("Webhook rejected: timestamp outside the %ss window", tolerance)
        return False

    candidates = _candidate_signatures(headers.signature or "")
    if not candidates:
        logger.warning("Webhook rejected: no %s signature", SUPPORTED_VERSION)
        return False

    try:
        expected = sign(payload, headers.timestamp, secret).encode("ascii")
        return any(hmac.compare_digest(expected, c.encode("utf-8")) for c in candidates)
    except Exception as e:
        logger.warning("Webhook rejected: could not compute signature (%s)", type(e).__name__)
        return False
