"""HMAC-SHA256 signatures for webhooks exchanged with buyers.

Signatures are lowercase hex digests of the raw request body. Receivers can
additionally require a ``timestamp`` field (seconds since the epoch) in the
JSON body to reject replayed requests.
"""
import hashlib
import hmac
import json
import logging
import re
import secrets
import time
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
# Clock skew tolerated for timestamps slightly in the future
MAX_FUTURE_SKEW_SECONDS = 30

_HEX_SIGNATURE = re.compile(r"^[a-f0-9]{64}$")

Payload = Union[str, bytes]


def _as_bytes(payload: Payload) -> bytes:
    return payload if isinstance(payload, bytes) else payload.encode("utf-8")


def generate_webhook_signature(payload: Payload, secret: str) -> str:
    """Return the 64-char lowercase hex HMAC-SHA256 of payload under secret."""
    if not secret:
        raise ValueError("Webhook secret is required")
    return hmac.new(secret.encode("utf-8"), _as_bytes(payload), hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: Payload, signature: Optional[str], secret: str,
                             max_age: Optional[int] = None) -> bool:
    """Check a signature in constant time, optionally enforcing a replay window.

    When ``max_age`` is given the payload must be JSON carrying a numeric
    ``timestamp`` no older than ``max_age`` seconds.
    """
    if not signature or not isinstance(signature, str) or not secret:
        return False

    normalized = signature.strip().lower()
    if not _HEX_SIGNATURE.match(normalized):
        return False

    expected = generate_webhook_signature(payload, secret)
    if not hmac.compare_digest(expected.encode("ascii"), normalized.encode("ascii")):
        return False

    if max_age is not None:
        return _validate_timestamp(payload, max_age)
    return True


def _validate_timestamp(payload: Payload, max_age: int) -> bool:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        logger.debug("Webhook payload is not JSON, cannot check timestamp")
        return False

    timestamp = data.get("timestamp") if isinstance(data, dict) else None
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        return False

    now = time.time()
    if now - timestamp > max_age:
        logger.info(f"Rejected webhook with stale timestamp ({int(now - timestamp)}s old)")
        return False
    if timestamp - now > MAX_FUTURE_SKEW_SECONDS:
        logger.info("Rejected webhook with timestamp in the future")
        return False
    return True


def generate_webhook_secret() -> str:
    """32 random bytes as 64 hex chars."""
    return secrets.token_hex(32)


def create_signed_webhook_payload(data: dict, secret: str) -> Tuple[str, str]:
    """Stamp ``data`` with the current time and sign it.

    Returns (payload, signature); send the payload byte-for-byte as the body.
    """
    body = dict(data)
    body["timestamp"] = int(time.time())
    payload = json.dumps(body, separators=(",", ":"))
    return payload, generate_webhook_signature(payload, secret)
