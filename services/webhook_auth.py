"""
HMAC signatures for internal webhooks and operator endpoints.

Signature = hex(HMAC-SHA256(secret, f"{timestamp}.{raw body}")), sent as
``X-Omoide-Signature: sha256=<hex>`` with the unix timestamp in
``X-Omoide-Timestamp``. The timestamp bounds how long a captured request can
be replayed.
"""
import hashlib
import hmac
import time
from typing import Optional

SIGNATURE_HEADER = "X-Omoide-Signature"
TIMESTAMP_HEADER = "X-Omoide-Timestamp"


class SignatureError(Exception):
    pass


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    message = timestamp.encode("utf-8") + b"." + body
    return "sha256=" + hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_request(secret: str, body: bytes, now: Optional[float] = None) -> dict[str, str]:
    """Headers to attach to an outgoing signed request."""
    timestamp = str(int(now if now is not None else time.time()))
    return {
        TIMESTAMP_HEADER: timestamp,
        SIGNATURE_HEADER: compute_signature(secret, timestamp, body),
    }


def verify_signature(
    secret: Optional[str],
    body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> None:
    """Raise SignatureError unless the request was signed with `secret` recently."""
    if not secret:
        raise SignatureError("Signing secret not configured")
    if not timestamp or not signature:
        raise SignatureError("Missing signature headers")
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise SignatureError("Invalid signature timestamp")
    current = now if now is not None else time.time()
    if abs(current - sent_at) > tolerance_seconds:
        raise SignatureError("Signature timestamp outside tolerance")
    expected = compute_signature(secret, timestamp, body)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        raise SignatureError("Signature mismatch")


def verify_bearer(expected_token: Optional[str], authorization: Optional[str]) -> bool:
    """Constant-time check of an `Authorization: Bearer <token>` header."""
    if not expected_token or not authorization:
        return False
    return hmac.compare_digest(authorization.encode("utf-8"), f"Bearer {expected_token}".encode("utf-8"))
