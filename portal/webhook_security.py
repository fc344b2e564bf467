"""
Webhook Security Module

Signature verification for payment provider callbacks and shared-secret checks
for internal endpoints:
- HMAC-SHA256 over the exact raw request body
- Constant-time comparison (prevents timing attacks)
- Any decoding problem counts as "not authentic", never as a crash
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIXES = ("sha256=", "v1,", "v1=")


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def decode_signature_header(signature_header: str) -> bytes:
    """Strip a known scheme prefix and decode the hex digest. Raises ValueError on bad input."""
    value = signature_header.strip()
    for prefix in SIGNATURE_PREFIXES:
        if value.lower().startswith(prefix):
            value = value[len(prefix):]
            break
    return bytes.fromhex(value)


def verify_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    Verify an HMAC-SHA256 webhook signature.

    Args:
        raw_body: Request body exactly as received, before any parsing
        signature_header: Hex digest, optionally prefixed with ``sha256=``
        secret: Shared webhook secret

    Returns:
        True if the signature is authentic, False otherwise
    """
    if not signature_header or not secret:
        logger.warning("🚫 Webhook signature or secret missing")
        return False

    try:
        received = decode_signature_header(signature_header)
        expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
        is_valid = hmac.compare_digest(expected, received)
    except Exception as e:
        logger.warning(f"🚫 Webhook signature could not be decoded: {e}")
        return False

    if not is_valid:
        logger.warning("🚫 Webhook signature mismatch")
    return is_valid


def verify_api_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Check an internal API credential.

    With no expected key configured only presence is checked (legacy behaviour),
    and a warning is logged so operators notice.
    """
    if not provided:
        return False
    if not expected:
        logger.warning("⚠️ INTERNAL_API_KEY not configured, accepting any non-empty credential")
        return True
    return constant_time_compare(provided, expected)


def create_webhook_signature(secret: str, payload: bytes, provider: str = "generic") -> str:
    """
    Create a webhook signature for testing or outgoing webhooks.

    Args:
        secret: Signing secret
        payload: Request body bytes
        provider: 'generic' for a bare hex digest, 'prefixed' for ``sha256=<hex>``
    """
    signature = compute_hmac_sha256(secret, payload)
    if provider == "prefixed":
        return f"sha256={signature}"
    return signature
