"""HMAC-SHA256 signing for webhook payloads.

Pure functions with no I/O; safe to call concurrently.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

SIGNATURE_PREFIX = "sha256="
SIGNATURE_HEADER = "X-Webhook-Signature"

_HEX_DIGITS = frozenset("0123456789abcdef")


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compute_signature(payload: str | bytes, secret: str | bytes) -> str:
    """Compute the HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Request body, as bytes or a UTF-8 string.
        secret: Shared signing secret.

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    digest = hmac.new(
        key=_to_bytes(secret),
        msg=_to_bytes(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: str | bytes, signature: str, secret: str | bytes) -> bool:
    """Verify an HMAC-SHA256 signature in constant time.

    Malformed input (wrong types, missing prefix, non-hex digest, empty
    secret) yields False rather than an exception.

    Args:
        payload: Request body that was signed.
        signature: Signature to check ("sha256=<hex_digest>").
        secret: Shared signing secret.

    Returns:
        True if the signature is valid, False otherwise.
    """
    if not isinstance(payload, str | bytes) or not isinstance(secret, str | bytes):
        return False
    if not isinstance(signature, str) or not secret:
        return False
    if not signature.startswith(SIGNATURE_PREFIX):
        return False

    digest = signature[len(SIGNATURE_PREFIX) :]
    if len(digest) != hashlib.sha256().digest_size * 2 or not _HEX_DIGITS.issuperset(digest):
        return False

    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, signature)


def generate_secret() -> str:
    """Generate a signing secret: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


__all__ = [
    "SIGNATURE_HEADER",
    "SIGNATURE_PREFIX",
    "compute_signature",
    "generate_secret",
    "verify_signature",
]
