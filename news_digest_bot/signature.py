"""LINE webhook signature verification."""

import base64
import binascii
import hashlib
import hmac


def generate_signature(raw_body: bytes, shared_secret: bytes) -> str:
    """Return the base64 HMAC-SHA256 of raw_body, as LINE sends it."""
    digest = hmac.new(shared_secret, raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    raw_body: bytes, provided_signature: str, shared_secret: bytes
) -> bool:
    """Check the X-Line-Signature header against the raw request body.

    Returns False on any mismatch, undecodable signature or empty input.
    """
    if not raw_body or not provided_signature or not shared_secret:
        return False

    try:
        provided = base64.b64decode(provided_signature.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False

    expected = hmac.new(shared_secret, raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided)
