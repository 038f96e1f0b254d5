"""Webhook signature verification.

The gateway signs the exact request bytes: base64(HMAC-SHA256(secret, body)).
"""

import base64
import hashlib
import hmac


def sign(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(raw_body: bytes | str, signature: str | None, secret: str | None) -> bool:
    """True only when ``signature`` matches ``raw_body`` under ``secret``.

    Never raises: a missing secret or signature, or input that cannot be
    encoded, is simply a mismatch. The comparison takes the same time
    wherever the first differing byte is.
    """
    if not secret or not signature:
        return False
    try:
        body = raw_body.encode() if isinstance(raw_body, str) else bytes(raw_body)
        expected = sign(body, secret)
        return hmac.compare_digest(expected.encode(), signature.strip().encode())
    except (TypeError, ValueError, UnicodeError):
        return False
