"""HMAC-SHA256 signatures over raw webhook bodies (WooCommerce style, base64 digest)."""

from __future__ import annotations

import base64
import hashlib
import hmac


def create_webhook_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(*, raw_body: bytes, secret: str, provided_signature: str | None) -> bool:
    if not provided_signature or not secret:
        return False

    expected = create_webhook_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), provided_signature.strip().encode("utf-8"))
