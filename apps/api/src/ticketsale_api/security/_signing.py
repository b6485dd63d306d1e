"""Shared helpers for ``<base64url payload>.<base64url hmac>`` tokens."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sign_value(value: str, secret: str) -> str:
    return b64url_encode(hmac.new(secret.encode("utf-8"), value.encode("ascii"), hashlib.sha256).digest())


def encode_signed(payload: dict[str, Any], secret: str) -> str:
    encoded = b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{encoded}.{sign_value(encoded, secret)}"


def split_token(token: str) -> tuple[str, str] | None:
    parts = token.split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def signature_matches(encoded_payload: str, signature: str, secret: str) -> bool:
    try:
        expected = sign_value(encoded_payload, secret)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def decode_payload(encoded_payload: str) -> dict[str, Any] | None:
    try:
        decoded = json.loads(b64url_decode(encoded_payload).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None
