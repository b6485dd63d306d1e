"""Callback tokens binding a payment callback URL to a tenant, guild and order session."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CallbackTokenPayload:
    tenant_id: str
    guild_id: str
    order_session_id: str

    def serialize(self) -> str:
        return f"{self.tenant_id}:{self.guild_id}:{self.order_session_id}"


def sign_callback_token(payload: CallbackTokenPayload, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.serialize().encode("utf-8"), hashlib.sha256).hexdigest()


def verify_callback_token(*, payload: CallbackTokenPayload, secret: str, provided_token: str | None) -> bool:
    if not provided_token:
        return False

    expected = sign_callback_token(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), provided_token.encode("utf-8"))
