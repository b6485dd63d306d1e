"""Signed checkout tokens embedded in customer checkout links."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.security._signing import decode_payload, encode_signed, signature_matches, split_token


_OPTIONAL_FIELDS = (
    ("tenant_id", "tenantId"),
    ("guild_id", "guildId"),
    ("product_id", "productId"),
    ("variant_id", "variantId"),
    ("ticket_channel_id", "ticketChannelId"),
    ("customer_discord_id", "customerDiscordId"),
)


@dataclass(frozen=True, slots=True)
class CheckoutTokenPayload:
    order_session_id: str
    exp: int
    tenant_id: str | None = None
    guild_id: str | None = None
    product_id: str | None = None
    variant_id: str | None = None
    ticket_channel_id: str | None = None
    customer_discord_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"orderSessionId": self.order_session_id, "exp": self.exp}
        for attribute, key in _OPTIONAL_FIELDS:
            value = getattr(self, attribute)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckoutTokenPayload | None":
        order_session_id = data.get("orderSessionId")
        exp = data.get("exp")
        if not isinstance(order_session_id, str) or isinstance(exp, bool) or not isinstance(exp, int):
            return None
        optional = {attribute: data.get(key) for attribute, key in _OPTIONAL_FIELDS}
        if any(value is not None and not isinstance(value, str) for value in optional.values()):
            return None
        return cls(order_session_id=order_session_id, exp=exp, **optional)


def sign_checkout_token(payload: CheckoutTokenPayload, secret: str) -> str:
    return encode_signed(payload.to_dict(), secret)


def verify_checkout_token(token: str, secret: str, *, now: int | None = None) -> CheckoutTokenPayload:
    """Return the payload of a valid, unexpired token.

    Raises:
        AppError: ``INVALID_CHECKOUT_TOKEN`` when malformed,
            ``INVALID_CHECKOUT_TOKEN_SIGNATURE`` on a signature mismatch and
            ``EXPIRED_CHECKOUT_TOKEN`` once ``exp`` has passed.
    """

    parts = split_token(token)
    if parts is None:
        raise AppError(ErrorCode.INVALID_CHECKOUT_TOKEN, "Malformed checkout token", status_code=400)

    encoded_payload, signature = parts
    if not signature_matches(encoded_payload, signature, secret):
        raise AppError(
            ErrorCode.INVALID_CHECKOUT_TOKEN_SIGNATURE,
            "Invalid checkout token signature",
            status_code=401,
        )

    decoded = decode_payload(encoded_payload)
    payload = CheckoutTokenPayload.from_dict(decoded) if decoded is not None else None
    if payload is None:
        raise AppError(ErrorCode.INVALID_CHECKOUT_TOKEN, "Malformed checkout token", status_code=400)

    current = int(time.time()) if now is None else now
    if payload.exp < current:
        raise AppError(ErrorCode.EXPIRED_CHECKOUT_TOKEN, "Checkout token expired", status_code=401)

    return payload
