"""Dashboard session tokens (same envelope as checkout tokens, different secret)."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.security._signing import decode_payload, encode_signed, signature_matches, split_token


@dataclass(frozen=True, slots=True)
class SessionPayload:
    user_id: str
    discord_user_id: str
    exp: int
    is_super_admin: bool = False
    tenant_ids: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "discordUserId": self.discord_user_id,
            "isSuperAdmin": self.is_super_admin,
            "tenantIds": list(self.tenant_ids),
            "exp": self.exp,
        }


def _invalid(message: str) -> AppError:
    return AppError(ErrorCode.INVALID_SESSION, message, status_code=401)


def create_session_token(payload: SessionPayload, secret: str) -> str:
    return encode_signed(payload.to_dict(), secret)


def verify_session_token(token: str, secret: str, *, now: int | None = None) -> SessionPayload:
    parts = split_token(token)
    if parts is None:
        raise _invalid("Malformed session token")

    encoded_payload, signature = parts
    if not signature_matches(encoded_payload, signature, secret):
        raise _invalid("Session token signature mismatch")

    data = decode_payload(encoded_payload)
    if data is None:
        raise _invalid("Malformed session token")

    user_id = data.get("userId")
    discord_user_id = data.get("discordUserId")
    exp = data.get("exp")
    tenant_ids = data.get("tenantIds") or []
    if (
        not isinstance(user_id, str)
        or not isinstance(discord_user_id, str)
        or isinstance(exp, bool)
        or not isinstance(exp, int)
        or not isinstance(tenant_ids, list)
        or not all(isinstance(item, str) for item in tenant_ids)
    ):
        raise _invalid("Malformed session token")

    current = int(time.time()) if now is None else now
    if exp < current:
        raise AppError(ErrorCode.SESSION_EXPIRED, "Session expired", status_code=401)

    return SessionPayload(
        user_id=user_id,
        discord_user_id=discord_user_id,
        exp=exp,
        is_super_admin=data.get("isSuperAdmin") is True,
        tenant_ids=tuple(tenant_ids),
    )
