"""Application error type shared by services and the HTTP layer."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CHECKOUT_TOKEN = "INVALID_CHECKOUT_TOKEN"
    INVALID_CHECKOUT_TOKEN_SIGNATURE = "INVALID_CHECKOUT_TOKEN_SIGNATURE"
    EXPIRED_CHECKOUT_TOKEN = "EXPIRED_CHECKOUT_TOKEN"
    INVALID_SESSION = "INVALID_SESSION"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INVALID_SECRET_PAYLOAD = "INVALID_SECRET_PAYLOAD"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_DISABLED = "TENANT_DISABLED"
    TENANT_ACCESS_DENIED = "TENANT_ACCESS_DENIED"
    TENANT_ROLE_DENIED = "TENANT_ROLE_DENIED"
    GUILD_NOT_CONNECTED = "GUILD_NOT_CONNECTED"
    ORDER_SESSION_NOT_FOUND = "ORDER_SESSION_NOT_FOUND"
    INVALID_ORDER_TRANSITION = "INVALID_ORDER_TRANSITION"
    INTEGRATION_NOT_FOUND = "INTEGRATION_NOT_FOUND"
    MISSING_ORDER_SESSION_ID = "MISSING_ORDER_SESSION_ID"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(RuntimeError):
    """Raised for expected failures that callers render or persist."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 400,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


def from_unknown_error(error: BaseException, fallback_code: ErrorCode = ErrorCode.INTERNAL_ERROR) -> AppError:
    if isinstance(error, AppError):
        return error
    return AppError(fallback_code, str(error) or "Unexpected error", status_code=500)


def validation_error(message: str, details: Any = None) -> AppError:
    return AppError(ErrorCode.VALIDATION_ERROR, message, status_code=422, details=details)
