"""Signing, token and encryption helpers."""

from .callback_token import CallbackTokenPayload, sign_callback_token, verify_callback_token
from .checkout_token import CheckoutTokenPayload, sign_checkout_token, verify_checkout_token
from .encryption import decrypt_secret, encrypt_secret
from .session_token import SessionPayload, create_session_token, verify_session_token
from .webhook_signature import create_webhook_signature, verify_webhook_signature

__all__ = [
    "CallbackTokenPayload",
    "CheckoutTokenPayload",
    "SessionPayload",
    "create_session_token",
    "create_webhook_signature",
    "decrypt_secret",
    "encrypt_secret",
    "sign_callback_token",
    "sign_checkout_token",
    "verify_callback_token",
    "verify_checkout_token",
    "verify_session_token",
    "verify_webhook_signature",
]
