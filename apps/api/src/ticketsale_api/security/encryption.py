"""AES-256-GCM encryption for secrets stored at rest (integration secrets).

Ciphertexts are ``base64url(nonce || tag || ciphertext)`` with a 12 byte nonce
and 16 byte tag. The configured key is either base64 encoding at least 32
bytes (the first 32 are used) or a passphrase hashed with SHA-256.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ticketsale_api.core.errors import AppError, ErrorCode


NONCE_BYTES = 12
TAG_BYTES = 16


def derive_key(raw_key: str) -> bytes:
    material = raw_key.strip()
    try:
        decoded = base64.b64decode(material, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) >= 32:
        return decoded[:32]
    return hashlib.sha256(material.encode("utf-8")).digest()


def _invalid_payload() -> AppError:
    return AppError(ErrorCode.INVALID_SECRET_PAYLOAD, "Encrypted payload is invalid", status_code=500)


def encrypt_secret(plaintext: str, raw_key: str) -> str:
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(derive_key(raw_key)).encrypt(nonce, plaintext.encode("utf-8"), None)
    # cryptography appends the tag; the stored layout puts it before the ciphertext.
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return base64.urlsafe_b64encode(nonce + tag + ciphertext).rstrip(b"=").decode("ascii")


def decrypt_secret(payload: str, raw_key: str) -> str:
    try:
        packed = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
    except (binascii.Error, ValueError) as exc:
        raise _invalid_payload() from exc

    if len(packed) < NONCE_BYTES + TAG_BYTES:
        raise _invalid_payload()

    nonce = packed[:NONCE_BYTES]
    tag = packed[NONCE_BYTES : NONCE_BYTES + TAG_BYTES]
    ciphertext = packed[NONCE_BYTES + TAG_BYTES :]
    try:
        plaintext = AESGCM(derive_key(raw_key)).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as exc:
        raise _invalid_payload() from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise _invalid_payload() from exc
