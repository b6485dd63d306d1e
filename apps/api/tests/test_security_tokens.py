from dataclasses import replace

import pytest

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.security import (
    CallbackTokenPayload,
    CheckoutTokenPayload,
    SessionPayload,
    create_session_token,
    create_webhook_signature,
    sign_callback_token,
    sign_checkout_token,
    verify_callback_token,
    verify_checkout_token,
    verify_session_token,
    verify_webhook_signature,
)


SECRET = "checkout-secret"
NOW = 1_760_000_000


def _tamper(token: str) -> str:
    encoded, signature = token.split(".")
    flipped = "A" if signature[0] != "A" else "B"
    return f"{encoded}.{flipped}{signature[1:]}"


def _single_char_mutations(value: str) -> list[str]:
    mutations = []
    for index, char in enumerate(value):
        if char == ".":
            continue
        replacement = "A" if char != "A" else "B"
        mutations.append(value[:index] + replacement + value[index + 1:])
    return mutations


def test_checkout_token_round_trip() -> None:
    payload = CheckoutTokenPayload(
        order_session_id="os-1",
        exp=NOW + 60,
        tenant_id="tenant-1",
        guild_id="guild-1",
        ticket_channel_id="chan-1",
    )
    token = sign_checkout_token(payload, SECRET)

    assert verify_checkout_token(token, SECRET, now=NOW) == payload
    assert "productId" not in payload.to_dict()


@pytest.mark.parametrize("token", ["", "no-dot", "a.b.c", ".sig", "payload."])
def test_checkout_token_malformed(token: str) -> None:
    with pytest.raises(AppError) as excinfo:
        verify_checkout_token(token, SECRET, now=NOW)

    assert excinfo.value.code == ErrorCode.INVALID_CHECKOUT_TOKEN
    assert excinfo.value.status_code == 400


def test_checkout_token_signature_mismatch() -> None:
    token = sign_checkout_token(CheckoutTokenPayload(order_session_id="os-1", exp=NOW + 60), SECRET)

    for candidate, secret in ((_tamper(token), SECRET), (token, "other-secret")):
        with pytest.raises(AppError) as excinfo:
            verify_checkout_token(candidate, secret, now=NOW)
        assert excinfo.value.code == ErrorCode.INVALID_CHECKOUT_TOKEN_SIGNATURE
        assert excinfo.value.status_code == 401


def test_checkout_token_expiry() -> None:
    token = sign_checkout_token(CheckoutTokenPayload(order_session_id="os-1", exp=NOW), SECRET)

    assert verify_checkout_token(token, SECRET, now=NOW).order_session_id == "os-1"
    with pytest.raises(AppError) as excinfo:
        verify_checkout_token(token, SECRET, now=NOW + 1)
    assert excinfo.value.code == ErrorCode.EXPIRED_CHECKOUT_TOKEN


def test_session_token_round_trip_and_failures() -> None:
    payload = SessionPayload(
        user_id="user-1",
        discord_user_id="discord-1",
        exp=NOW + 600,
        is_super_admin=True,
        tenant_ids=("tenant-1",),
    )
    token = create_session_token(payload, "session-secret")

    assert verify_session_token(token, "session-secret", now=NOW) == payload

    with pytest.raises(AppError) as excinfo:
        verify_session_token(_tamper(token), "session-secret", now=NOW)
    assert excinfo.value.code == ErrorCode.INVALID_SESSION

    with pytest.raises(AppError) as excinfo:
        verify_session_token("garbage", "session-secret", now=NOW)
    assert excinfo.value.code == ErrorCode.INVALID_SESSION

    with pytest.raises(AppError) as excinfo:
        verify_session_token(token, "session-secret", now=NOW + 601)
    assert excinfo.value.code == ErrorCode.SESSION_EXPIRED


def test_checkout_token_is_not_a_session_token() -> None:
    token = sign_checkout_token(CheckoutTokenPayload(order_session_id="os-1", exp=NOW + 60), SECRET)

    with pytest.raises(AppError) as excinfo:
        verify_session_token(token, SECRET, now=NOW)
    assert excinfo.value.code == ErrorCode.INVALID_SESSION


def test_callback_token_binds_tenant_guild_and_order() -> None:
    payload = CallbackTokenPayload(tenant_id="tenant-1", guild_id="guild-1", order_session_id="os-1")
    token = sign_callback_token(payload, "cb-secret")

    assert payload.serialize() == "tenant-1:guild-1:os-1"
    assert verify_callback_token(payload=payload, secret="cb-secret", provided_token=token)
    assert not verify_callback_token(payload=payload, secret="cb-secret", provided_token=None)
    assert not verify_callback_token(payload=payload, secret="other", provided_token=token)
    assert not verify_callback_token(
        payload=CallbackTokenPayload(tenant_id="tenant-1", guild_id="guild-1", order_session_id="os-2"),
        secret="cb-secret",
        provided_token=token,
    )


def test_webhook_signature_verification() -> None:
    body = b'{"id": 812, "status": "completed"}'
    signature = create_webhook_signature(body, "wc-secret")

    assert verify_webhook_signature(raw_body=body, secret="wc-secret", provided_signature=signature)
    assert verify_webhook_signature(raw_body=body, secret="wc-secret", provided_signature=f" {signature} ")
    assert not verify_webhook_signature(raw_body=body + b" ", secret="wc-secret", provided_signature=signature)
    assert not verify_webhook_signature(raw_body=body, secret="other", provided_signature=signature)
    assert not verify_webhook_signature(raw_body=body, secret="wc-secret", provided_signature=None)
    assert not verify_webhook_signature(raw_body=body, secret="", provided_signature=signature)


def test_checkout_token_rejects_any_single_character_change() -> None:
    token = sign_checkout_token(CheckoutTokenPayload(order_session_id="os-1", exp=NOW + 60), SECRET)
    signature = token.split(".")[1]

    mutations = _single_char_mutations(token)
    assert len(mutations) == len(token) - 1
    # Payload-only changes keep the original signature.
    assert any(candidate.endswith("." + signature) for candidate in mutations)

    for candidate in mutations:
        with pytest.raises(AppError) as excinfo:
            verify_checkout_token(candidate, SECRET, now=NOW)
        assert excinfo.value.code == ErrorCode.INVALID_CHECKOUT_TOKEN_SIGNATURE


def test_session_token_rejects_any_single_character_change() -> None:
    payload = SessionPayload(user_id="user-1", discord_user_id="discord-1", exp=NOW + 600)
    token = create_session_token(payload, "session-secret")

    for candidate in _single_char_mutations(token):
        with pytest.raises(AppError) as excinfo:
            verify_session_token(candidate, "session-secret", now=NOW)
        assert excinfo.value.code == ErrorCode.INVALID_SESSION


def test_callback_token_rejects_any_single_character_change() -> None:
    payload = CallbackTokenPayload(tenant_id="tenant-1", guild_id="guild-1", order_session_id="os-1")
    token = sign_callback_token(payload, "cb-secret")

    for candidate in _single_char_mutations(token):
        assert not verify_callback_token(payload=payload, secret="cb-secret", provided_token=candidate)

    for field_name in ("tenant_id", "guild_id", "order_session_id"):
        for mutated in _single_char_mutations(getattr(payload, field_name)):
            changed = replace(payload, **{field_name: mutated})
            assert not verify_callback_token(payload=changed, secret="cb-secret", provided_token=token)
