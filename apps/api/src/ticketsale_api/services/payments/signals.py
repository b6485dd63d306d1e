"""Normalize payment provider payloads into a paid / not-paid decision.

Two payload families are understood:

* WooCommerce order webhooks carry a fixed ``status`` vocabulary where
  ``processing`` and ``completed`` mean the order was paid.
* Voodoo Pay crypto callbacks are loosely shaped query strings; payment is
  inferred from transaction ids, confirmations or a positive settled amount,
  unless an explicit failure status says otherwise.

Each delivery also gets a fingerprint for the webhook ledger. Amount-bearing
fields are part of the fingerprint so a corrected redelivery is a new event.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Sequence

from ticketsale_api.models.webhook_event import WebhookProviderEnum


WOO_PAID_STATUSES = frozenset({"processing", "completed"})
WOO_ORDER_SESSION_META_KEY = "vd_order_session_id"

VOODOO_PAID_STATUSES = frozenset(
    {"paid", "complete", "completed", "confirmed", "success", "successful", "done", "finished", "ok"}
)
VOODOO_FAILED_STATUSES = frozenset(
    {"failed", "error", "cancelled", "canceled", "expired", "rejected", "invalid", "refunded"}
)

_STATUS_KEYS = ("status", "payment_status", "state", "result")
_CONFIRMATION_KEYS = ("confirmed", "is_confirmed", "paid", "success", "confirmations")
_AMOUNT_KEYS = ("value_forwarded_coin", "value_coin", "amount", "value")
_TXID_IN_KEYS = ("txid_in", "tx_in", "incoming_txid", "txidin")
_TXID_OUT_KEYS = ("txid_out", "tx_out", "outgoing_txid", "txidout")
_TRANSACTION_KEYS = ("txid", "transaction_id", "transaction_hash", "hash", "payment_id", "payment_hash")
_TRUTHY = frozenset({"1", "true", "yes", "y"})


@dataclass(frozen=True, slots=True)
class PaymentState:
    paid: bool
    status: str | None
    transaction_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class WooOrder:
    id: int
    status: str
    number: str | None = None
    total: str | None = None
    currency: str | None = None
    meta_data: tuple[Mapping[str, Any], ...] = field(default_factory=tuple)

    @property
    def order_session_id(self) -> str | None:
        for meta in self.meta_data:
            if meta.get("key") != WOO_ORDER_SESSION_META_KEY:
                continue
            value = meta.get("value")
            if isinstance(value, bool):
                return None
            if isinstance(value, (str, int)):
                return str(value)
            return None
        return None

    @property
    def total_minor(self) -> int:
        return decimal_to_minor(self.total)


def decimal_to_minor(value: str | None) -> int:
    if not value:
        return 0
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return 0
    if not amount.is_finite():
        return 0
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _first_non_empty(payload: Mapping[str, Any], keys: Sequence[str]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _normalize_status(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip().lower()
    return normalized or None


def _positive_number(value: str | None) -> bool:
    if not value:
        return False
    try:
        number = Decimal(value.strip())
    except InvalidOperation:
        return False
    return number.is_finite() and number > 0


def _truthy_signal(value: str | None) -> bool:
    if not value:
        return False
    if value.strip().lower() in _TRUTHY:
        return True
    return _positive_number(value)


def extract_woo_order(payload: Mapping[str, Any]) -> WooOrder | None:
    """Pull the order out of a WooCommerce webhook body (bare or wrapped in ``order``)."""

    candidate = payload.get("order", payload)
    if not isinstance(candidate, Mapping):
        return None

    order_id = candidate.get("id")
    status = candidate.get("status")
    if isinstance(order_id, bool) or not isinstance(order_id, int) or not isinstance(status, str):
        return None

    raw_meta = candidate.get("meta_data")
    meta_data = tuple(
        item
        for item in (raw_meta if isinstance(raw_meta, list) else [])
        if isinstance(item, Mapping) and isinstance(item.get("key"), str) and "value" in item
    )
    number = candidate.get("number")
    total = candidate.get("total")
    currency = candidate.get("currency")
    return WooOrder(
        id=order_id,
        status=status,
        number=str(number) if number is not None else None,
        total=str(total) if total is not None else None,
        currency=str(currency) if currency is not None else None,
        meta_data=meta_data,
    )


def is_paid_woo_status(status: str) -> bool:
    return status in WOO_PAID_STATUSES


def resolve_woo_payment_state(payload: Mapping[str, Any]) -> PaymentState:
    order = extract_woo_order(payload)
    if order is None:
        return PaymentState(paid=False, status=None)
    return PaymentState(paid=is_paid_woo_status(order.status), status=order.status)


def resolve_voodoo_payment_state(payload: Mapping[str, Any]) -> PaymentState:
    """Infer payment from a Voodoo Pay callback.

    An explicit failure status always wins; otherwise any transaction id,
    confirmation signal or positive amount counts as paid, and finally the
    status vocabulary is consulted.
    """

    transaction_ids = tuple(
        value
        for value in (
            _first_non_empty(payload, _TXID_IN_KEYS),
            _first_non_empty(payload, _TXID_OUT_KEYS),
            _first_non_empty(payload, _TRANSACTION_KEYS),
        )
        if value
    )
    status = _normalize_status(_first_non_empty(payload, _STATUS_KEYS))

    if status in VOODOO_FAILED_STATUSES:
        return PaymentState(paid=False, status=status, transaction_ids=transaction_ids)

    confirmed = _truthy_signal(_first_non_empty(payload, _CONFIRMATION_KEYS))
    positive_amount = _positive_number(_first_non_empty(payload, _AMOUNT_KEYS))
    if transaction_ids or confirmed or positive_amount:
        return PaymentState(paid=True, status=status, transaction_ids=transaction_ids)

    return PaymentState(
        paid=status in VOODOO_PAID_STATUSES,
        status=status,
        transaction_ids=transaction_ids,
    )


def resolve_payment_state(provider: WebhookProviderEnum, payload: Mapping[str, Any]) -> PaymentState:
    if provider == WebhookProviderEnum.WOOCOMMERCE:
        return resolve_woo_payment_state(payload)
    if provider == WebhookProviderEnum.VOODOOPAY:
        return resolve_voodoo_payment_state(payload)
    raise ValueError(f"Unsupported payment provider: {provider}")


def _hash_fingerprint(prefix: str, fingerprint: Mapping[str, Any]) -> str:
    digest = hashlib.sha256(json.dumps(fingerprint, sort_keys=True).encode("utf-8")).hexdigest()
    return f"{prefix}-{digest[:60]}"


def build_voodoo_delivery_fingerprint(order_session_id: str, payload: Mapping[str, Any]) -> str:
    return _hash_fingerprint(
        "vp",
        {
            "orderSessionId": order_session_id,
            "ipnToken": _first_non_empty(payload, ("ipn_token", "callback_id")),
            "txidIn": _first_non_empty(payload, _TXID_IN_KEYS),
            "txidOut": _first_non_empty(payload, _TXID_OUT_KEYS),
            "txid": _first_non_empty(payload, ("txid", "transaction_id", "transaction_hash", "hash")),
            "status": _normalize_status(_first_non_empty(payload, _STATUS_KEYS)),
            "value": _first_non_empty(payload, _AMOUNT_KEYS),
        },
    )


def build_woo_delivery_fingerprint(order_session_id: str, payload: Mapping[str, Any]) -> str:
    order = extract_woo_order(payload)
    return _hash_fingerprint(
        "wc",
        {
            "orderSessionId": order_session_id,
            "orderId": order.id if order else None,
            "status": order.status if order else None,
            "total": order.total if order else None,
            "currency": order.currency if order else None,
        },
    )


def build_delivery_fingerprint(
    provider: WebhookProviderEnum,
    order_session_id: str,
    payload: Mapping[str, Any],
) -> str:
    if provider == WebhookProviderEnum.WOOCOMMERCE:
        return build_woo_delivery_fingerprint(order_session_id, payload)
    if provider == WebhookProviderEnum.VOODOOPAY:
        return build_voodoo_delivery_fingerprint(order_session_id, payload)
    raise ValueError(f"Unsupported payment provider: {provider}")
