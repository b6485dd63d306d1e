"""Payment provider signal handling."""

from .signals import (  # noqa: F401
    PaymentState,
    WooOrder,
    build_delivery_fingerprint,
    extract_woo_order,
    resolve_payment_state,
)
