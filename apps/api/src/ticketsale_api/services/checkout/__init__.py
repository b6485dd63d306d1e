"""Checkout link and sale draft caches."""

from .links import CheckoutLinkStore, SaleDraft, SaleDraftStore

__all__ = ["CheckoutLinkStore", "SaleDraft", "SaleDraftStore"]
