"""Checkout link and sale draft stores built on the cache abstraction."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any
from uuid import uuid4

from ticketsale_api.core.settings import settings
from ticketsale_api.services.cache import CacheBackend


class CheckoutLinkStore:
    """Remembers the checkout URL issued for an order session so staff can re-post it."""

    def __init__(self, cache: CacheBackend, *, ttl_seconds: int | None = None) -> None:
        self._cache = cache
        self._ttl_seconds = ttl_seconds or settings.checkout_link_ttl_seconds

    @staticmethod
    def _key(order_session_id: str) -> str:
        return f"checkout-link:{order_session_id}"

    async def remember(self, order_session_id: str, checkout_url: str, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self._ttl_seconds
        await self._cache.set(self._key(order_session_id), checkout_url, ttl_seconds=ttl)

    async def get(self, order_session_id: str) -> str | None:
        value = await self._cache.get(self._key(order_session_id))
        return value if isinstance(value, str) else None

    async def forget(self, order_session_id: str) -> None:
        await self._cache.delete(self._key(order_session_id))


@dataclass(slots=True)
class SaleDraft:
    """In-progress sale assembled by staff before an order session is created."""

    tenant_id: str
    guild_id: str
    ticket_channel_id: str
    staff_user_id: str
    customer_discord_id: str
    id: str = field(default_factory=lambda: uuid4().hex)
    product_id: str | None = None
    variant_id: str | None = None
    basket_items: list[dict[str, Any]] = field(default_factory=list)
    coupon_code: str | None = None
    tip_minor: int = 0
    tip_enabled: bool = False
    default_currency: str = "GBP"
    answers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SaleDraft":
        return cls(**data)


class SaleDraftStore:
    def __init__(self, cache: CacheBackend, *, ttl_seconds: int | None = None) -> None:
        self._cache = cache
        self._ttl_seconds = ttl_seconds or settings.sale_draft_ttl_seconds

    @staticmethod
    def _key(draft_id: str) -> str:
        return f"sale-draft:{draft_id}"

    async def save(self, draft: SaleDraft) -> SaleDraft:
        """Store the draft, restarting its expiry window."""

        await self._cache.set(self._key(draft.id), draft.to_dict(), ttl_seconds=self._ttl_seconds)
        return draft

    async def get(self, draft_id: str) -> SaleDraft | None:
        data = await self._cache.get(self._key(draft_id))
        if not isinstance(data, dict):
            return None
        return SaleDraft.from_dict(data)

    async def delete(self, draft_id: str) -> None:
        await self._cache.delete(self._key(draft_id))
