"""Webhook delivery ledger used to de-duplicate provider retries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.db.base import Base, enum_values
from ticketsale_api.models.order_session import new_identifier


class WebhookProviderEnum(str, Enum):
    WOOCOMMERCE = "woocommerce"
    VOODOOPAY = "voodoopay"


class WebhookEventStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
    DUPLICATE = "duplicate"


_ALLOWED_STATUS_TRANSITIONS: dict[WebhookEventStatus, frozenset[WebhookEventStatus]] = {
    WebhookEventStatus.RECEIVED: frozenset(
        {WebhookEventStatus.PROCESSED, WebhookEventStatus.FAILED, WebhookEventStatus.DUPLICATE}
    ),
    # A provider redelivery of a failed event resets it for another attempt.
    WebhookEventStatus.FAILED: frozenset({WebhookEventStatus.RECEIVED}),
    WebhookEventStatus.PROCESSED: frozenset(),
    WebhookEventStatus.DUPLICATE: frozenset(),
}


class InvalidWebhookStatusTransition(ValueError):
    """Raised when the ledger is asked to move an event through an illegal transition."""

    def __init__(self, current: WebhookEventStatus, requested: WebhookEventStatus) -> None:
        super().__init__(f"Cannot move webhook event from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(32), primary_key=True, default=new_identifier)
    provider = Column(
        SqlEnum(WebhookProviderEnum, name="webhook_provider_enum", values_callable=enum_values),
        nullable=False,
    )
    tenant_id = Column(String(32), nullable=False)
    guild_id = Column(String(32), nullable=False)
    order_session_id = Column(String(32), nullable=True)
    delivery_fingerprint = Column(String(128), nullable=False)
    topic = Column(String, nullable=True)
    signature_valid = Column(Boolean, nullable=False, default=False)
    status = Column(
        SqlEnum(WebhookEventStatus, name="webhook_event_status_enum", values_callable=enum_values),
        nullable=False,
        default=WebhookEventStatus.RECEIVED,
        server_default=WebhookEventStatus.RECEIVED.value,
    )
    failure_reason = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    payload_json = Column("payload", JSON, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "delivery_fingerprint", name="uq_webhook_events_provider_fingerprint"),
    )

    def transition_to(self, target: WebhookEventStatus) -> None:
        current = WebhookEventStatus(self.status)
        if target not in _ALLOWED_STATUS_TRANSITIONS[current]:
            raise InvalidWebhookStatusTransition(current, target)
        self.status = target


@dataclass(slots=True)
class RecordedWebhookEvent:
    """Result container for webhook ledger inserts."""

    event: WebhookEvent
    created: bool


async def record_webhook_event(
    session: AsyncSession,
    *,
    provider: WebhookProviderEnum,
    tenant_id: str,
    guild_id: str,
    delivery_fingerprint: str,
    topic: str | None,
    signature_valid: bool,
    payload: dict[str, Any] | None,
    order_session_id: str | None = None,
) -> RecordedWebhookEvent:
    """Insert the delivery unless its fingerprint is already on the ledger (first writer wins)."""

    existing = await get_webhook_event_by_fingerprint(
        session, provider=provider, delivery_fingerprint=delivery_fingerprint
    )
    if existing is not None:
        return RecordedWebhookEvent(event=existing, created=False)

    event = WebhookEvent(
        provider=provider,
        tenant_id=tenant_id,
        guild_id=guild_id,
        order_session_id=order_session_id,
        delivery_fingerprint=delivery_fingerprint,
        topic=topic,
        signature_valid=signature_valid,
        status=WebhookEventStatus.RECEIVED,
        payload_json=payload,
    )
    session.add(event)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        found = await get_webhook_event_by_fingerprint(
            session, provider=provider, delivery_fingerprint=delivery_fingerprint
        )
        if found is None:
            raise
        return RecordedWebhookEvent(event=found, created=False)

    return RecordedWebhookEvent(event=event, created=True)


async def get_webhook_event_by_fingerprint(
    session: AsyncSession,
    *,
    provider: WebhookProviderEnum,
    delivery_fingerprint: str,
) -> WebhookEvent | None:
    stmt = select(WebhookEvent).where(
        WebhookEvent.provider == provider,
        WebhookEvent.delivery_fingerprint == delivery_fingerprint,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def mark_webhook_processed(session: AsyncSession, event: WebhookEvent) -> WebhookEvent:
    event.transition_to(WebhookEventStatus.PROCESSED)
    event.failure_reason = None
    event.processed_at = datetime.now(timezone.utc)
    await session.flush()
    return event


async def mark_webhook_duplicate(session: AsyncSession, event: WebhookEvent) -> WebhookEvent:
    event.transition_to(WebhookEventStatus.DUPLICATE)
    await session.flush()
    return event


async def mark_webhook_failed(
    session: AsyncSession,
    event: WebhookEvent,
    *,
    failure_reason: str,
) -> WebhookEvent:
    event.transition_to(WebhookEventStatus.FAILED)
    event.failure_reason = failure_reason[:500]
    event.attempt_count = (event.attempt_count or 0) + 1
    await session.flush()
    return event


async def reset_webhook_for_retry(session: AsyncSession, event: WebhookEvent) -> WebhookEvent:
    event.transition_to(WebhookEventStatus.RECEIVED)
    await session.flush()
    return event
