"""Payment webhook intake and paid-event processing.

Intake verifies the delivery, records it on the webhook ledger and queues it.
Processing runs later in its own database session: it resolves the payment
signal, drives the order session state machine and, on the first paid
transition only, credits earned points and the referral reward.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.core.errors import AppError, ErrorCode, from_unknown_error, validation_error
from ticketsale_api.core.settings import settings
from ticketsale_api.models.tenant import TenantGuild
from ticketsale_api.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookProviderEnum,
    mark_webhook_failed,
    mark_webhook_processed,
    record_webhook_event,
    reset_webhook_for_retry,
)
from ticketsale_api.security.callback_token import CallbackTokenPayload, verify_callback_token
from ticketsale_api.security.webhook_signature import verify_webhook_signature
from ticketsale_api.services.integrations.service import IntegrationService, ResolvedIntegration
from ticketsale_api.services.loyalty.points_service import PointsService
from ticketsale_api.services.loyalty.referral_service import ReferralRewardResult, ReferralService
from ticketsale_api.services.orders.state_machine import OrderSessionStateMachine, PaidTransitionOutcome
from ticketsale_api.services.payments.signals import (
    build_voodoo_delivery_fingerprint,
    build_woo_delivery_fingerprint,
    extract_woo_order,
    resolve_payment_state,
)
from ticketsale_api.services.pricing import BasketLine, PointsConfigSnapshot, calculate_earn_from_applied_discounts
from ticketsale_api.services.tenancy.authorization import AuthorizationService
from ticketsale_api.workers.webhook_queue import WebhookTaskQueue

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


class WebhookIntakeStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class WebhookProcessingStatus(str, Enum):
    PAID = "paid"
    DUPLICATE = "duplicate"
    NOT_PAID = "not_paid"
    NO_ORDER_SESSION = "no_order_session"
    SKIPPED = "skipped"


@dataclass(slots=True)
class WebhookIntakeResult:
    status: WebhookIntakeStatus
    webhook_event_id: str | None
    order_session_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"status": self.status.value, "webhookEventId": self.webhook_event_id}


@dataclass(slots=True)
class WebhookProcessingResult:
    status: WebhookProcessingStatus
    webhook_event_id: str
    order_session_id: str | None = None
    points_earned: int = 0
    referral: ReferralRewardResult | None = None


async def _ensure_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


def _parse_json_object(raw_body: bytes) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw_body or b"{}")
    except (UnicodeDecodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


class WebhookService:
    """Verifies and records provider deliveries, then queues their processing."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        queue: WebhookTaskQueue,
        session_factory: SessionFactory,
        integration_service: IntegrationService | None = None,
    ) -> None:
        self._db = db_session
        self._queue = queue
        self._session_factory = session_factory
        self._integrations = integration_service or IntegrationService(db_session)
        self._authorization = AuthorizationService(db_session)

    async def _resolve_integration(self, webhook_key: str, provider: WebhookProviderEnum) -> ResolvedIntegration:
        integration = await self._integrations.get_resolved_by_webhook_key(webhook_key, provider=provider)
        await self._authorization.ensure_tenant_is_active(integration.tenant_id)
        return integration

    async def handle_woo_webhook(
        self,
        *,
        webhook_key: str,
        raw_body: bytes,
        signature: str | None,
        topic: str | None = None,
    ) -> WebhookIntakeResult:
        integration = await self._resolve_integration(webhook_key, WebhookProviderEnum.WOOCOMMERCE)
        signature_valid = verify_webhook_signature(
            raw_body=raw_body,
            secret=integration.secret,
            provided_signature=signature,
        )

        payload = _parse_json_object(raw_body)
        if payload is None:
            if not signature_valid:
                # Nothing trustworthy to fingerprint, so the ledger is left untouched.
                logger.warning(
                    "Webhook rejected: invalid signature on unreadable body",
                    provider=WebhookProviderEnum.WOOCOMMERCE.value,
                    tenant_id=integration.tenant_id,
                    guild_id=integration.guild_id,
                )
                return WebhookIntakeResult(WebhookIntakeStatus.REJECTED, None)
            raise validation_error("Webhook body must be a JSON object")

        order = extract_woo_order(payload)
        order_session_id = order.order_session_id if order else None
        return await self._record_and_dispatch(
            integration,
            provider=WebhookProviderEnum.WOOCOMMERCE,
            delivery_fingerprint=build_woo_delivery_fingerprint(order_session_id or "", payload),
            topic=topic or "unknown",
            signature_valid=signature_valid,
            payload=payload,
            order_session_id=order_session_id,
        )

    async def handle_voodoo_callback(
        self,
        *,
        webhook_key: str,
        query: Mapping[str, str],
    ) -> WebhookIntakeResult:
        integration = await self._resolve_integration(webhook_key, WebhookProviderEnum.VOODOOPAY)

        order_session_id = (query.get("order_session_id") or "").strip()
        if not order_session_id:
            raise AppError(
                ErrorCode.MISSING_ORDER_SESSION_ID,
                "Missing order_session_id in callback",
                status_code=400,
            )

        signature_valid = verify_callback_token(
            payload=CallbackTokenPayload(
                tenant_id=integration.tenant_id,
                guild_id=integration.guild_id,
                order_session_id=order_session_id,
            ),
            secret=integration.secret,
            provided_token=query.get("cb_token"),
        )
        payload = dict(query)
        return await self._record_and_dispatch(
            integration,
            provider=WebhookProviderEnum.VOODOOPAY,
            delivery_fingerprint=build_voodoo_delivery_fingerprint(order_session_id, payload),
            topic="callback",
            signature_valid=signature_valid,
            payload=payload,
            order_session_id=order_session_id,
        )

    async def _record_and_dispatch(
        self,
        integration: ResolvedIntegration,
        *,
        provider: WebhookProviderEnum,
        delivery_fingerprint: str,
        topic: str,
        signature_valid: bool,
        payload: dict[str, Any],
        order_session_id: str | None,
    ) -> WebhookIntakeResult:
        log_context = {
            "provider": provider.value,
            "tenant_id": integration.tenant_id,
            "guild_id": integration.guild_id,
            "order_session_id": order_session_id,
        }
        recorded = await record_webhook_event(
            self._db,
            provider=provider,
            tenant_id=integration.tenant_id,
            guild_id=integration.guild_id,
            delivery_fingerprint=delivery_fingerprint,
            topic=topic,
            signature_valid=signature_valid,
            payload=payload,
            order_session_id=order_session_id,
        )
        event = recorded.event

        if not recorded.created:
            if WebhookEventStatus(event.status) == WebhookEventStatus.FAILED and signature_valid:
                logger.warning(
                    "Redelivery of failed webhook event; scheduling retry",
                    webhook_event_id=event.id,
                    **log_context,
                )
                event.signature_valid = True
                await reset_webhook_for_retry(self._db, event)
                await self._db.commit()
                self._enqueue(event.id, log_context)
                return WebhookIntakeResult(WebhookIntakeStatus.ACCEPTED, event.id, order_session_id)

            logger.info("Duplicate webhook delivery", webhook_event_id=event.id, **log_context)
            return WebhookIntakeResult(WebhookIntakeStatus.DUPLICATE, event.id, order_session_id)

        if not signature_valid:
            logger.warning("Webhook rejected: invalid signature", webhook_event_id=event.id, **log_context)
            await mark_webhook_failed(self._db, event, failure_reason="Invalid webhook signature")
            await self._db.commit()
            return WebhookIntakeResult(WebhookIntakeStatus.REJECTED, event.id, order_session_id)

        await self._db.commit()
        self._enqueue(event.id, log_context)
        logger.info("Webhook accepted", webhook_event_id=event.id, **log_context)
        return WebhookIntakeResult(WebhookIntakeStatus.ACCEPTED, event.id, order_session_id)

    def _enqueue(self, webhook_event_id: str, context: dict[str, Any]) -> None:
        session_factory = self._session_factory

        async def _task() -> WebhookProcessingResult:
            return await process_webhook_event(session_factory, webhook_event_id)

        self._queue.enqueue("process_webhook_event", _task, webhook_event_id=webhook_event_id, **context)


class WebhookEventProcessor:
    """Applies one recorded webhook delivery inside the caller's transaction."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._points = PointsService(db_session)
        self._state_machine = OrderSessionStateMachine(db_session, points_service=self._points)
        self._referrals = ReferralService(db_session, points_service=self._points)

    async def process(self, event: WebhookEvent) -> WebhookProcessingResult:
        provider = WebhookProviderEnum(event.provider)
        payment = resolve_payment_state(provider, event.payload_json or {})
        if not payment.paid:
            await mark_webhook_processed(self._db, event)
            logger.info(
                "Webhook does not confirm payment",
                webhook_event_id=event.id,
                provider=provider.value,
                payment_status=payment.status,
            )
            return WebhookProcessingResult(WebhookProcessingStatus.NOT_PAID, event.id, event.order_session_id)

        if not event.order_session_id:
            await mark_webhook_processed(self._db, event)
            logger.warning("Paid webhook without an order session reference", webhook_event_id=event.id)
            return WebhookProcessingResult(WebhookProcessingStatus.NO_ORDER_SESSION, event.id)

        transition = await self._state_machine.mark_paid(
            order_session_id=event.order_session_id,
            webhook_event=event,
            tenant_id=event.tenant_id,
        )
        if transition.outcome == PaidTransitionOutcome.DUPLICATE or not transition.first_paid:
            return WebhookProcessingResult(WebhookProcessingStatus.DUPLICATE, event.id, event.order_session_id)

        order_session = transition.order_session
        earn = calculate_earn_from_applied_discounts(
            [BasketLine.from_dict(item) for item in order_session.basket_items or []],
            coupon_discount_minor=order_session.coupon_discount_minor or 0,
            points_discount_minor=order_session.points_discount_minor or 0,
            config=PointsConfigSnapshot.from_dict(order_session.points_config_snapshot or {}),
        )
        await self._points.add_earned_points_for_paid_order(order_session, points=earn.points_earned)

        referral = await self._referrals.process_paid_order_reward(
            order_session,
            template=await self._referral_template(order_session.tenant_id, order_session.guild_id),
        )
        return WebhookProcessingResult(
            WebhookProcessingStatus.PAID,
            event.id,
            order_session.id,
            points_earned=earn.points_earned,
            referral=referral,
        )

    async def _referral_template(self, tenant_id: str, guild_id: str) -> str:
        stmt = select(TenantGuild.referral_thank_you_template).where(
            TenantGuild.tenant_id == tenant_id,
            TenantGuild.guild_id == guild_id,
        )
        result = await self._db.execute(stmt)
        template = result.scalar_one_or_none()
        return template or settings.referral_thank_you_template


async def process_webhook_event(session_factory: SessionFactory, webhook_event_id: str) -> WebhookProcessingResult:
    """Process a queued delivery in a fresh session.

    On failure the transaction is rolled back, the event is marked ``failed``
    with the reason, and the error is re-raised for the queue to report.
    """

    session = await _ensure_session(session_factory)
    async with session as db:
        event = await db.get(WebhookEvent, webhook_event_id)
        if event is None:
            raise ValueError(f"Webhook event {webhook_event_id} not found")
        if WebhookEventStatus(event.status) != WebhookEventStatus.RECEIVED:
            logger.info(
                "Skipping webhook event that is no longer pending",
                webhook_event_id=webhook_event_id,
                status=WebhookEventStatus(event.status).value,
            )
            return WebhookProcessingResult(WebhookProcessingStatus.SKIPPED, webhook_event_id, event.order_session_id)

        try:
            result = await WebhookEventProcessor(db).process(event)
            await db.commit()
        except Exception as exc:
            await db.rollback()
            failed_event = await db.get(WebhookEvent, webhook_event_id)
            if failed_event is not None:
                await mark_webhook_failed(db, failed_event, failure_reason=from_unknown_error(exc).message)
                await db.commit()
            raise

        logger.info(
            "Processed webhook event",
            webhook_event_id=webhook_event_id,
            status=result.status.value,
            order_session_id=result.order_session_id,
            points_earned=result.points_earned,
        )
        return result
