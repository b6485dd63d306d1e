"""Order session lifecycle: pending payment to paid or cancelled."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.models.order_session import OrderSession, OrderSessionStatus
from ticketsale_api.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    mark_webhook_duplicate,
    mark_webhook_processed,
)
from ticketsale_api.services.loyalty.points_service import PointsService, ReleaseReason


class InvalidOrderTransitionError(AppError):
    """Raised when a transition is requested from a state that does not allow it."""

    def __init__(self, current_status: OrderSessionStatus, requested_status: OrderSessionStatus) -> None:
        super().__init__(
            ErrorCode.INVALID_ORDER_TRANSITION,
            f"Cannot transition order session from {current_status.value} to {requested_status.value}",
            status_code=409,
            details={"current_status": current_status.value, "requested_status": requested_status.value},
        )
        self.current_status = current_status
        self.requested_status = requested_status


class OrderSessionNotFoundError(AppError):
    def __init__(self, order_session_id: str) -> None:
        super().__init__(
            ErrorCode.ORDER_SESSION_NOT_FOUND,
            f"Order session {order_session_id} not found",
            status_code=404,
        )


class PaidTransitionOutcome(str, Enum):
    PAID = "paid"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class PaidTransition:
    """Result of applying a payment confirmation to an order session.

    ``first_paid`` is true for exactly one confirmation per order session; it
    gates the earn and referral side effects.
    """

    outcome: PaidTransitionOutcome
    order_session: OrderSession | None
    first_paid: bool
    points_consumed: int = 0


class OrderSessionStateMachine:
    _ALLOWED_TRANSITIONS: dict[OrderSessionStatus, set[OrderSessionStatus]] = {
        OrderSessionStatus.PENDING_PAYMENT: {
            OrderSessionStatus.PAID,
            OrderSessionStatus.CANCELLED,
        },
        OrderSessionStatus.PAID: set(),
        OrderSessionStatus.CANCELLED: set(),
    }

    def __init__(self, session: AsyncSession, *, points_service: PointsService | None = None) -> None:
        self._session = session
        self._points = points_service or PointsService(session)

    @classmethod
    def can_transition(cls, current: OrderSessionStatus, target: OrderSessionStatus) -> bool:
        return target in cls._ALLOWED_TRANSITIONS.get(current, set())

    def _ensure_transition(self, order_session: OrderSession, target: OrderSessionStatus) -> OrderSessionStatus:
        current = OrderSessionStatus(order_session.status)
        if not self.can_transition(current, target):
            raise InvalidOrderTransitionError(current, target)
        return current

    async def get_order_session(self, order_session_id: str, *, tenant_id: str | None = None) -> OrderSession:
        stmt = select(OrderSession).where(OrderSession.id == order_session_id)
        if tenant_id is not None:
            stmt = stmt.where(OrderSession.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        order_session = result.scalar_one_or_none()
        if order_session is None:
            raise OrderSessionNotFoundError(order_session_id)
        return order_session

    async def mark_paid(
        self,
        *,
        order_session_id: str,
        webhook_event: WebhookEvent,
        tenant_id: str | None = None,
    ) -> PaidTransition:
        """Apply a payment confirmation carried by ``webhook_event``.

        A delivery already processed returns ``duplicate`` without touching the
        order. A new delivery for an order that is already paid is recorded as a
        duplicate too. A cancelled order raises ``InvalidOrderTransitionError``.
        Changes are flushed, not committed, so the caller can apply the paid
        side effects in the same transaction.
        """

        if WebhookEventStatus(webhook_event.status) == WebhookEventStatus.PROCESSED:
            logger.info(
                "Webhook delivery already processed",
                webhook_event_id=webhook_event.id,
                order_session_id=order_session_id,
            )
            return PaidTransition(outcome=PaidTransitionOutcome.DUPLICATE, order_session=None, first_paid=False)

        order_session = await self.get_order_session(order_session_id, tenant_id=tenant_id)
        if OrderSessionStatus(order_session.status) == OrderSessionStatus.PAID:
            await mark_webhook_duplicate(self._session, webhook_event)
            logger.info(
                "Order session already paid",
                order_session_id=order_session.id,
                webhook_event_id=webhook_event.id,
            )
            return PaidTransition(
                outcome=PaidTransitionOutcome.DUPLICATE,
                order_session=order_session,
                first_paid=False,
            )

        current = self._ensure_transition(order_session, OrderSessionStatus.PAID)
        points_consumed = await self._points.consume_reservation_for_paid_order(order_session)
        order_session.status = OrderSessionStatus.PAID
        order_session.paid_at = datetime.now(timezone.utc)
        await mark_webhook_processed(self._session, webhook_event)
        await self._session.flush()
        logger.info(
            "Order session marked paid",
            order_session_id=order_session.id,
            tenant_id=order_session.tenant_id,
            from_status=current.value,
            points_consumed=points_consumed,
            webhook_event_id=webhook_event.id,
        )
        return PaidTransition(
            outcome=PaidTransitionOutcome.PAID,
            order_session=order_session,
            first_paid=True,
            points_consumed=points_consumed,
        )

    async def cancel(self, *, order_session_id: str, tenant_id: str | None = None) -> OrderSession:
        """Cancel a pending order session and release any reserved points; totals are kept."""

        order_session = await self.get_order_session(order_session_id, tenant_id=tenant_id)
        current = self._ensure_transition(order_session, OrderSessionStatus.CANCELLED)
        released = await self._points.release_reservation_for_order_session(
            order_session, reason=ReleaseReason.CANCELLED
        )
        order_session.status = OrderSessionStatus.CANCELLED
        order_session.cancelled_at = datetime.now(timezone.utc)
        await self._session.commit()
        logger.info(
            "Order session cancelled",
            order_session_id=order_session.id,
            tenant_id=order_session.tenant_id,
            from_status=current.value,
            points_released=released,
        )
        return order_session

    @staticmethod
    def is_checkout_expired(order_session: OrderSession, *, now: datetime | None = None) -> bool:
        """True for a pending session whose checkout token lapsed; such sessions may be cancelled."""

        if OrderSessionStatus(order_session.status) != OrderSessionStatus.PENDING_PAYMENT:
            return False
        expires_at = order_session.checkout_token_expires_at
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at < (now or datetime.now(timezone.utc))
