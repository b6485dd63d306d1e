"""Customer points balances, order reservations and the points ledger."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.core.errors import AppError, ErrorCode, validation_error
from ticketsale_api.models.order_session import OrderSession, PointsReservationState
from ticketsale_api.models.points import PointsAccount, PointsLedgerEvent, PointsLedgerEventType


_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True, slots=True)
class NormalizedEmail:
    email_normalized: str
    email_display: str


@dataclass(frozen=True, slots=True)
class PointsBalanceView:
    email_normalized: str
    email_display: str
    balance_points: int
    reserved_points: int

    @property
    def available_points(self) -> int:
        return max(0, self.balance_points - self.reserved_points)


class ReleaseReason(str, Enum):
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ManualAdjustAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


_RELEASE_EVENT_TYPES = {
    ReleaseReason.CANCELLED: PointsLedgerEventType.RESERVATION_RELEASED_CANCELLED,
    ReleaseReason.EXPIRED: PointsLedgerEventType.RESERVATION_RELEASED_EXPIRED,
}


def normalize_email(email: str) -> NormalizedEmail:
    """Validate an email address and return its display and lookup forms."""

    display = (email or "").strip()
    if not 3 <= len(display) <= 320 or not _EMAIL_PATTERN.match(display):
        raise validation_error("Invalid email address", details={"email": email})
    return NormalizedEmail(email_normalized=display.lower(), email_display=display)


def _to_view(account: PointsAccount) -> PointsBalanceView:
    return PointsBalanceView(
        email_normalized=account.email_normalized,
        email_display=account.email_display,
        balance_points=account.balance_points or 0,
        reserved_points=account.reserved_points or 0,
    )


class PointsService:
    """Owns points account mutations; every balance change writes a ledger event."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_account(self, *, tenant_id: str, guild_id: str, email_normalized: str) -> PointsAccount | None:
        stmt = select(PointsAccount).where(
            PointsAccount.tenant_id == tenant_id,
            PointsAccount.guild_id == guild_id,
            PointsAccount.email_normalized == email_normalized,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _ensure_account(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        email_normalized: str,
        email_display: str,
    ) -> PointsAccount:
        account = await self.get_account(tenant_id=tenant_id, guild_id=guild_id, email_normalized=email_normalized)
        if account is not None:
            return account

        account = PointsAccount(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=email_normalized,
            email_display=email_display,
            balance_points=0,
            reserved_points=0,
        )
        self._db.add(account)
        await self._db.flush()
        logger.info("Created points account", tenant_id=tenant_id, guild_id=guild_id)
        return account

    async def record_ledger_event(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        email_normalized: str,
        delta_points: int,
        event_type: PointsLedgerEventType,
        order_session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PointsLedgerEvent:
        event = PointsLedgerEvent(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=email_normalized,
            delta_points=delta_points,
            event_type=event_type,
            order_session_id=order_session_id,
            metadata_json=metadata or {},
        )
        self._db.add(event)
        await self._db.flush()
        logger.info(
            "Recorded points ledger event",
            tenant_id=tenant_id,
            guild_id=guild_id,
            event_type=event_type.value,
            delta_points=delta_points,
            order_session_id=order_session_id,
        )
        return event

    async def get_balance(self, *, tenant_id: str, guild_id: str, email: str) -> PointsBalanceView:
        normalized = normalize_email(email)
        account = await self.get_account(
            tenant_id=tenant_id, guild_id=guild_id, email_normalized=normalized.email_normalized
        )
        if account is None:
            return PointsBalanceView(
                email_normalized=normalized.email_normalized,
                email_display=normalized.email_display,
                balance_points=0,
                reserved_points=0,
            )
        return _to_view(account)

    async def list_ledger_events(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        email_normalized: str | None = None,
        order_session_id: str | None = None,
    ) -> list[PointsLedgerEvent]:
        stmt = select(PointsLedgerEvent).where(
            PointsLedgerEvent.tenant_id == tenant_id,
            PointsLedgerEvent.guild_id == guild_id,
        )
        if email_normalized is not None:
            stmt = stmt.where(PointsLedgerEvent.email_normalized == email_normalized)
        if order_session_id is not None:
            stmt = stmt.where(PointsLedgerEvent.order_session_id == order_session_id)
        result = await self._db.execute(stmt.order_by(PointsLedgerEvent.created_at))
        return list(result.scalars())

    async def reserve_points_for_order(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        email_normalized: str,
        email_display: str,
        points: int,
        order_session_id: str,
    ) -> PointsBalanceView:
        """Hold ``points`` against an order until it is paid, cancelled or expires.

        Raises:
            AppError: ``INSUFFICIENT_POINTS`` when the available balance changed
                since the order totals were computed.
        """

        account = await self._ensure_account(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=email_normalized,
            email_display=email_display,
        )
        if points <= 0:
            return _to_view(account)

        if account.available_points < points:
            raise AppError(
                ErrorCode.INSUFFICIENT_POINTS,
                "Points balance changed before checkout could be created. Please try again.",
                status_code=409,
                details={"requested": points, "available": account.available_points},
            )

        account.reserved_points = (account.reserved_points or 0) + points
        await self.record_ledger_event(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=email_normalized,
            delta_points=0,
            event_type=PointsLedgerEventType.RESERVATION_CREATED,
            order_session_id=order_session_id,
            metadata={"points": points},
        )
        return _to_view(account)

    async def release_reservation_for_order_session(
        self,
        order_session: OrderSession,
        *,
        reason: ReleaseReason,
    ) -> bool:
        """Return held points to the customer. Returns ``False`` when nothing was reserved."""

        if order_session.reservation_state != PointsReservationState.RESERVED:
            return False

        points = max(0, order_session.points_reserved or 0)
        email_normalized = order_session.customer_email_normalized
        if points > 0 and email_normalized:
            account = await self.get_account(
                tenant_id=order_session.tenant_id,
                guild_id=order_session.guild_id,
                email_normalized=email_normalized,
            )
            if account is not None:
                account.reserved_points = max(0, (account.reserved_points or 0) - points)
            await self.record_ledger_event(
                tenant_id=order_session.tenant_id,
                guild_id=order_session.guild_id,
                email_normalized=email_normalized,
                delta_points=0,
                event_type=_RELEASE_EVENT_TYPES[reason],
                order_session_id=order_session.id,
                metadata={"points": points, "reason": reason.value},
            )

        order_session.transition_reservation(PointsReservationState.RELEASED)
        await self._db.flush()
        return True

    async def consume_reservation_for_paid_order(self, order_session: OrderSession) -> int:
        """Turn a reservation into a balance deduction and return the points consumed."""

        state = order_session.reservation_state
        if state == PointsReservationState.RELEASED:
            logger.warning(
                "Payment confirmed after points reservation was released",
                order_session_id=order_session.id,
                tenant_id=order_session.tenant_id,
                points_reserved=order_session.points_reserved,
            )
            return 0
        if state != PointsReservationState.RESERVED:
            return 0

        points = max(0, order_session.points_reserved or 0)
        email_normalized = order_session.customer_email_normalized
        if points > 0 and email_normalized:
            account = await self.get_account(
                tenant_id=order_session.tenant_id,
                guild_id=order_session.guild_id,
                email_normalized=email_normalized,
            )
            if account is not None:
                account.balance_points = max(0, (account.balance_points or 0) - points)
                account.reserved_points = max(0, (account.reserved_points or 0) - points)
            await self.record_ledger_event(
                tenant_id=order_session.tenant_id,
                guild_id=order_session.guild_id,
                email_normalized=email_normalized,
                delta_points=-points,
                event_type=PointsLedgerEventType.RESERVATION_CONSUMED,
                order_session_id=order_session.id,
                metadata={"points": points},
            )
        else:
            points = 0

        order_session.transition_reservation(PointsReservationState.CAPTURED)
        await self._db.flush()
        return points

    async def credit_points(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        email_normalized: str,
        email_display: str,
        points: int,
        event_type: PointsLedgerEventType,
        order_session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PointsBalanceView:
        if points <= 0:
            raise ValueError("Credited points must be positive")

        account = await self._ensure_account(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=email_normalized,
            email_display=email_display,
        )
        account.balance_points = (account.balance_points or 0) + points
        await self.record_ledger_event(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=email_normalized,
            delta_points=points,
            event_type=event_type,
            order_session_id=order_session_id,
            metadata=metadata,
        )
        return _to_view(account)

    async def add_earned_points_for_paid_order(
        self,
        order_session: OrderSession,
        *,
        points: int,
    ) -> PointsBalanceView | None:
        email_normalized = order_session.customer_email_normalized
        if not email_normalized or points <= 0:
            return None
        return await self.credit_points(
            tenant_id=order_session.tenant_id,
            guild_id=order_session.guild_id,
            email_normalized=email_normalized,
            email_display=email_normalized,
            points=points,
            event_type=PointsLedgerEventType.EARNED_PAID_ORDER,
            order_session_id=order_session.id,
            metadata={"points": points},
        )

    async def manual_adjust(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        email: str,
        action: ManualAdjustAction,
        points: int,
        actor_user_id: str | None = None,
    ) -> PointsBalanceView:
        """Add or remove points from the dashboard; removals clamp at zero."""

        if points <= 0:
            raise validation_error("Points must be a positive integer", details={"points": points})
        normalized = normalize_email(email)

        if action == ManualAdjustAction.ADD:
            view = await self.credit_points(
                tenant_id=tenant_id,
                guild_id=guild_id,
                email_normalized=normalized.email_normalized,
                email_display=normalized.email_display,
                points=points,
                event_type=PointsLedgerEventType.MANUAL_ADD,
                metadata={"source": "dashboard", "actor_user_id": actor_user_id},
            )
            await self._db.commit()
            return view

        account = await self._ensure_account(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=normalized.email_normalized,
            email_display=normalized.email_display,
        )
        removed = min(account.balance_points or 0, points)
        account.balance_points = (account.balance_points or 0) - removed
        await self.record_ledger_event(
            tenant_id=tenant_id,
            guild_id=guild_id,
            email_normalized=normalized.email_normalized,
            delta_points=-removed,
            event_type=PointsLedgerEventType.MANUAL_REMOVE,
            metadata={
                "source": "dashboard",
                "actor_user_id": actor_user_id,
                "requested_points": points,
                "removed_points": removed,
            },
        )
        await self._db.commit()
        return _to_view(account)
