"""Order session creation, lookup, cancellation and reservation expiry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Mapping, Sequence
from urllib.parse import urlencode

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.core.errors import validation_error
from ticketsale_api.core.settings import settings
from ticketsale_api.models.order_session import (
    OrderSession,
    OrderSessionStatus,
    PointsReservationState,
    new_identifier,
)
from ticketsale_api.security.checkout_token import CheckoutTokenPayload, sign_checkout_token
from ticketsale_api.services.checkout.links import CheckoutLinkStore
from ticketsale_api.services.loyalty.points_service import PointsService, ReleaseReason, normalize_email
from ticketsale_api.services.orders.state_machine import OrderSessionStateMachine
from ticketsale_api.services.pricing import (
    BasketLine,
    Coupon,
    PointsConfigSnapshot,
    PointsOrderCalculation,
    calculate_points_order_totals,
    size_coupon_discount,
)
from ticketsale_api.services.tenancy.authorization import AuthorizationService
from ticketsale_api.utils.mask import mask_answers


MAX_ANSWER_LENGTH = 2000
EXPIRED_SWEEP_LIMIT = 500


@dataclass(slots=True)
class OrderSessionDraft:
    """Everything staff collected for a sale before checkout."""

    tenant_id: str
    guild_id: str
    ticket_channel_id: str
    staff_user_id: str
    customer_discord_id: str
    lines: Sequence[BasketLine]
    coupon: Coupon | None = None
    tip_minor: int = 0
    customer_email: str | None = None
    use_points: bool = False
    answers: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class CreatedOrderSession:
    order_session: OrderSession
    checkout_url: str
    expires_at: datetime
    calculation: PointsOrderCalculation


def _validate_answers(answers: Mapping[str, str]) -> dict[str, str]:
    invalid = [
        key
        for key, value in answers.items()
        if not isinstance(key, str) or not isinstance(value, str) or len(value) > MAX_ANSWER_LENGTH
    ]
    if invalid:
        raise validation_error("Answers must be strings of at most 2000 characters", details={"keys": invalid})
    return dict(answers)


class OrderSessionService:
    def __init__(
        self,
        db_session: AsyncSession,
        *,
        checkout_links: CheckoutLinkStore | None = None,
        points_service: PointsService | None = None,
    ) -> None:
        self._db = db_session
        self._checkout_links = checkout_links
        self._points = points_service or PointsService(db_session)
        self._authorization = AuthorizationService(db_session)
        self._state_machine = OrderSessionStateMachine(db_session, points_service=self._points)

    async def create_order_session(
        self, draft: OrderSessionDraft, *, now: datetime | None = None
    ) -> CreatedOrderSession:
        """Price the draft, reserve any redeemed points and issue a signed checkout link."""

        if not draft.lines:
            raise validation_error("An order session needs at least one basket line")
        if draft.tip_minor < 0:
            raise validation_error("Tip must be non-negative", details={"tip_minor": draft.tip_minor})
        answers = _validate_answers(draft.answers)

        await self._authorization.ensure_tenant_is_active(draft.tenant_id)
        guild = await self._authorization.ensure_guild_bound_to_tenant(
            tenant_id=draft.tenant_id, guild_id=draft.guild_id
        )
        try:
            config = PointsConfigSnapshot(
                point_value_minor=guild.point_value_minor,
                earn_category_keys=frozenset(guild.earn_category_keys or ()),
                redeem_category_keys=frozenset(guild.redeem_category_keys or ()),
            )
        except ValueError as exc:
            raise validation_error(
                "Guild points configuration is invalid",
                details={"point_value_minor": guild.point_value_minor},
            ) from exc

        email = normalize_email(draft.customer_email) if draft.customer_email else None
        available_points = 0
        if email is not None and draft.use_points:
            account = await self._points.get_account(
                tenant_id=draft.tenant_id,
                guild_id=draft.guild_id,
                email_normalized=email.email_normalized,
            )
            available_points = account.available_points if account is not None else 0

        calculation = calculate_points_order_totals(
            draft.lines,
            coupon_discount_minor=size_coupon_discount(draft.coupon, draft.lines),
            tip_minor=draft.tip_minor,
            config=config,
            available_points=available_points,
            use_points=draft.use_points and email is not None,
        )

        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + timedelta(seconds=settings.checkout_token_ttl_seconds)
        first_line = draft.lines[0]
        order_session = OrderSession(
            id=new_identifier(),
            tenant_id=draft.tenant_id,
            guild_id=draft.guild_id,
            ticket_channel_id=draft.ticket_channel_id,
            staff_user_id=draft.staff_user_id,
            customer_discord_id=draft.customer_discord_id,
            product_id=first_line.product_id or "",
            variant_id=first_line.variant_id or "",
            basket_items=[line.to_dict() for line in draft.lines],
            coupon_code=draft.coupon.code if draft.coupon else None,
            coupon_discount_minor=calculation.coupon_discount_minor,
            customer_email_normalized=email.email_normalized if email else None,
            points_reserved=calculation.points_reserved,
            points_discount_minor=calculation.points_discount_minor,
            points_reservation_state=PointsReservationState.NONE,
            points_config_snapshot=config.to_dict(),
            referral_reward_minor_snapshot=guild.referral_reward_minor or 0,
            tip_minor=calculation.tip_minor,
            subtotal_minor=calculation.subtotal_minor,
            total_minor=calculation.total_minor,
            status=OrderSessionStatus.PENDING_PAYMENT,
            answers=answers,
            checkout_token_expires_at=expires_at,
        )
        self._db.add(order_session)
        await self._db.flush()

        if email is not None and calculation.points_reserved > 0:
            await self._points.reserve_points_for_order(
                tenant_id=draft.tenant_id,
                guild_id=draft.guild_id,
                email_normalized=email.email_normalized,
                email_display=email.email_display,
                points=calculation.points_reserved,
                order_session_id=order_session.id,
            )
            order_session.transition_reservation(PointsReservationState.RESERVED)

        token = sign_checkout_token(
            CheckoutTokenPayload(
                order_session_id=order_session.id,
                exp=int(expires_at.timestamp()),
                tenant_id=draft.tenant_id,
                guild_id=draft.guild_id,
                product_id=order_session.product_id or None,
                variant_id=order_session.variant_id or None,
                ticket_channel_id=draft.ticket_channel_id,
                customer_discord_id=draft.customer_discord_id,
            ),
            settings.checkout_token_secret,
        )
        checkout_url = f"{settings.checkout_base_url.rstrip('/')}/{order_session.id}?{urlencode({'token': token})}"
        order_session.checkout_url = checkout_url
        await self._db.commit()

        if self._checkout_links is not None:
            await self._checkout_links.remember(order_session.id, checkout_url)

        logger.info(
            "Created order session",
            order_session_id=order_session.id,
            tenant_id=draft.tenant_id,
            guild_id=draft.guild_id,
            total_minor=calculation.total_minor,
            points_reserved=calculation.points_reserved,
            answers=mask_answers(answers, settings.sensitive_answer_keys),
        )
        return CreatedOrderSession(
            order_session=order_session,
            checkout_url=checkout_url,
            expires_at=expires_at,
            calculation=calculation,
        )

    async def get_order_session(self, order_session_id: str, *, tenant_id: str | None = None) -> OrderSession:
        return await self._state_machine.get_order_session(order_session_id, tenant_id=tenant_id)

    async def cancel_order_session(self, order_session_id: str, *, tenant_id: str | None = None) -> OrderSession:
        order_session = await self._state_machine.cancel(order_session_id=order_session_id, tenant_id=tenant_id)
        if self._checkout_links is not None:
            await self._checkout_links.forget(order_session_id)
        return order_session

    async def list_expired_reserved_sessions(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        now: datetime | None = None,
    ) -> list[OrderSession]:
        stmt = (
            select(OrderSession)
            .where(
                OrderSession.tenant_id == tenant_id,
                OrderSession.guild_id == guild_id,
                OrderSession.status == OrderSessionStatus.PENDING_PAYMENT,
                OrderSession.points_reservation_state == PointsReservationState.RESERVED,
                OrderSession.checkout_token_expires_at < (now or datetime.now(timezone.utc)),
            )
            .order_by(OrderSession.created_at)
            .limit(EXPIRED_SWEEP_LIMIT)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars())

    async def release_expired_reservations(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        now: datetime | None = None,
    ) -> int:
        """Return points held by lapsed checkouts; the sessions stay pending and cancel-eligible."""

        expired = await self.list_expired_reserved_sessions(tenant_id=tenant_id, guild_id=guild_id, now=now)
        released = 0
        for order_session in expired:
            if await self._points.release_reservation_for_order_session(order_session, reason=ReleaseReason.EXPIRED):
                released += 1
        await self._db.commit()
        if released:
            logger.info(
                "Released expired points reservations",
                tenant_id=tenant_id,
                guild_id=guild_id,
                released=released,
            )
        return released
