"""Referral claims and first-paid-order referral rewards."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.core.errors import validation_error
from ticketsale_api.core.settings import DEFAULT_REFERRAL_THANK_YOU_TEMPLATE
from ticketsale_api.models.order_session import OrderSession
from ticketsale_api.models.points import PointsLedgerEventType
from ticketsale_api.models.referral import ReferralClaim, ReferralClaimStatus, ReferralFirstPaidGate
from ticketsale_api.services.loyalty.points_service import PointsService, normalize_email


_PLACEHOLDER_PATTERN = re.compile(r"\{([a-z_]+)\}", re.IGNORECASE)


class ReferralClaimOutcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    SELF_BLOCKED = "self_blocked"


class ReferralRewardStatus(str, Enum):
    REWARDED = "rewarded"
    NOT_APPLICABLE = "not_applicable"


class ReferralSkipReason(str, Enum):
    NO_CUSTOMER_EMAIL = "no_customer_email"
    NOT_FIRST_PAID = "not_first_paid"
    NO_CLAIM = "no_claim"
    SELF_BLOCKED = "self_blocked"
    REWARD_DISABLED = "reward_disabled"
    REWARD_ZERO_POINTS = "reward_zero_points"


@dataclass(slots=True)
class ReferralClaimCreateResult:
    status: ReferralClaimOutcome
    claim: ReferralClaim | None


@dataclass(slots=True)
class ReferralRewardResult:
    status: ReferralRewardStatus
    reason: ReferralSkipReason | None = None
    referred_email_normalized: str | None = None
    claim: ReferralClaim | None = None
    reward_minor: int = 0
    point_value_minor: int = 1
    reward_points: int = 0
    thank_you_message: str | None = None


def render_thank_you_template(template: str | None, values: Mapping[str, str]) -> str:
    """Substitute ``{placeholder}`` tokens; unknown tokens are left as written."""

    source = template if template and template.strip() else DEFAULT_REFERRAL_THANK_YOU_TEMPLATE

    def _replace(match: re.Match[str]) -> str:
        return values.get(match.group(1).lower(), match.group(0))

    return _PLACEHOLDER_PATTERN.sub(_replace, source)


class ReferralService:
    def __init__(self, db_session: AsyncSession, *, points_service: PointsService | None = None) -> None:
        self._db = db_session
        self._points = points_service or PointsService(db_session)

    async def _find_claim(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        referred_email_normalized: str,
        status: ReferralClaimStatus | None = None,
    ) -> ReferralClaim | None:
        stmt = select(ReferralClaim).where(
            ReferralClaim.tenant_id == tenant_id,
            ReferralClaim.guild_id == guild_id,
            ReferralClaim.referred_email_normalized == referred_email_normalized,
        )
        if status is not None:
            stmt = stmt.where(ReferralClaim.status == status)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_claim_from_command(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        referrer_discord_user_id: str,
        referrer_email: str,
        referred_email: str,
    ) -> ReferralClaimCreateResult:
        """Record who referred ``referred_email``; the first claim for an email wins."""

        if not tenant_id.strip() or not guild_id.strip() or not referrer_discord_user_id.strip():
            raise validation_error("Tenant, guild and referrer are required")

        referrer = normalize_email(referrer_email)
        referred = normalize_email(referred_email)
        if referrer.email_normalized == referred.email_normalized:
            logger.info(
                "Blocked self referral",
                tenant_id=tenant_id,
                guild_id=guild_id,
                referrer_discord_user_id=referrer_discord_user_id,
            )
            return ReferralClaimCreateResult(status=ReferralClaimOutcome.SELF_BLOCKED, claim=None)

        existing = await self._find_claim(
            tenant_id=tenant_id, guild_id=guild_id, referred_email_normalized=referred.email_normalized
        )
        if existing is not None:
            return ReferralClaimCreateResult(status=ReferralClaimOutcome.DUPLICATE, claim=existing)

        claim = ReferralClaim(
            tenant_id=tenant_id,
            guild_id=guild_id,
            referrer_discord_user_id=referrer_discord_user_id,
            referrer_email_normalized=referrer.email_normalized,
            referrer_email_display=referrer.email_display,
            referred_email_normalized=referred.email_normalized,
            referred_email_display=referred.email_display,
            status=ReferralClaimStatus.PENDING,
        )
        self._db.add(claim)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            logger.warning("Detected race when creating referral claim", tenant_id=tenant_id, guild_id=guild_id)
            winner = await self._find_claim(
                tenant_id=tenant_id, guild_id=guild_id, referred_email_normalized=referred.email_normalized
            )
            return ReferralClaimCreateResult(status=ReferralClaimOutcome.DUPLICATE, claim=winner)

        logger.info("Created referral claim", claim_id=claim.id, tenant_id=tenant_id, guild_id=guild_id)
        return ReferralClaimCreateResult(status=ReferralClaimOutcome.ACCEPTED, claim=claim)

    async def _open_first_paid_gate(
        self,
        order_session: OrderSession,
        *,
        referred_email: str,
        claim: ReferralClaim | None,
        reward_minor: int,
        point_value_minor: int,
    ) -> ReferralFirstPaidGate | None:
        stmt = select(ReferralFirstPaidGate).where(
            ReferralFirstPaidGate.tenant_id == order_session.tenant_id,
            ReferralFirstPaidGate.guild_id == order_session.guild_id,
            ReferralFirstPaidGate.referred_email_normalized == referred_email,
        )
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none() is not None:
            return None

        gate = ReferralFirstPaidGate(
            tenant_id=order_session.tenant_id,
            guild_id=order_session.guild_id,
            referred_email_normalized=referred_email,
            first_order_session_id=order_session.id,
            claim_id=claim.id if claim else None,
            reward_applied=False,
            reward_points=0,
            referral_reward_minor_snapshot=reward_minor,
            point_value_minor_snapshot=point_value_minor,
        )
        self._db.add(gate)
        await self._db.flush()
        return gate

    async def process_paid_order_reward(
        self,
        order_session: OrderSession,
        *,
        template: str | None = None,
    ) -> ReferralRewardResult:
        """Reward the referrer of the customer's first paid order.

        Must only be called once per order, from the first paid transition.
        The first-paid gate stops later orders by the same customer from
        rewarding again.
        """

        referred_email = order_session.customer_email_normalized
        if not referred_email:
            return ReferralRewardResult(
                status=ReferralRewardStatus.NOT_APPLICABLE,
                reason=ReferralSkipReason.NO_CUSTOMER_EMAIL,
            )

        snapshot = order_session.points_config_snapshot or {}
        point_value_minor = max(1, int(snapshot.get("pointValueMinor") or 1))
        reward_minor = max(0, order_session.referral_reward_minor_snapshot or 0)

        def _skip(
            reason: ReferralSkipReason, claim: ReferralClaim | None = None, points: int = 0
        ) -> ReferralRewardResult:
            logger.info(
                "Referral reward not applicable",
                order_session_id=order_session.id,
                reason=reason.value,
            )
            return ReferralRewardResult(
                status=ReferralRewardStatus.NOT_APPLICABLE,
                reason=reason,
                referred_email_normalized=referred_email,
                claim=claim,
                reward_minor=reward_minor,
                point_value_minor=point_value_minor,
                reward_points=points,
            )

        claim = await self._find_claim(
            tenant_id=order_session.tenant_id,
            guild_id=order_session.guild_id,
            referred_email_normalized=referred_email,
            status=ReferralClaimStatus.PENDING,
        )
        gate = await self._open_first_paid_gate(
            order_session,
            referred_email=referred_email,
            claim=claim,
            reward_minor=reward_minor,
            point_value_minor=point_value_minor,
        )
        if gate is None:
            return _skip(ReferralSkipReason.NOT_FIRST_PAID, claim)
        if claim is None:
            return _skip(ReferralSkipReason.NO_CLAIM)
        if claim.referrer_email_normalized == referred_email:
            claim.status = ReferralClaimStatus.SELF_BLOCKED
            await self._db.flush()
            return _skip(ReferralSkipReason.SELF_BLOCKED, claim)
        if reward_minor <= 0:
            return _skip(ReferralSkipReason.REWARD_DISABLED, claim)

        reward_points = reward_minor // point_value_minor
        if reward_points <= 0:
            return _skip(ReferralSkipReason.REWARD_ZERO_POINTS, claim, reward_points)

        await self._points.credit_points(
            tenant_id=order_session.tenant_id,
            guild_id=order_session.guild_id,
            email_normalized=claim.referrer_email_normalized,
            email_display=claim.referrer_email_display,
            points=reward_points,
            event_type=PointsLedgerEventType.REFERRAL_REWARD_FIRST_PAID_ORDER,
            order_session_id=order_session.id,
            metadata={
                "claim_id": claim.id,
                "referred_email_normalized": referred_email,
                "referral_reward_minor_snapshot": reward_minor,
                "point_value_minor_snapshot": point_value_minor,
                "reward_points": reward_points,
            },
        )

        claim.status = ReferralClaimStatus.REWARDED
        claim.reward_order_session_id = order_session.id
        claim.reward_points = reward_points
        claim.rewarded_at = datetime.now(timezone.utc)
        gate.reward_applied = True
        gate.reward_points = reward_points
        await self._db.flush()

        message = render_thank_you_template(
            template,
            {
                "points": str(reward_points),
                "amount_gbp": f"{reward_minor // 100}.{reward_minor % 100:02d}",
                "referred_email": referred_email,
                "referrer_email": claim.referrer_email_display,
                "order_session_id": order_session.id,
            },
        )
        logger.info(
            "Referral reward issued",
            order_session_id=order_session.id,
            claim_id=claim.id,
            reward_points=reward_points,
        )
        return ReferralRewardResult(
            status=ReferralRewardStatus.REWARDED,
            referred_email_normalized=referred_email,
            claim=claim,
            reward_minor=reward_minor,
            point_value_minor=point_value_minor,
            reward_points=reward_points,
            thank_you_message=message,
        )
