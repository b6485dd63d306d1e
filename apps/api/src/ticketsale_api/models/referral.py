"""Referral claim models."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from ticketsale_api.db.base import Base, enum_values
from ticketsale_api.models.order_session import new_identifier


class ReferralClaimStatus(str, Enum):
    PENDING = "pending"
    SELF_BLOCKED = "self_blocked"
    REWARDED = "rewarded"


class ReferralClaim(Base):
    """A referrer's claim that a given email was referred by them."""

    __tablename__ = "referral_claims"
    __table_args__ = (
        UniqueConstraint("tenant_id", "guild_id", "referred_email_normalized", name="uq_referral_claims_referred"),
    )

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), nullable=False)
    guild_id = Column(String(32), nullable=False)
    referrer_discord_user_id = Column(String(32), nullable=False)
    referrer_email_normalized = Column(String(320), nullable=False)
    referrer_email_display = Column(String(320), nullable=False)
    referred_email_normalized = Column(String(320), nullable=False)
    referred_email_display = Column(String(320), nullable=False)
    status = Column(
        SqlEnum(ReferralClaimStatus, name="referral_claim_status", values_callable=enum_values),
        nullable=False,
        default=ReferralClaimStatus.PENDING,
        server_default=ReferralClaimStatus.PENDING.value,
    )
    reward_order_session_id = Column(String(32), nullable=True)
    reward_points = Column(Integer, nullable=False, default=0, server_default="0")
    rewarded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ReferralFirstPaidGate(Base):
    """One row per referred customer; only their first paid order may reward a referrer."""

    __tablename__ = "referral_first_paid_gates"
    __table_args__ = (
        UniqueConstraint("tenant_id", "guild_id", "referred_email_normalized", name="uq_referral_gates_referred"),
    )

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), nullable=False)
    guild_id = Column(String(32), nullable=False)
    referred_email_normalized = Column(String(320), nullable=False)
    first_order_session_id = Column(String(32), nullable=False)
    claim_id = Column(String(32), nullable=True)
    reward_applied = Column(Boolean, nullable=False, default=False)
    reward_points = Column(Integer, nullable=False, default=0)
    referral_reward_minor_snapshot = Column(Integer, nullable=False, default=0)
    point_value_minor_snapshot = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
