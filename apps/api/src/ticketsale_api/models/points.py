"""Customer points balances and their audit ledger."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, Integer, String, UniqueConstraint, func

from ticketsale_api.db.base import Base, enum_values
from ticketsale_api.models.order_session import new_identifier


class PointsLedgerEventType(str, Enum):
    MANUAL_ADD = "manual_add"
    MANUAL_REMOVE = "manual_remove"
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_RELEASED_CANCELLED = "reservation_released_cancelled"
    RESERVATION_RELEASED_EXPIRED = "reservation_released_expired"
    RESERVATION_CONSUMED = "reservation_consumed"
    EARNED_PAID_ORDER = "earned_paid_order"
    REFERRAL_REWARD_FIRST_PAID_ORDER = "referral_reward_first_paid_order"


class PointsAccount(Base):
    """Point balance for one customer email inside a tenant guild."""

    __tablename__ = "points_accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "guild_id", "email_normalized", name="uq_points_accounts_email"),
    )

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), nullable=False)
    guild_id = Column(String(32), nullable=False)
    email_normalized = Column(String(320), nullable=False)
    email_display = Column(String(320), nullable=False)
    balance_points = Column(Integer, nullable=False, default=0, server_default="0")
    reserved_points = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def available_points(self) -> int:
        return max(0, (self.balance_points or 0) - (self.reserved_points or 0))


class PointsLedgerEvent(Base):
    __tablename__ = "points_ledger_events"

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), nullable=False)
    guild_id = Column(String(32), nullable=False)
    email_normalized = Column(String(320), nullable=False, index=True)
    delta_points = Column(Integer, nullable=False)
    event_type = Column(
        SqlEnum(PointsLedgerEventType, name="points_ledger_event_type", values_callable=enum_values),
        nullable=False,
    )
    order_session_id = Column(String(32), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
