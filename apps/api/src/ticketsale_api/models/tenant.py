"""Tenant, membership and guild binding models."""

from __future__ import annotations

from enum import Enum, IntEnum

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, UniqueConstraint, func

from ticketsale_api.db.base import Base, enum_values
from ticketsale_api.models.order_session import new_identifier


class TenantStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class TenantRole(IntEnum):
    """Ranked tenant roles; a higher value satisfies any lower requirement."""

    MEMBER = 1
    ADMIN = 2
    OWNER = 3

    @classmethod
    def parse(cls, value: str) -> "TenantRole":
        return cls[value.strip().upper()]


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(32), primary_key=True, default=new_identifier)
    name = Column(String, nullable=False)
    status = Column(
        SqlEnum(TenantStatus, name="tenant_status_enum", values_callable=enum_values),
        nullable=False,
        default=TenantStatus.ACTIVE,
        server_default=TenantStatus.ACTIVE.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TenantMember(Base):
    __tablename__ = "tenant_members"
    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_user"),)

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(32), nullable=False)
    role = Column(Integer, nullable=False, default=int(TenantRole.MEMBER))


class TenantGuild(Base):
    """A Discord guild connected to a tenant, with its points configuration."""

    __tablename__ = "tenant_guilds"
    __table_args__ = (UniqueConstraint("tenant_id", "guild_id", name="uq_tenant_guilds_guild"),)

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    guild_id = Column(String(32), nullable=False)
    point_value_minor = Column(Integer, nullable=False, default=1)
    earn_category_keys = Column(JSON, nullable=False, default=list)
    redeem_category_keys = Column(JSON, nullable=False, default=list)
    referral_reward_minor = Column(Integer, nullable=False, default=0)
    referral_thank_you_template = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
