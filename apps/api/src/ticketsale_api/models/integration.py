from __future__ import annotations

from sqlalchemy import Column, DateTime, Enum as SqlEnum, String, UniqueConstraint, func

from ticketsale_api.db.base import Base, enum_values
from ticketsale_api.models.order_session import new_identifier
from ticketsale_api.models.webhook_event import WebhookProviderEnum


class WebhookIntegration(Base):
    """Payment provider connection for a tenant guild; the shared secret is stored encrypted."""

    __tablename__ = "webhook_integrations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "guild_id", "provider", name="uq_webhook_integrations_provider"),
    )

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), nullable=False)
    guild_id = Column(String(32), nullable=False)
    provider = Column(
        SqlEnum(WebhookProviderEnum, name="webhook_provider_enum", values_callable=enum_values),
        nullable=False,
    )
    webhook_key = Column(String(64), nullable=False, unique=True, index=True)
    secret_encrypted = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
