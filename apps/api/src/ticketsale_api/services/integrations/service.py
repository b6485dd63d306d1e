"""Resolve webhook integrations and their decrypted shared secrets."""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.core.settings import settings
from ticketsale_api.models.integration import WebhookIntegration
from ticketsale_api.models.webhook_event import WebhookProviderEnum
from ticketsale_api.security.encryption import decrypt_secret, encrypt_secret


@dataclass(frozen=True, slots=True)
class ResolvedIntegration:
    id: str
    tenant_id: str
    guild_id: str
    provider: WebhookProviderEnum
    webhook_key: str
    secret: str


class IntegrationService:
    def __init__(self, db_session: AsyncSession, *, encryption_key: str | None = None) -> None:
        self._db = db_session
        self._encryption_key = encryption_key or settings.encryption_key

    async def upsert_integration(
        self,
        *,
        tenant_id: str,
        guild_id: str,
        provider: WebhookProviderEnum,
        secret: str,
    ) -> ResolvedIntegration:
        """Store (or rotate) the shared secret for a guild's provider, keeping its webhook key."""

        if not secret.strip():
            raise AppError(ErrorCode.VALIDATION_ERROR, "Integration secret is required", status_code=422)

        stmt = select(WebhookIntegration).where(
            WebhookIntegration.tenant_id == tenant_id,
            WebhookIntegration.guild_id == guild_id,
            WebhookIntegration.provider == provider,
        )
        result = await self._db.execute(stmt)
        integration = result.scalar_one_or_none()
        if integration is None:
            integration = WebhookIntegration(
                tenant_id=tenant_id,
                guild_id=guild_id,
                provider=provider,
                webhook_key=secrets.token_urlsafe(24),
            )
            self._db.add(integration)
        integration.secret_encrypted = encrypt_secret(secret, self._encryption_key)
        await self._db.commit()
        logger.info(
            "Stored webhook integration",
            tenant_id=tenant_id,
            guild_id=guild_id,
            provider=provider.value,
        )
        return self._resolve(integration, secret)

    async def get_resolved_by_webhook_key(
        self,
        webhook_key: str,
        *,
        provider: WebhookProviderEnum,
    ) -> ResolvedIntegration:
        stmt = select(WebhookIntegration).where(
            WebhookIntegration.webhook_key == webhook_key,
            WebhookIntegration.provider == provider,
        )
        result = await self._db.execute(stmt)
        integration = result.scalar_one_or_none()
        if integration is None:
            raise AppError(
                ErrorCode.INTEGRATION_NOT_FOUND,
                f"No {provider.value} integration for this webhook key",
                status_code=404,
            )
        return self._resolve(integration, decrypt_secret(integration.secret_encrypted, self._encryption_key))

    @staticmethod
    def _resolve(integration: WebhookIntegration, secret: str) -> ResolvedIntegration:
        return ResolvedIntegration(
            id=integration.id,
            tenant_id=integration.tenant_id,
            guild_id=integration.guild_id,
            provider=WebhookProviderEnum(integration.provider),
            webhook_key=integration.webhook_key,
            secret=secret,
        )
