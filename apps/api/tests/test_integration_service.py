import pytest
from sqlalchemy import select

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.models import WebhookIntegration, WebhookProviderEnum
from ticketsale_api.services.integrations.service import IntegrationService


@pytest.mark.asyncio
async def test_upsert_rotates_secret_and_keeps_webhook_key(session_factory, tenant_guild) -> None:
    async with session_factory() as session:
        service = IntegrationService(session, encryption_key="test-key")

        first = await service.upsert_integration(
            tenant_id=tenant_guild.tenant_id,
            guild_id=tenant_guild.guild_id,
            provider=WebhookProviderEnum.WOOCOMMERCE,
            secret="first-secret",
        )
        rotated = await service.upsert_integration(
            tenant_id=tenant_guild.tenant_id,
            guild_id=tenant_guild.guild_id,
            provider=WebhookProviderEnum.WOOCOMMERCE,
            secret="second-secret",
        )
        resolved = await service.get_resolved_by_webhook_key(
            first.webhook_key, provider=WebhookProviderEnum.WOOCOMMERCE
        )
        stored = (await session.execute(select(WebhookIntegration))).scalar_one()

    assert rotated.webhook_key == first.webhook_key
    assert resolved.secret == "second-secret"
    assert "second-secret" not in stored.secret_encrypted


@pytest.mark.asyncio
async def test_lookup_is_provider_specific(session_factory, tenant_guild) -> None:
    async with session_factory() as session:
        service = IntegrationService(session, encryption_key="test-key")
        integration = await service.upsert_integration(
            tenant_id=tenant_guild.tenant_id,
            guild_id=tenant_guild.guild_id,
            provider=WebhookProviderEnum.VOODOOPAY,
            secret="vp-secret",
        )

        with pytest.raises(AppError) as excinfo:
            await service.get_resolved_by_webhook_key(integration.webhook_key, provider=WebhookProviderEnum.WOOCOMMERCE)
        assert excinfo.value.code == ErrorCode.INTEGRATION_NOT_FOUND

        with pytest.raises(AppError) as excinfo:
            await service.upsert_integration(
                tenant_id=tenant_guild.tenant_id,
                guild_id=tenant_guild.guild_id,
                provider=WebhookProviderEnum.VOODOOPAY,
                secret="   ",
            )
        assert excinfo.value.code == ErrorCode.VALIDATION_ERROR
