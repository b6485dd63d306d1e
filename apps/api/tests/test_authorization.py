import pytest

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.models import Tenant, TenantMember, TenantRole, TenantStatus
from ticketsale_api.security import SessionPayload
from ticketsale_api.services.tenancy.authorization import AuthorizationService


def _actor(user_id: str, *, super_admin: bool = False) -> SessionPayload:
    return SessionPayload(user_id=user_id, discord_user_id=f"discord-{user_id}", exp=0, is_super_admin=super_admin)


@pytest.mark.asyncio
async def test_role_hierarchy(session_factory, tenant_guild) -> None:
    async with session_factory() as session:
        session.add_all(
            [
                TenantMember(tenant_id=tenant_guild.tenant_id, user_id="owner", role=int(TenantRole.OWNER)),
                TenantMember(tenant_id=tenant_guild.tenant_id, user_id="member", role=int(TenantRole.MEMBER)),
            ]
        )
        await session.commit()
        service = AuthorizationService(session)

        await service.ensure_tenant_role(
            _actor("owner"), tenant_id=tenant_guild.tenant_id, minimum_role=TenantRole.ADMIN
        )
        await service.ensure_tenant_role(
            _actor("member"), tenant_id=tenant_guild.tenant_id, minimum_role=TenantRole.MEMBER
        )

        with pytest.raises(AppError) as excinfo:
            await service.ensure_tenant_role(
                _actor("member"), tenant_id=tenant_guild.tenant_id, minimum_role=TenantRole.ADMIN
            )
        assert excinfo.value.code == ErrorCode.TENANT_ROLE_DENIED
        assert excinfo.value.status_code == 403

        with pytest.raises(AppError) as excinfo:
            await service.ensure_tenant_role(
                _actor("stranger"), tenant_id=tenant_guild.tenant_id, minimum_role=TenantRole.MEMBER
            )
        assert excinfo.value.code == ErrorCode.TENANT_ACCESS_DENIED


@pytest.mark.asyncio
async def test_super_admin_bypasses_membership(session_factory, tenant_guild) -> None:
    async with session_factory() as session:
        await AuthorizationService(session).ensure_tenant_role(
            _actor("root", super_admin=True),
            tenant_id=tenant_guild.tenant_id,
            minimum_role=TenantRole.OWNER,
        )


@pytest.mark.asyncio
async def test_tenant_status_and_guild_binding(session_factory, tenant_guild) -> None:
    async with session_factory() as session:
        session.add(Tenant(id="tenant-off", name="Closed", status=TenantStatus.DISABLED))
        await session.commit()
        service = AuthorizationService(session)

        tenant = await service.ensure_tenant_is_active(tenant_guild.tenant_id)
        guild = await service.ensure_guild_bound_to_tenant(tenant_id=tenant.id, guild_id=tenant_guild.guild_id)
        assert guild.point_value_minor == 100

        with pytest.raises(AppError) as excinfo:
            await service.ensure_tenant_is_active("tenant-off")
        assert excinfo.value.code == ErrorCode.TENANT_DISABLED

        with pytest.raises(AppError) as excinfo:
            await service.ensure_tenant_is_active("missing")
        assert excinfo.value.code == ErrorCode.TENANT_NOT_FOUND

        with pytest.raises(AppError) as excinfo:
            await service.ensure_guild_bound_to_tenant(tenant_id=tenant.id, guild_id="guild-elsewhere")
        assert excinfo.value.code == ErrorCode.GUILD_NOT_CONNECTED


def test_role_parse() -> None:
    assert TenantRole.parse(" Admin ") == TenantRole.ADMIN
    assert TenantRole.OWNER > TenantRole.ADMIN > TenantRole.MEMBER
