"""Tenant role, status and guild binding checks."""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.core.errors import AppError, ErrorCode
from ticketsale_api.models.tenant import Tenant, TenantGuild, TenantMember, TenantRole, TenantStatus
from ticketsale_api.security.session_token import SessionPayload


class AuthorizationService:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_member_role(self, *, tenant_id: str, user_id: str) -> TenantRole | None:
        stmt = select(TenantMember.role).where(
            TenantMember.tenant_id == tenant_id,
            TenantMember.user_id == user_id,
        )
        result = await self._db.execute(stmt)
        role = result.scalar_one_or_none()
        return TenantRole(role) if role is not None else None

    async def ensure_tenant_role(
        self,
        actor: SessionPayload,
        *,
        tenant_id: str,
        minimum_role: TenantRole,
    ) -> None:
        """Require ``actor`` to hold at least ``minimum_role``; super admins always pass."""

        if actor.is_super_admin:
            return

        role = await self.get_member_role(tenant_id=tenant_id, user_id=actor.user_id)
        if role is None:
            logger.warning("Tenant access denied", tenant_id=tenant_id, user_id=actor.user_id)
            raise AppError(ErrorCode.TENANT_ACCESS_DENIED, "You do not have access to this tenant", status_code=403)
        if role < minimum_role:
            logger.warning(
                "Tenant role denied",
                tenant_id=tenant_id,
                user_id=actor.user_id,
                role=role.name.lower(),
                minimum_role=minimum_role.name.lower(),
            )
            raise AppError(ErrorCode.TENANT_ROLE_DENIED, "Insufficient tenant role", status_code=403)

    async def ensure_tenant_is_active(self, tenant_id: str) -> Tenant:
        tenant = await self._db.get(Tenant, tenant_id)
        if tenant is None:
            raise AppError(ErrorCode.TENANT_NOT_FOUND, "Tenant not found", status_code=404)
        if TenantStatus(tenant.status) != TenantStatus.ACTIVE:
            raise AppError(ErrorCode.TENANT_DISABLED, "Tenant is disabled", status_code=403)
        return tenant

    async def ensure_guild_bound_to_tenant(self, *, tenant_id: str, guild_id: str) -> TenantGuild:
        stmt = select(TenantGuild).where(
            TenantGuild.tenant_id == tenant_id,
            TenantGuild.guild_id == guild_id,
        )
        result = await self._db.execute(stmt)
        guild = result.scalar_one_or_none()
        if guild is None:
            raise AppError(ErrorCode.GUILD_NOT_CONNECTED, "Guild is not connected to the tenant", status_code=404)
        return guild
