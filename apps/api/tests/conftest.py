import sys
from dataclasses import dataclass
from pathlib import Path

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from ticketsale_api.app import create_app  # noqa: E402
from ticketsale_api.db.base import Base  # noqa: E402
from ticketsale_api.db.session import get_session  # noqa: E402
from ticketsale_api.models import Tenant, TenantGuild, TenantStatus  # noqa: E402


@dataclass(frozen=True)
class GuildFixture:
    tenant_id: str
    guild_id: str
    point_value_minor: int
    referral_reward_minor: int


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def tenant_guild(session_factory) -> GuildFixture:
    """An active tenant with one connected guild: 1 point per 100p, tickets earn and redeem."""

    async with session_factory() as session:
        tenant = Tenant(id="tenant-1", name="Box Office", status=TenantStatus.ACTIVE)
        guild = TenantGuild(
            tenant_id=tenant.id,
            guild_id="guild-1",
            point_value_minor=100,
            earn_category_keys=["tickets"],
            redeem_category_keys=["tickets"],
            referral_reward_minor=500,
        )
        session.add_all([tenant, guild])
        await session.commit()

    return GuildFixture(
        tenant_id="tenant-1",
        guild_id="guild-1",
        point_value_minor=100,
        referral_reward_minor=500,
    )


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.state.session_factory = session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
        if app.state.webhook_queue.is_running:
            await app.state.webhook_queue.stop()
