"""Engine, declarative bases and the tenant session dependency.

PublicBase tables (agencies) live in `public`; TenantBase tables
(clients, care plans, drafts, staff assignments, activity log) are
created once per agency schema.  A request session reaches its agency's
tables through `search_path`, so models never carry a schema name.
"""

from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from carebase.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class PublicBase(DeclarativeBase):
    pass


class TenantBase(DeclarativeBase):
    pass


async def get_tenant_db() -> AsyncIterator[AsyncSession]:
    """Session bound to the request's agency schema; commits when the route returns.

    Raises TenantContextError when the JWT carried no agency.
    """
    from carebase.tenancy import get_current_tenant_schema

    schema = get_current_tenant_schema()
    async with async_session() as session:
        await session.execute(text(f'SET search_path TO "{schema}", pg_catalog'))
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
