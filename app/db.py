from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import NullPool

from app.core.settings import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str):
    # sqlite: one connection per session, so sessions never share an open transaction
    kwargs = {"poolclass": NullPool} if url.startswith("sqlite") else {}
    return create_async_engine(url, echo=False, future=True, **kwargs)


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine(settings.DATABASE_URL)

AsyncSessionLocal = make_session_factory(engine)


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_schema(bind) -> None:
    from app.models import all_models  # noqa: F401
    from sqlalchemy import text

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if str(bind.url).startswith("sqlite"):
            await conn.execute(text("PRAGMA journal_mode=WAL;"))


async def init_db() -> None:
    """Create tables on startup and make sure the default admin exists."""
    from app.services.admin_bootstrap import ensure_default_admin

    await create_schema(engine)

    async with AsyncSessionLocal() as session:
        await ensure_default_admin(session)
        await session.commit()
