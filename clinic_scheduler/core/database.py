from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from clinic_scheduler.core.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(url: str | None = None) -> AsyncEngine:
    return create_async_engine(url or settings.DATABASE_URL, echo=settings.DATABASE_ECHO, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


engine = build_engine()
async_session = build_session_factory(engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create every table known to the ORM metadata."""
    import clinic_scheduler.models  # noqa: F401  (registers the mappers)

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
