from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from conduit.config import settings
from conduit.middleware import install_query_counter


class Base(DeclarativeBase):
    pass


def build_engine(url: str) -> AsyncEngine:
    """
    Create an async engine for *url* with the SQL query counter installed.

    Server databases get the bounded pool from settings: a checkout waits at
    most ``DB_POOL_TIMEOUT`` seconds, then raises
    ``sqlalchemy.exc.TimeoutError`` (served as 503).  SQLite URLs share one
    connection through ``StaticPool`` so an in-memory database survives
    across sessions.
    """
    if url.startswith("sqlite"):
        options = {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    else:
        options = {
            "pool_pre_ping": True,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
        }
    new_engine = create_async_engine(url, echo=settings.DEBUG, **options)
    install_query_counter(new_engine)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: serialisation happens after the commit in get_db.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)
async_session = build_session_factory(engine)


async def get_db():
    """One session per request: commit on success, roll back on any error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
