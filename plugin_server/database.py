import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from plugin_server.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    """Create the async engine, pooling only for server databases."""
    if database_url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        return create_async_engine(database_url, poolclass=NullPool)

    if settings.environment == "production":
        return create_async_engine(
            database_url,
            pool_size=20,
            max_overflow=50,
            pool_timeout=60,
            pool_recycle=1800,
        )
    return create_async_engine(
        database_url,
        echo=settings.debug,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
    )


engine = build_engine(settings.database_url)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception as e:
            logger.error("Database session error: %s", e)
            await db.rollback()
            raise


async def create_tables() -> None:
    # Import models so they are attached to Base.metadata
    from plugin_server import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created (if not existing).")
