"""Database engine and async session factory for the durable cache."""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from storefront_sync.config import settings
from storefront_sync.models.kv_entry import Base

engine = create_async_engine(settings.storage_url, echo=settings.debug)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the key-value table if it doesn't yet exist."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
