from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from questkernel.config import settings


def normalize_url(raw_url: str) -> str:
    """Force the asyncpg driver onto bare postgres URLs."""
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return raw_url


engine = create_async_engine(normalize_url(settings.database_url), pool_pre_ping=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
