import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from app.shared.core.config import settings
from app.shared.core.constants import DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_RECYCLE

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    logger.error("❌ DATABASE_URL is missing in .env file")
    raise ValueError("DATABASE_URL is required")


def build_engine_kwargs(url: str) -> dict:
    """
    Engine options per driver.

    PostgreSQL goes through PgBouncer/Transaction Pooler, which cannot use
    prepared statements (statement_cache_size=0). SQLite (tests, local dev)
    takes no pool sizing.
    """
    if url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "pool_size": DB_POOL_SIZE,
            "max_overflow": DB_MAX_OVERFLOW,
            "pool_recycle": DB_POOL_RECYCLE,
            "connect_args": {
                "statement_cache_size": 0,
                "prepared_statement_cache_size": 0
            }
        }
    return {}


engine = create_async_engine(DATABASE_URL, echo=False, **build_engine_kwargs(DATABASE_URL))

# Session Factory
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

logger.info(f"✅ Database engine initialized ({engine.dialect.name})")


async def get_db():
    """Dependency for FastAPI routes to get a DB session"""
    async with AsyncSessionLocal() as session:
        yield session
