from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from resume_engine.config import get_settings
from resume_engine.utils.logger import logger

settings = get_settings()

engine_options = {"echo": settings.debug, "future": True}
if not settings.database_url.startswith("sqlite"):
    engine_options.update(
        pool_pre_ping=True,  # Detect and recycle stale/broken connections
        pool_recycle=300,
    )

# Create async engine
engine = create_async_engine(settings.database_url, **engine_options)

# Create session factory
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for models
Base = declarative_base()

# Dependency for FastAPI routes
async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

# Initialize database (create tables)
async def init_db():
    """Create all database tables"""
    # Import models to register them with Base
    from resume_engine.models import document, document_version, job  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("database.initialized", extra={"service": "database"})
