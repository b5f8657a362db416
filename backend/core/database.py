# backend/core/database.py
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase

from backend.core.config import get_database_url


def make_engine(db_url: str) -> AsyncEngine:
    # Configure engine based on database type
    if "sqlite" in db_url:
        return create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_async_engine(
        db_url,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


engine = make_engine(get_database_url())

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

class Base(DeclarativeBase):
    pass

async def get_db():
    async with SessionLocal() as session:
        yield session


async def init_db(bind: AsyncEngine = None) -> None:
    """Create all tables. Called once at application startup."""
    from backend import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in the schema is stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
