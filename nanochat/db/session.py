# nanochat/db/session.py
import logging
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from nanochat.core.config import Settings, settings as default_settings
from nanochat.db.base import Base

logger = logging.getLogger(__name__)


def _enable_wal(dbapi_connection, connection_record):
    # WAL lets readers proceed while a writer holds the database
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_engine(app_settings: Optional[Settings] = None, database_url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for the local store"""
    cfg = app_settings or default_settings
    url = database_url or cfg.DATABASE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["timeout"] = 30

    engine = create_async_engine(
        url,
        echo=cfg.LOG_LEVEL == "DEBUG",  # Enable SQL logging in debug mode
        future=True,
        connect_args=connect_args,
    )
    if url.startswith("sqlite") and ":memory:" not in url:
        event.listen(engine.sync_engine, "connect", _enable_wal)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create async session factory bound to `engine`"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables"""
    # Import models so they register on Base.metadata
    import nanochat.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Local store schema ready")
