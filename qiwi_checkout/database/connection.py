"""Database engine and session management."""
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from qiwi_checkout.config import Settings
from qiwi_checkout.database.models import Base


def use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    SQLite has no SELECT ... FOR UPDATE. Starting with BEGIN IMMEDIATE
    serializes read-modify-write transactions across connections; waiting
    writers block on the busy timeout instead of reading stale rows.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def disable_driver_begin(dbapi_connection: Any, connection_record: Any) -> None:
        # The driver would otherwise emit its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(settings: Settings) -> AsyncEngine:
    """
    Create the database engine.

    Args:
        settings: Application settings

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    kwargs = {"echo": settings.database_echo, "pool_pre_ping": True}
    is_sqlite = settings.database_url.startswith("sqlite")
    if not is_sqlite:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["pool_recycle"] = 3600  # Recycle connections after 1 hour

    engine = create_async_engine(settings.database_url, **kwargs)
    if is_sqlite:
        use_immediate_transactions(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create the session factory.

    Returns:
        async_sessionmaker: SQLAlchemy async session factory
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Initialize database tables.

    Creates all tables defined in models if they don't exist.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections and dispose of the engine."""
    await engine.dispose()
