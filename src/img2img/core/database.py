"""Database engine and session factory setup."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def create_db_engine(db_url: str, pool_size: int = 20) -> AsyncEngine:
    """Create async database engine.

    Args:
        db_url: Connection URL (postgresql+psycopg://... or sqlite+aiosqlite://...)
        pool_size: Maximum number of connections in the pool (ignored for SQLite)

    Returns:
        Configured async engine
    """
    if db_url.startswith("sqlite"):
        engine = create_async_engine(db_url, echo=False)

        # SQLite only enforces ON DELETE CASCADE with foreign keys enabled per connection
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,  # No overflow beyond pool_size
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # Don't log SQL queries (use structlog instead)
    )


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database connection URL
        pool_size: Maximum number of connections in the pool

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_db_engine(db_url, pool_size)

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )
