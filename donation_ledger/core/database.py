"""Async database engine and session management.

A single :class:`Database` is created at process start, handed to every
service that touches the store, and disposed on shutdown.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)

# Execution option marking a connection that will write. SQLite takes the
# write lock at BEGIN for these so check-then-write sequences serialize.
WRITE_LOCK_OPTION = "ledger_write_lock"


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    """Take over BEGIN from the sqlite driver and enable WAL."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Stop the driver from emitting its own BEGIN.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


class Database:
    """Store client owning the engine and session factory."""

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        pool_timeout: float = 30.0,
        echo: bool = False,
    ):
        self.url = make_url(url)
        kwargs: dict = {"echo": echo}
        is_sqlite = self.url.get_backend_name() == "sqlite"
        # SQLite picks its own pool class; bound the wait for its write lock instead
        if is_sqlite:
            kwargs["connect_args"] = {"timeout": pool_timeout}
        else:
            kwargs["pool_size"] = pool_size
            kwargs["pool_timeout"] = pool_timeout
        self.engine = create_async_engine(url, **kwargs)
        if is_sqlite:
            _install_sqlite_hooks(self.engine)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create tables if they do not exist."""
        from donation_ledger import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self) -> None:
        """Dispose of pooled connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Short-lived read session."""
        async with self.session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session inside a write transaction.

        Commits when the block exits normally and rolls back on any exception.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await session.connection(execution_options={WRITE_LOCK_OPTION: True})
                yield session
