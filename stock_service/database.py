from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
import logging

from . import config
from .exceptions import InternalError

logger = logging.getLogger(__name__)

Base = declarative_base()

T = TypeVar("T")


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """
    SQLite has no row locks; take the database write lock when each
    transaction begins so conditional updates behave like they do under
    PostgreSQL row locking. Used for local runs and tests.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the async engine (and its connection pool) for the life of the process.

    The engine is created on first use and released by ``dispose()``; the
    application creates one instance at startup and hands it to whatever needs
    sessions instead of reaching for a module-level pool.
    """

    def __init__(self, url: str = config.DATABASE_URL, echo: bool = config.DB_ECHO, pool_size: int = config.DB_POOL_SIZE):
        self.url = url
        self.echo = echo
        self.pool_size = pool_size
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def safe_url(self) -> str:
        return make_url(self.url).render_as_string(hide_password=True)

    def _ensure_engine(self) -> None:
        """Creates the engine and its session factory on first use."""
        if self._engine is None:
            logger.info(f"Creating engine with URL: {self.safe_url}")
            options: dict[str, Any] = {"echo": self.echo, "pool_pre_ping": True}
            if make_url(self.url).get_backend_name() != "sqlite":
                options["pool_size"] = self.pool_size
            try:
                self._engine = create_async_engine(self.url, **options)
            except Exception as e:
                logger.error(f"FATAL: Failed to create database engine: {e}")
                raise RuntimeError(f"Could not initialize database connection: {e}") from e
            if make_url(self.url).get_backend_name() == "sqlite":
                _serialize_sqlite_writers(self._engine)
            self._session_factory = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
            logger.info("Async database engine and session factory created successfully.")

    @property
    def engine(self) -> AsyncEngine:
        self._ensure_engine()
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        self._ensure_engine()
        return self._session_factory

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def create_all(self) -> None:
        # Dev/test only; production schemas are managed by migrations
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> str:
        """Round-trips a trivial query and returns the dialect name."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return self.engine.dialect.name

    async def dispose(self) -> None:
        if self._engine is not None:
            logger.info("Disposing database engine...")
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


class TransactionCoordinator:
    """
    Runs units of work: one session, one transaction, commit on success and
    rollback on any exception.

    Storage failures surface as ``InternalError`` after the rollback; domain
    errors raised by the unit of work propagate unchanged.
    """

    def __init__(self, database: Database):
        self.database = database

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[AsyncSession]:
        async with self.database.session() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error(f"Unit of work rolled back after storage error: {e}")
                raise InternalError(str(e)) from e

    async def run_atomic(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self.unit_of_work() as session:
            return await fn(session)


async def get_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency to inject a request-scoped DB session."""
    database: Database = request.app.state.database
    async with database.session() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Rolling back session due to error: {e}")
            await session.rollback()
            raise
        # No automatic commit here; close is managed by 'async with'
