from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from app.config import settings
from app.core.exceptions import ConnectionFailure, InvalidInput

logger = logging.getLogger(__name__)

PLACEHOLDER_POLICY_NAME = "placeholder_policy"
_POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+asyncpg", "postgresql+psycopg2", "postgres+psycopg2"}


def _asyncpg_url(connection_string: str):
    try:
        url = make_url(connection_string)
    except (ArgumentError, ValueError) as exc:
        raise InvalidInput("Database connection string is not a valid postgres:// URL.") from exc
    if url.drivername not in _POSTGRES_SCHEMES:
        raise InvalidInput(f"Unsupported database connection scheme '{url.drivername}'.")
    ssl_mode = url.query.get("sslmode") or settings.DATASTORE_SSL_MODE
    if isinstance(ssl_mode, tuple):
        ssl_mode = ssl_mode[-1]
    url = url.set(drivername="postgresql+asyncpg").difference_update_query(["sslmode"])
    return url, ssl_mode


class PostgresDataStore:
    """Short-lived connection to a project's Postgres database.

    The engine uses NullPool and is disposed on exit, so nothing outlives the
    check or fix that opened it.
    """

    def __init__(
        self,
        connection_string: str,
        *,
        connect_timeout: float | None = None,
        command_timeout: float | None = None,
    ) -> None:
        self._url, self._ssl_mode = _asyncpg_url(connection_string)
        self._connect_timeout = connect_timeout or settings.DATASTORE_CONNECT_TIMEOUT_SECONDS
        self._command_timeout = command_timeout or settings.DATASTORE_COMMAND_TIMEOUT_SECONDS
        self._engine: AsyncEngine | None = None
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "PostgresDataStore":
        self._engine = create_async_engine(
            self._url,
            poolclass=NullPool,
            connect_args={
                "ssl": self._ssl_mode,
                "timeout": self._connect_timeout,
                "command_timeout": self._command_timeout,
            },
        )
        try:
            self._conn = await self._engine.connect()
        except (DBAPIError, OSError, asyncio.TimeoutError) as exc:
            logger.info("Database connection failed: %s", exc.__class__.__name__)
            await self._engine.dispose()
            self._engine = None
            detail = getattr(exc, "orig", None) or exc
            raise ConnectionFailure(f"Could not connect to the database: {detail}") from exc
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._conn is not None:
                await self._conn.close()
        finally:
            self._conn = None
            if self._engine is not None:
                await self._engine.dispose()
                self._engine = None

    @property
    def connection(self) -> AsyncConnection:
        if self._conn is None:
            raise RuntimeError("PostgresDataStore must be used as an async context manager")
        return self._conn

    def _quote(self, identifier: str) -> str:
        return self.connection.dialect.identifier_preparer.quote_identifier(identifier)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self.connection.in_transaction():
            await self.connection.rollback()
        async with self.connection.begin():
            yield

    async def list_tables(self) -> list[str]:
        result = await self.connection.execute(
            text("SELECT tablename FROM pg_tables WHERE schemaname = 'public'")
        )
        return [row[0] for row in result.all()]

    async def table_exists(self, table_name: str) -> bool:
        result = await self.connection.execute(
            text("SELECT 1 FROM pg_tables WHERE schemaname = 'public' AND tablename = :table"),
            {"table": table_name},
        )
        return result.first() is not None

    async def is_rls_enabled(self, table_name: str) -> bool:
        result = await self.connection.execute(
            text(
                """
                SELECT c.relrowsecurity
                FROM pg_class c
                JOIN pg_namespace n ON n.oid = c.relnamespace
                WHERE n.nspname = 'public' AND c.relname = :table
                """
            ),
            {"table": table_name},
        )
        return result.scalar() is True

    async def list_policies(self, table_name: str) -> list[dict[str, Any]]:
        result = await self.connection.execute(
            text(
                """
                SELECT policyname, permissive, roles, cmd, qual, with_check
                FROM pg_policies
                WHERE schemaname = 'public' AND tablename = :table
                """
            ),
            {"table": table_name},
        )
        return [dict(row) for row in result.mappings().all()]

    async def enable_rls(self, table_name: str) -> None:
        await self.connection.exec_driver_sql(f"ALTER TABLE public.{self._quote(table_name)} ENABLE ROW LEVEL SECURITY")

    async def create_placeholder_policy(self, table_name: str) -> None:
        await self.connection.exec_driver_sql(
            f"CREATE POLICY {self._quote(PLACEHOLDER_POLICY_NAME)} "
            f"ON public.{self._quote(table_name)} FOR SELECT USING (true)"
        )
