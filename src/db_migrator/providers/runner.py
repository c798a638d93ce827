"""Statement runners composed into the SQLAlchemy-based providers.

``AsyncSqlRunner`` owns one ``AsyncEngine``; ``ThreadedSqlRunner`` owns a
synchronous engine and drives it from worker threads.  Both apply the
per-command timeout and error classification uniformly.  Providers hold a
runner rather than inheriting from a base class.

Usage:
    runner = AsyncSqlRunner(url, provider="PostgreSQL", timeout=300)
    await runner.connect()
    rows = await runner.fetch_all("SELECT 1 AS one")
    async for row in runner.stream("SELECT * FROM big_table", batch_size=1000):
        ...
    await runner.close()
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.ext.asyncio import AsyncEngine

from db_migrator.constants import ESTIMATE_ERROR, ESTIMATE_PERMISSION_DENIED
from db_migrator.exceptions import DatabaseConnectionError
from db_migrator.logging import get_logger
from db_migrator.providers.engine import (
    create_async_engine_pooled,
    create_sync_engine_unpooled,
)
from db_migrator.providers.sql import (
    classify_catalog_error,
    is_permission_error,
    run_with_timeout,
)

logger = get_logger(__name__)

T = TypeVar("T")


class AsyncSqlRunner:
    """Executes SQL text against one async engine.

    Args:
        database_url: Driver-qualified SQLAlchemy URL.
        provider: Engine name, used in error messages.
        timeout: Per-command timeout in seconds (``None`` disables it).
        ping_sql: Statement used by ``connect()`` to verify the connection.
        log: Logger sink.
        **engine_kwargs: Forwarded to ``create_async_engine_pooled``.
    """

    def __init__(
        self,
        database_url: str,
        provider: str,
        timeout: float | None = None,
        ping_sql: str = "SELECT 1",
        log: logging.Logger | None = None,
        **engine_kwargs: Any,
    ) -> None:
        self._url = database_url
        self._provider = provider
        self._ping_sql = ping_sql
        self._engine_kwargs = engine_kwargs
        self._engine: AsyncEngine | None = None
        self.timeout = timeout
        self.log = log or logger

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseConnectionError(
                f"{self._provider} provider is not connected; call connect() first",
                provider=self._provider,
            )
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def connect(self) -> None:
        if self._engine is not None:
            return
        try:
            engine = create_async_engine_pooled(self._url, **self._engine_kwargs)
        except Exception as e:
            raise DatabaseConnectionError(
                f"Could not create {self._provider} engine: {e}", provider=self._provider
            ) from e
        try:
            async with engine.connect() as conn:
                await run_with_timeout(
                    conn.execute(text(self._ping_sql)), self.timeout, "Connection check"
                )
        except Exception as e:
            await engine.dispose()
            raise DatabaseConnectionError(
                f"Could not connect to {self._provider}: {e}", provider=self._provider
            ) from e
        self._engine = engine
        self.log.info("Connected to %s", self._provider)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None, table: str | None = None
    ) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict.

        Raises:
            PermissionDeniedError: If the user lacks privileges.
            CatalogError: On any other driver error.
            CommandTimeoutError: If the query times out.
        """
        self.log.debug("SQL: %s", sql)

        async def _run() -> list[dict[str, Any]]:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]

        try:
            return await run_with_timeout(_run(), self.timeout, "Query")
        except Exception as e:
            raise classify_catalog_error(e, table) from e

    async def fetch_scalar(
        self, sql: str, params: dict[str, Any] | None = None, table: str | None = None
    ) -> Any:
        rows = await self.fetch_all(sql, params, table)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    async def execute(self, statements: str | Sequence[str]) -> None:
        """Run DDL statements in one transaction."""
        if isinstance(statements, str):
            statements = [statements]

        async def _run() -> None:
            async with self.engine.begin() as conn:
                for stmt in statements:
                    self.log.debug("SQL: %s", stmt)
                    await conn.execute(text(stmt))

        await run_with_timeout(_run(), self.timeout, "Statement")

    async def estimate(self, sql: str, what: str) -> int:
        """Run a count/size query, returning a sentinel instead of raising."""
        try:
            value = await self.fetch_scalar(sql)
            return int(value or 0)
        except Exception as e:
            if is_permission_error(e):
                self.log.warning("Permission denied estimating %s: %s", what, e)
                return ESTIMATE_PERMISSION_DENIED
            self.log.warning("Could not estimate %s: %s", what, e)
            return ESTIMATE_ERROR

    async def stream(
        self, sql: str, batch_size: int, table: str | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield rows from a server-side cursor.

        The connection is released on exhaustion, ``aclose()`` or error.
        """
        self.log.debug("SQL (stream): %s", sql)
        async with self.engine.connect() as conn:
            try:
                result = await conn.stream(
                    text(sql), execution_options={"yield_per": batch_size}
                )
            except Exception as e:
                raise classify_catalog_error(e, table) from e
            try:
                async for row in result:
                    yield dict(row._mapping)
            finally:
                await result.close()


class ThreadedSqlRunner:
    """Runs SQL text on a synchronous engine from worker threads.

    Used for drivers without an asyncio dialect.  Every blocking call goes
    through ``asyncio.to_thread`` so the event loop keeps observing
    cancellation and progress while the driver works.  The engine is
    unpooled: each operation opens and closes its own connection.

    Args:
        database_url: Driver-qualified SQLAlchemy URL.
        provider: Engine name, used in error messages.
        timeout: Per-command timeout in seconds (``None`` disables it).
        ping_sql: Statement used by ``connect()`` to verify the connection.
        log: Logger sink.
        **engine_kwargs: Forwarded to ``create_sync_engine_unpooled``.
    """

    def __init__(
        self,
        database_url: str,
        provider: str,
        timeout: float | None = None,
        ping_sql: str = "SELECT 1",
        log: logging.Logger | None = None,
        **engine_kwargs: Any,
    ) -> None:
        self._url = database_url
        self._provider = provider
        self._ping_sql = ping_sql
        self._engine_kwargs = engine_kwargs
        self._engine: Engine | None = None
        self.timeout = timeout
        self.log = log or logger

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseConnectionError(
                f"{self._provider} provider is not connected; call connect() first",
                provider=self._provider,
            )
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def run(self, func: Callable[..., T], *args: Any, what: str = "Statement") -> T:
        """Run a blocking callable on a worker thread under the command timeout."""
        return await run_with_timeout(asyncio.to_thread(func, *args), self.timeout, what)

    async def connect(self) -> None:
        if self._engine is not None:
            return
        try:
            engine = create_sync_engine_unpooled(self._url, **self._engine_kwargs)
        except Exception as e:
            raise DatabaseConnectionError(
                f"Could not create {self._provider} engine: {e}", provider=self._provider
            ) from e

        def _ping() -> None:
            with engine.connect() as conn:
                conn.execute(text(self._ping_sql))

        try:
            await run_with_timeout(asyncio.to_thread(_ping), self.timeout, "Connection check")
        except Exception as e:
            engine.dispose()
            raise DatabaseConnectionError(
                f"Could not connect to {self._provider}: {e}", provider=self._provider
            ) from e
        self._engine = engine
        self.log.info("Connected to %s", self._provider)

    async def close(self) -> None:
        if self._engine is not None:
            engine, self._engine = self._engine, None
            await asyncio.to_thread(engine.dispose)

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None, table: str | None = None
    ) -> list[dict[str, Any]]:
        self.log.debug("SQL: %s", sql)
        engine = self.engine

        def _run() -> list[dict[str, Any]]:
            with engine.connect() as conn:
                result = conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]

        try:
            return await self.run(_run, what="Query")
        except Exception as e:
            raise classify_catalog_error(e, table) from e

    async def fetch_scalar(
        self, sql: str, params: dict[str, Any] | None = None, table: str | None = None
    ) -> Any:
        rows = await self.fetch_all(sql, params, table)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    async def execute(self, statements: str | Sequence[str]) -> None:
        """Run DDL statements in one transaction."""
        if isinstance(statements, str):
            statements = [statements]
        engine = self.engine

        def _run() -> None:
            with engine.begin() as conn:
                for stmt in statements:
                    self.log.debug("SQL: %s", stmt)
                    conn.execute(text(stmt))

        await self.run(_run)

    async def estimate(self, sql: str, what: str) -> int:
        try:
            value = await self.fetch_scalar(sql)
            return int(value or 0)
        except Exception as e:
            if is_permission_error(e):
                self.log.warning("Permission denied estimating %s: %s", what, e)
                return ESTIMATE_PERMISSION_DENIED
            self.log.warning("Could not estimate %s: %s", what, e)
            return ESTIMATE_ERROR

    async def stream(
        self,
        sql: str,
        batch_size: int,
        table: str | None = None,
        convert: Callable[[Any], Any] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield rows fetched ``batch_size`` at a time on a worker thread.

        Args:
            convert: Optional per-value conversion applied on the worker
                thread (e.g. reading blob streams).
        """
        self.log.debug("SQL (stream): %s", sql)
        engine = self.engine

        def _open() -> tuple[Connection, Any]:
            conn = engine.connect()
            try:
                return conn, conn.execute(text(sql)).mappings()
            except Exception:
                conn.close()
                raise

        def _fetch(result: Any) -> list[dict[str, Any]]:
            rows = result.fetchmany(batch_size)
            if convert is None:
                return [dict(row) for row in rows]
            return [{k: convert(v) for k, v in row.items()} for row in rows]

        try:
            conn, result = await asyncio.to_thread(_open)
        except Exception as e:
            raise classify_catalog_error(e, table) from e
        try:
            while True:
                chunk = await asyncio.to_thread(_fetch, result)
                if not chunk:
                    break
                for row in chunk:
                    yield row
        finally:
            await asyncio.to_thread(conn.close)
