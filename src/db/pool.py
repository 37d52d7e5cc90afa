from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from db.dialects import DBAdapter, adapter_for
from db.errors import DatabaseConnectionError

logger = logging.getLogger(__name__)

# Without this SQLAlchemy hands the driver an empty parameter dict and psycopg then treats
# every % in the statement as a placeholder
_RAW_SQL_OPTIONS = {"no_parameters": True}


@dataclass
class StatementResult:
    """Buffered outcome of one statement."""

    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    # Driver-reported rowcount; None when the driver does not know it
    affected_count: Optional[int] = None


def _to_statement_result(res) -> StatementResult:
    rowcount = getattr(res, "rowcount", None)
    affected = rowcount if isinstance(rowcount, int) and rowcount >= 0 else None
    if not res.returns_rows:
        return StatementResult(affected_count=affected)
    columns = list(res.keys())
    rows = [dict(r._mapping) for r in res.fetchall()]
    return StatementResult(columns=columns, rows=rows, affected_count=affected)


def _as_executable(statement):
    return text(statement) if isinstance(statement, str) else statement


async def _execute_on(conn: AsyncConnection, statement, params: Optional[Mapping[str, Any]] = None):
    if isinstance(statement, str) and not params:
        return await conn.exec_driver_sql(statement, execution_options=_RAW_SQL_OPTIONS)
    return await conn.execute(_as_executable(statement), dict(params or {}))


class PooledConnection:
    """A connection checked out of the pool for the exclusive use of one operation."""

    def __init__(self, conn: AsyncConnection, backend_id: Optional[int] = None):
        self._conn = conn
        self._transaction = None
        self._released = False
        self.backend_id = backend_id

    @property
    def released(self) -> bool:
        return self._released

    async def execute(self, statement, params: Optional[Mapping[str, Any]] = None) -> StatementResult:
        """Run one statement.

        A plain string without params is handed to the driver verbatim so ad-hoc SQL is not
        scanned for bind markers; anything else goes through SQLAlchemy parameter binding.
        """
        return _to_statement_result(await _execute_on(self._conn, statement, params))

    async def begin(self) -> None:
        self._transaction = await self._conn.begin()

    async def commit(self) -> None:
        if self._transaction is None:
            raise RuntimeError("No transaction in progress")
        trans, self._transaction = self._transaction, None
        await trans.commit()

    async def rollback(self) -> None:
        if self._transaction is None:
            return
        trans, self._transaction = self._transaction, None
        await trans.rollback()

    async def release(self) -> None:
        """Return the connection to the pool. Later calls are no-ops."""
        if self._released:
            return
        self._released = True
        await self._conn.close()


class ConnectionPool:
    """Pooled connection source backed by an AsyncEngine.

    Hands out dedicated connections to the executor, the page loader and the write-back runner,
    and runs short out-of-band statements (cancel requests, type-label lookups) on its own.
    """

    def __init__(self, engine: AsyncEngine, adapter: Optional[DBAdapter] = None):
        self.engine = engine
        self.adapter = adapter or adapter_for(engine.dialect.name)

    async def _connect(self) -> AsyncConnection:
        try:
            return await self.engine.connect()
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseConnectionError(f"Could not connect to the database: {e}") from e

    async def checkout(self, autocommit: bool = True, track_backend: bool = False) -> PooledConnection:
        """Check out a dedicated connection.

        autocommit: run each statement in its own transaction (ad-hoc queries). Pass False when
        the caller manages an explicit transaction with begin/commit/rollback.
        track_backend: look up the server process id so the running statement can be cancelled.
        """
        conn = await self._connect()
        try:
            if autocommit:
                conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            backend_id = None
            if track_backend and self.adapter.backend_id_query:
                res = await conn.exec_driver_sql(self.adapter.backend_id_query, execution_options=_RAW_SQL_OPTIONS)
                backend_id = res.scalar()
        except (SQLAlchemyError, OSError) as e:
            await conn.close()
            raise DatabaseConnectionError(f"Could not prepare connection: {e}") from e
        logger.debug("Checked out connection (backend_id=%r, autocommit=%s)", backend_id, autocommit)
        return PooledConnection(conn, backend_id)

    async def execute(self, statement, params: Optional[Mapping[str, Any]] = None) -> StatementResult:
        """Run a short statement on a connection of its own, outside any caller transaction."""
        conn = await self._connect()
        try:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            return _to_statement_result(await _execute_on(conn, statement, params))
        finally:
            await conn.close()

    async def dispose(self) -> None:
        await self.engine.dispose()
