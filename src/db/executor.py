from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import asyncio
import logging
import time

from sqlalchemy import text

from db.errors import CANCELLED_MESSAGE, QueryErrorInfo, normalize_error

logger = logging.getLogger(__name__)

DEFAULT_ROW_LIMIT = 10000


@dataclass
class QueryResult:
    """Outcome of one statement.

    row_count is what the engine reported (rows returned or affected) and may exceed
    len(rows) when the result was truncated to the row limit.
    """

    sql: str
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: Optional[int] = None
    elapsed: float = 0.0
    truncated: bool = False
    cancelled: bool = False
    error: Optional[QueryErrorInfo] = None


def normalize_limit(row_limit: Optional[int]) -> int:
    try:
        limit = int(row_limit)
    except (TypeError, ValueError):
        return DEFAULT_ROW_LIMIT
    return limit if limit > 0 else DEFAULT_ROW_LIMIT


class CancelableQuery:
    """One statement running on its own connection, with an out-of-band cancel().

    Must be created while an event loop is running; work starts immediately.
    Await ``result`` (or the object itself) for the QueryResult.
    """

    def __init__(self, pool, sql: str, row_limit: int = DEFAULT_ROW_LIMIT):
        self.pool = pool
        self.sql = sql
        self.row_limit = normalize_limit(row_limit)
        self._cancel_requested = False
        self._cancel_sent = False
        # cleared while a cancel request is in flight; the connection is held until it is set
        self._dispatch_idle = asyncio.Event()
        self._dispatch_idle.set()
        self._checkout = asyncio.ensure_future(pool.checkout(autocommit=True, track_backend=True))
        self.result: "asyncio.Future[QueryResult]" = asyncio.ensure_future(self._run())

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def done(self) -> bool:
        return self.result.done()

    def __await__(self):
        return self.result.__await__()

    async def _run(self) -> QueryResult:
        start = time.perf_counter()
        conn = None
        try:
            conn = await self._checkout
            res = await conn.execute(self.sql)
            elapsed = time.perf_counter() - start
            if self._cancel_requested:
                # The server may finish before honoring the cancel; the request still wins.
                logger.debug("Statement finished after cancel was requested (%.3fs)", elapsed)
                return self._cancelled_result(elapsed, QueryErrorInfo(CANCELLED_MESSAGE))

            rows = res.rows
            row_count = res.affected_count
            if res.columns and row_count is None:
                row_count = len(rows)
            truncated = False
            if len(rows) > self.row_limit:
                rows = rows[: self.row_limit]
                truncated = True

            logger.debug("Statement finished in %.3fs: %d row(s), truncated=%s", elapsed, len(rows), truncated)
            return QueryResult(
                sql=self.sql,
                columns=list(res.columns),
                rows=rows,
                row_count=row_count,
                elapsed=elapsed,
                truncated=truncated,
            )
        except Exception as e:
            elapsed = time.perf_counter() - start
            info = normalize_error(e)
            cancelled_code = getattr(self.pool.adapter, "cancelled_sqlstate", None)
            cancelled = self._cancel_requested or (cancelled_code is not None and info.code == cancelled_code)
            if cancelled:
                logger.debug("Statement cancelled after %.3fs", elapsed)
                return self._cancelled_result(elapsed, info)
            logger.warning("Statement failed (%s): %s", info.code, info.message)
            return QueryResult(sql=self.sql, elapsed=elapsed, error=info)
        finally:
            if conn is not None:
                await self._dispatch_idle.wait()
                await conn.release()

    def _cancelled_result(self, elapsed: float, info: QueryErrorInfo) -> QueryResult:
        info = QueryErrorInfo(CANCELLED_MESSAGE, info.code, info.detail, info.position)
        return QueryResult(sql=self.sql, elapsed=elapsed, cancelled=True, error=info)

    async def cancel(self) -> bool:
        """Ask the server to stop the statement.

        Returns whether the cancel request was dispatched, not whether the statement stopped.
        Calling it after the result is ready only records the request.
        """
        self._cancel_requested = True
        if self.result.done():
            return False
        try:
            conn = await self._checkout
        except Exception:
            return False
        cancel_sql = getattr(self.pool.adapter, "cancel_query", None)
        if not cancel_sql or not conn.backend_id or self.result.done() or getattr(conn, "released", False):
            return False
        if self._cancel_sent:
            return True
        self._cancel_sent = True
        self._dispatch_idle.clear()
        try:
            await self.pool.execute(text(cancel_sql), {"pid": conn.backend_id})
        except Exception:
            logger.exception("Failed to send cancel request for backend %s", conn.backend_id)
            return False
        finally:
            self._dispatch_idle.set()
        logger.debug("Cancel request sent for backend %s", conn.backend_id)
        return True


def run_cancelable_query(pool, sql: str, row_limit: int = DEFAULT_ROW_LIMIT) -> CancelableQuery:
    """Start ``sql`` on a dedicated connection and return a handle with cancel()."""
    return CancelableQuery(pool, sql, row_limit)


async def run_query(pool, sql: str, row_limit: int = DEFAULT_ROW_LIMIT) -> QueryResult:
    return await run_cancelable_query(pool, sql, row_limit).result
