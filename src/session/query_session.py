from typing import Callable, Optional
import logging

from db.errors import UnknownMessageError
from db.executor import DEFAULT_ROW_LIMIT, CancelableQuery, QueryResult, run_cancelable_query
from session.messages import CancelMessage, Message

logger = logging.getLogger(__name__)


class QuerySession:
    """Runs ad-hoc statements one at a time for a results view."""

    def __init__(self, pool, row_limit: int = DEFAULT_ROW_LIMIT, on_result: Optional[Callable[[QueryResult], None]] = None):
        self.pool = pool
        self.row_limit = row_limit
        self.on_result = on_result
        self.last_result: Optional[QueryResult] = None
        self._current: Optional[CancelableQuery] = None
        self._disposed = False

    @property
    def running(self) -> bool:
        return self._current is not None and not self._current.done()

    async def run(self, sql: str) -> QueryResult:
        """Execute ``sql``. A statement still running is cancelled first."""
        if self._disposed:
            raise RuntimeError("Query session has been disposed")
        if self.running:
            await self.cancel()
        query = run_cancelable_query(self.pool, sql, self.row_limit)
        self._current = query
        try:
            result = await query.result
        finally:
            if self._current is query:
                self._current = None
        self.last_result = result
        if self.on_result is not None:
            self.on_result(result)
        return result

    async def cancel(self) -> bool:
        query = self._current
        if query is None:
            return False
        return await query.cancel()

    async def handle(self, message: Message):
        if isinstance(message, CancelMessage):
            return await self.cancel()
        raise UnknownMessageError(f"Unsupported message for query results: {message!r}")

    async def dispose(self) -> None:
        if self.running:
            await self.cancel()
        self._disposed = True
        self.on_result = None
