from typing import Optional
import logging

from db.executor import DEFAULT_ROW_LIMIT
from db.table_loader import TableRef
from session.query_session import QuerySession
from session.table_editor import DEFAULT_PAGE_SIZE, EditorState, TableEditorSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Holds at most one table editor and one query session for the host.

    Opening a new session of either kind disposes the one it replaces.
    """

    def __init__(self, pool, row_limit: int = DEFAULT_ROW_LIMIT, page_size: int = DEFAULT_PAGE_SIZE):
        self.pool = pool
        self.row_limit = row_limit
        self.page_size = page_size
        self.table_editor: Optional[TableEditorSession] = None
        self.query_session: Optional[QuerySession] = None

    async def open_table(self, table: TableRef, on_state=None) -> EditorState:
        self.close_table()
        session = TableEditorSession(self.pool, table, self.page_size, on_state)
        self.table_editor = session
        logger.debug("Opened table editor for %s", table.qualified)
        return await session.open()

    def close_table(self) -> None:
        if self.table_editor is not None:
            self.table_editor.dispose()
            self.table_editor = None

    def open_query(self, on_result=None) -> QuerySession:
        """Return the query session, creating it on first use."""
        if self.query_session is None:
            self.query_session = QuerySession(self.pool, self.row_limit, on_result)
        elif on_result is not None:
            self.query_session.on_result = on_result
        return self.query_session

    async def close_query(self) -> None:
        if self.query_session is not None:
            session, self.query_session = self.query_session, None
            await session.dispose()

    async def dispose_all(self) -> None:
        self.close_table()
        await self.close_query()
