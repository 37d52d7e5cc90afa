from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
import logging

from db.errors import DatabaseConnectionError, ExecutionError, UnknownMessageError
from db.table_loader import TablePage, TableRef, load_page
from db.writeback import SaveSummary, apply_changes
from models.changes import ChangeOperation
from session.messages import CancelMessage, Message, PageMessage, RefreshMessage, SaveMessage

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 200


@dataclass
class EditorState:
    """What the grid shows: either a loaded page or an error."""

    table: TableRef
    page_size: int
    page_index: int = 0
    page: Optional[TablePage] = None
    loading: bool = False
    error: Optional[str] = None

    @property
    def columns(self) -> List[str]:
        return self.page.columns if self.page else []

    @property
    def has_next_page(self) -> bool:
        return bool(self.page and self.page.has_next_page)


class TableEditorSession:
    """Edit session for one table.

    Owns the current page's baseline rows and row tokens; every reload or page change replaces
    them wholesale. Row tokens are only valid for the page they came from, so a successful save
    always reloads the page.
    """

    def __init__(self, pool, table: TableRef, page_size: int = DEFAULT_PAGE_SIZE, on_state: Optional[Callable[[EditorState], None]] = None):
        if page_size <= 0:
            page_size = DEFAULT_PAGE_SIZE
        self.pool = pool
        self.on_state = on_state
        self._state = EditorState(table=table, page_size=page_size)
        self._disposed = False

    @property
    def state(self) -> EditorState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _check_open(self) -> None:
        if self._disposed:
            raise RuntimeError("Table editor session has been disposed")

    def _notify(self) -> None:
        if self.on_state is not None:
            self.on_state(self._state)

    async def _load(self, page_index: int) -> EditorState:
        self._check_open()
        state = self._state
        state.page_index = page_index
        state.page = None
        state.loading = True
        state.error = None
        self._notify()
        try:
            state.page = await load_page(self.pool, state.table, state.page_size, page_index)
        except (ExecutionError, DatabaseConnectionError) as e:
            logger.warning("Could not load %s: %s", state.table.qualified, e)
            state.error = str(e)
        finally:
            state.loading = False
        self._notify()
        return state

    async def open(self) -> EditorState:
        return await self._load(0)

    async def reload(self) -> EditorState:
        return await self._load(self._state.page_index)

    async def page(self, direction: str) -> EditorState:
        """Move to the previous or next page; a no-op at either end."""
        self._check_open()
        state = self._state
        if direction == "previous":
            if state.page_index == 0:
                return state
            return await self._load(state.page_index - 1)
        if direction == "next":
            if not state.has_next_page:
                return state
            return await self._load(state.page_index + 1)
        raise UnknownMessageError(f"Unknown page direction: {direction!r}")

    async def save(self, changes: Sequence[ChangeOperation]) -> SaveSummary:
        """Write the changes against the current page, then reload it.

        On failure nothing is written, the page is left as it was and the error propagates.
        """
        self._check_open()
        page = self._state.page
        if page is None:
            raise RuntimeError("No page is loaded")
        summary = await apply_changes(self.pool, page.table, page.columns, page.row_tokens, list(changes))
        logger.info(
            "Saved %s: %d updated, %d inserted, %d skipped",
            page.table.qualified, summary.updated_count, summary.inserted_count, summary.skipped_count,
        )
        await self.reload()
        return summary

    async def handle(self, message: Message):
        if isinstance(message, SaveMessage):
            return await self.save(message.changes)
        if isinstance(message, RefreshMessage):
            return await self.reload()
        if isinstance(message, PageMessage):
            return await self.page(message.direction)
        if isinstance(message, CancelMessage):
            raise UnknownMessageError("The table editor has nothing to cancel")
        raise UnknownMessageError(f"Unsupported message: {message!r}")

    def dispose(self) -> None:
        self._disposed = True
        self._state.page = None
        self.on_state = None
