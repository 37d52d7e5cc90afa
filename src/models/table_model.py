from typing import List, Optional, Sequence
from PyQt6.QtCore import QAbstractTableModel, Qt, QModelIndex
from PyQt6.QtGui import QBrush, QColor

from models.changes import (
    BaselineRow,
    ChangeOperation,
    WorkingRow,
    clone_rows,
    compile_changes,
    compute_cell_value,
    is_cell_dirty,
)

_DIRTY_COLOR = QColor(255, 165, 0, 120)
_NEW_ROW_COLOR = QColor(127, 127, 127, 30)
_NULL_COLOR = QColor(128, 128, 128)


class EditGridModel(QAbstractTableModel):
    """Editable grid for one loaded page of a table.

    Keeps the page's baseline rows untouched and edits a working copy. Cells are (text, is_null)
    pairs: typing NULL (any case) stores NULL, clearing a cell that was NULL keeps it NULL.
    Dirty highlighting and pending_changes() use the same comparison, so what is highlighted is
    exactly what will be saved.
    """

    def __init__(self, columns: Sequence[str], rows: Sequence[BaselineRow], column_types: Optional[Sequence[str]] = None, row_offset: int = 0):
        super().__init__()
        self._columns: List[str] = list(columns)
        self._column_types: List[str] = list(column_types or [""] * len(self._columns))
        self._original_rows: List[BaselineRow] = list(rows)
        self._rows: List[WorkingRow] = clone_rows(self._original_rows)
        self._row_offset = row_offset

    @classmethod
    def from_page(cls, page) -> "EditGridModel":
        return cls(page.columns, page.rows, page.column_types, page.page_index * page.page_size)

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:
        return len(self._rows)

    def columnCount(self, parent: QModelIndex = QModelIndex()) -> int:
        return len(self._columns)

    def data(self, index: QModelIndex, role: int = Qt.ItemDataRole.DisplayRole):
        if not index.isValid():
            return None
        r, c = index.row(), index.column()
        if r >= len(self._rows) or c >= len(self._columns):
            return None
        value, is_null = self._rows[r].cell(c)

        if role == Qt.ItemDataRole.DisplayRole:
            return "NULL" if is_null else value
        if role == Qt.ItemDataRole.EditRole:
            return "" if is_null else value
        if role == Qt.ItemDataRole.BackgroundRole:
            if self.is_dirty(r, c):
                return QBrush(_DIRTY_COLOR)
            if self._rows[r].is_new:
                return QBrush(_NEW_ROW_COLOR)
        if role == Qt.ItemDataRole.ForegroundRole and is_null:
            return QBrush(_NULL_COLOR)
        return None

    def headerData(self, section: int, orientation: Qt.Orientation, role: int = Qt.ItemDataRole.DisplayRole):
        if role != Qt.ItemDataRole.DisplayRole:
            return None
        if orientation == Qt.Orientation.Horizontal:
            if 0 <= section < len(self._columns):
                label = self._column_types[section] if section < len(self._column_types) else ""
                return f"{self._columns[section]}\n{label}" if label else self._columns[section]
            return None
        return self._row_offset + section + 1

    def flags(self, index: QModelIndex):
        if not index.isValid():
            return Qt.ItemFlag.NoItemFlags
        return Qt.ItemFlag.ItemIsSelectable | Qt.ItemFlag.ItemIsEnabled | Qt.ItemFlag.ItemIsEditable

    def setData(self, index: QModelIndex, value, role: int = Qt.ItemDataRole.EditRole) -> bool:
        if not index.isValid() or role != Qt.ItemDataRole.EditRole:
            return False
        r, c = index.row(), index.column()
        if r >= len(self._rows) or c >= len(self._columns):
            return False
        row = self._rows[r]
        baseline_null = False
        if not row.is_new and r < len(self._original_rows):
            baseline_null = self._original_rows[r].cell(c)[1]
        text, is_null = compute_cell_value("" if value is None else str(value), baseline_null)
        row.set_cell(c, text, is_null)
        self.dataChanged.emit(index, index, [
            Qt.ItemDataRole.DisplayRole,
            Qt.ItemDataRole.EditRole,
            Qt.ItemDataRole.BackgroundRole,
            Qt.ItemDataRole.ForegroundRole,
        ])
        return True

    # --- Editing utilities ---
    def is_dirty(self, row: int, column: int) -> bool:
        return is_cell_dirty(self._original_rows, self._rows, row, column)

    def dirty_count(self) -> int:
        return sum(
            1
            for r in range(len(self._rows))
            for c in range(len(self._columns))
            if self.is_dirty(r, c)
        )

    def has_pending_changes(self) -> bool:
        return bool(self.pending_changes())

    def pending_changes(self) -> List[ChangeOperation]:
        return compile_changes(self._original_rows, self._rows, self._columns)

    def add_row(self) -> int:
        """Append an empty new row and return its index."""
        row = len(self._rows)
        self.beginInsertRows(QModelIndex(), row, row)
        self._rows.append(WorkingRow.empty(len(self._columns)))
        self.endInsertRows()
        return row

    def revert_changes(self) -> None:
        """Drop every edit and new row."""
        self.beginResetModel()
        self._rows = clone_rows(self._original_rows)
        self.endResetModel()

    def load_page(self, page) -> None:
        """Replace baseline and working rows with a freshly loaded page."""
        self.beginResetModel()
        self._columns = list(page.columns)
        self._column_types = list(page.column_types)
        self._original_rows = list(page.rows)
        self._rows = clone_rows(self._original_rows)
        self._row_offset = page.page_index * page.page_size
        self.endResetModel()

    def get_columns(self) -> List[str]:
        return list(self._columns)

    def original_rows(self) -> List[BaselineRow]:
        return list(self._original_rows)

    def working_rows(self) -> List[WorkingRow]:
        return self._rows
