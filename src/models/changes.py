"""Grid rows and the diff between edited rows and their loaded baseline.

Cells are handled as (text, is_null) pairs so NULL is never confused with an empty string.
The same comparison (null flag first, then text) decides both the dirty markers shown in the
grid and the cells that end up in the compiled INSERT/UPDATE operations.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    # display only; never used to build SQL
    type_label: str = ""


@dataclass(frozen=True)
class BaselineRow:
    """Last-loaded cell values of one row."""

    values: Tuple[str, ...]
    nulls: Tuple[bool, ...]

    def cell(self, column: int) -> Tuple[str, bool]:
        value = self.values[column] if column < len(self.values) else ""
        is_null = self.nulls[column] if column < len(self.nulls) else False
        return value, bool(is_null)


@dataclass
class WorkingRow:
    """Editable copy of a baseline row, or a new row not yet in the table."""

    values: List[str]
    nulls: List[bool]
    is_new: bool = False

    @classmethod
    def from_baseline(cls, row: BaselineRow) -> "WorkingRow":
        return cls(list(row.values), list(row.nulls), False)

    @classmethod
    def empty(cls, column_count: int) -> "WorkingRow":
        return cls([""] * column_count, [False] * column_count, True)

    def cell(self, column: int) -> Tuple[str, bool]:
        value = self.values[column] if column < len(self.values) else ""
        is_null = self.nulls[column] if column < len(self.nulls) else False
        return value, bool(is_null)

    def set_cell(self, column: int, value: str, is_null: bool) -> None:
        self.values[column] = value
        self.nulls[column] = is_null


@dataclass(frozen=True)
class CellChange:
    column_index: int
    value: str
    is_null: bool = False


@dataclass(frozen=True)
class UpdateChange:
    row_index: int
    cells: Tuple[CellChange, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class InsertChange:
    cells: Tuple[CellChange, ...] = field(default_factory=tuple)


ChangeOperation = Union[UpdateChange, InsertChange]


def clone_rows(rows: Sequence[BaselineRow]) -> List[WorkingRow]:
    return [WorkingRow.from_baseline(r) for r in rows]


def cells_differ(value: str, is_null: bool, original_value: str, original_null: bool) -> bool:
    if is_null != original_null:
        return True
    return not is_null and value != original_value


def _is_set(value: str, is_null: bool) -> bool:
    # new-row cells left blank are omitted from the INSERT so column defaults apply
    return is_null or value != ""


def is_cell_dirty(original_rows: Sequence[BaselineRow], working_rows: Sequence[WorkingRow], row: int, column: int) -> bool:
    """Whether a grid cell differs from what was loaded."""
    if row < 0 or row >= len(working_rows):
        return False
    working = working_rows[row]
    value, is_null = working.cell(column)
    if working.is_new:
        return _is_set(value, is_null)
    if row >= len(original_rows):
        # rows without a baseline are never written
        return False
    original_value, original_null = original_rows[row].cell(column)
    return cells_differ(value, is_null, original_value, original_null)


def compute_cell_value(raw: str, baseline_null: bool) -> Tuple[str, bool]:
    """Interpret typed text: the word NULL, or a blank cell that was NULL, means NULL."""
    trimmed = (raw or "").strip()
    is_null = trimmed.lower() == "null" or (trimmed == "" and baseline_null)
    return raw or "", is_null


def compile_changes(original_rows: Sequence[BaselineRow], working_rows: Sequence[WorkingRow], columns: Sequence[str]) -> List[ChangeOperation]:
    """Diff working rows against the baseline into ordered INSERT/UPDATE operations.

    Rows with nothing to write produce no operation.
    """
    changes: List[ChangeOperation] = []
    for row_index, row in enumerate(working_rows):
        if row.is_new:
            cells = []
            for column_index in range(len(columns)):
                value, is_null = row.cell(column_index)
                if _is_set(value, is_null):
                    cells.append(CellChange(column_index, value, is_null))
            if cells:
                changes.append(InsertChange(tuple(cells)))
            continue

        original: Optional[BaselineRow] = original_rows[row_index] if row_index < len(original_rows) else None
        if original is None:
            continue
        cells = []
        for column_index in range(len(columns)):
            value, is_null = row.cell(column_index)
            original_value, original_null = original.cell(column_index)
            if cells_differ(value, is_null, original_value, original_null):
                cells.append(CellChange(column_index, value, is_null))
        if cells:
            changes.append(UpdateChange(row_index, tuple(cells)))
    return changes
