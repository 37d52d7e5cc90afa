from dataclasses import dataclass, field
from typing import Any, List, Mapping, Tuple, Union

from db.errors import UnknownMessageError
from models.changes import CellChange, ChangeOperation, InsertChange, UpdateChange

PAGE_DIRECTIONS = ("previous", "next")


@dataclass(frozen=True)
class SaveMessage:
    changes: Tuple[ChangeOperation, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RefreshMessage:
    pass


@dataclass(frozen=True)
class PageMessage:
    direction: str


@dataclass(frozen=True)
class CancelMessage:
    pass


Message = Union[SaveMessage, RefreshMessage, PageMessage, CancelMessage]


def _require_int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    # bool is an int subclass; reject it explicitly
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise UnknownMessageError(f"'{key}' must be a non-negative integer")
    return value


def _parse_cells(items: Any) -> Tuple[CellChange, ...]:
    if not isinstance(items, list):
        raise UnknownMessageError("cell changes must be a list")
    cells: List[CellChange] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise UnknownMessageError("cell change must be an object")
        value = item.get("value", "")
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise UnknownMessageError("'value' must be a string")
        cells.append(CellChange(_require_int(item, "columnIndex"), value, bool(item.get("isNull", False))))
    return tuple(cells)


def parse_change(data: Any) -> ChangeOperation:
    if not isinstance(data, Mapping):
        raise UnknownMessageError("change must be an object")
    kind = data.get("kind")
    if kind == "update":
        return UpdateChange(_require_int(data, "rowIndex"), _parse_cells(data.get("updates")))
    if kind == "insert":
        return InsertChange(_parse_cells(data.get("values")))
    raise UnknownMessageError(f"Unknown change kind: {kind!r}")


def parse_message(payload: Any) -> Message:
    """Parse a {"command": ...} payload into a message object."""
    if not isinstance(payload, Mapping):
        raise UnknownMessageError("message must be an object")
    command = payload.get("command")
    if command == "save":
        changes = payload.get("changes", [])
        if not isinstance(changes, list):
            raise UnknownMessageError("'changes' must be a list")
        # empty diffs never reach the write-back runner
        parsed = [parse_change(c) for c in changes]
        return SaveMessage(tuple(c for c in parsed if c.cells))
    if command == "refresh":
        return RefreshMessage()
    if command == "page":
        direction = payload.get("direction")
        if direction not in PAGE_DIRECTIONS:
            raise UnknownMessageError(f"Unknown page direction: {direction!r}")
        return PageMessage(direction)
    if command == "cancel":
        return CancelMessage()
    raise UnknownMessageError(f"Unknown command: {command!r}")
