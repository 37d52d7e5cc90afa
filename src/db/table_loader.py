from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional, Tuple
import datetime
import json
import logging

from sqlalchemy import text

from db.errors import CANCELLED_MESSAGE, CancellationError, ExecutionError, QueryErrorInfo, normalize_error
from models.changes import BaselineRow, ColumnDescriptor

logger = logging.getLogger(__name__)

ROW_TOKEN_ALIAS = "__datagrid_row_token"


@dataclass(frozen=True)
class TableRef:
    name: str
    schema: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "TableRef":
        """Split 'schema.table' (or a bare 'table')."""
        if "." in value:
            schema, name = value.split(".", 1)
            return cls(name=name, schema=schema)
        return cls(name=value)

    @property
    def qualified(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


@dataclass
class TablePage:
    table: TableRef
    columns: List[str]
    column_types: List[str]
    rows: List[BaselineRow]
    row_tokens: List[str]
    page_size: int
    page_index: int
    has_next_page: bool = False

    @property
    def descriptors(self) -> List[ColumnDescriptor]:
        return [ColumnDescriptor(c, t) for c, t in zip(self.columns, self.column_types)]


def _interval_text(value: datetime.timedelta) -> str:
    # PostgreSQL interval input syntax
    return f"{value.days} days {value.seconds} seconds {value.microseconds} microseconds"


def _json_default(value: Any):
    if isinstance(value, datetime.timedelta):
        return _interval_text(value)
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    return str(value)


def to_cell(value: Any) -> Tuple[str, bool]:
    """Serialize a database value to (text, is_null) for editing."""
    if value is None:
        return "", True
    if isinstance(value, bool):
        return ("true" if value else "false"), False
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat(), False
    if isinstance(value, datetime.timedelta):
        return _interval_text(value), False
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex(), False
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=_json_default, ensure_ascii=False), False
    return str(value), False


async def load_column_types(pool, table: TableRef, columns: List[str]) -> List[str]:
    """Best-effort display type for each column; empty labels when unavailable."""
    query = pool.adapter.column_types_query()
    if not query or not columns:
        return [""] * len(columns)
    schema = table.schema or pool.adapter.default_schema
    try:
        res = await pool.execute(text(query), {"schema": schema, "table": table.name})
    except Exception:
        logger.warning("Could not load column types for %s", table.qualified, exc_info=True)
        return [""] * len(columns)
    labels = {}
    for row in res.rows:
        name = row.get("column_name")
        if name is not None and name not in labels:
            labels[name] = str(row.get("type_label") or "")
    return [labels.get(c, "") for c in columns]


async def load_page(pool, table: TableRef, page_size: int, page_index: int) -> TablePage:
    """Fetch page ``page_index`` (zero-based) of ``table``.

    One extra row is requested to learn whether another page follows, so no COUNT(*) is run.
    Raises ExecutionError when the query fails and DatabaseConnectionError when no connection
    could be obtained.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    if page_index < 0:
        raise ValueError("page_index must not be negative")

    adapter = pool.adapter
    sql = adapter.page_query(table.schema, table.name, ROW_TOKEN_ALIAS)
    params = {"limit": page_size + 1, "offset": page_index * page_size}

    conn = await pool.checkout(autocommit=True)
    try:
        res = await conn.execute(text(sql), params)
    except Exception as e:
        info = normalize_error(e)
        if adapter.cancelled_sqlstate and info.code == adapter.cancelled_sqlstate:
            logger.info("Loading %s page %d was cancelled", table.qualified, page_index)
            raise CancellationError(QueryErrorInfo(CANCELLED_MESSAGE, info.code, info.detail, info.position)) from e
        logger.warning("Loading %s page %d failed: %s", table.qualified, page_index, info.message)
        raise ExecutionError(info) from e
    finally:
        await conn.release()

    fetched = res.rows
    has_next_page = len(fetched) > page_size
    if has_next_page:
        fetched = fetched[:page_size]

    columns = [c for c in res.columns if c != ROW_TOKEN_ALIAS]
    rows: List[BaselineRow] = []
    tokens: List[str] = []
    for record in fetched:
        cells = [to_cell(record.get(c)) for c in columns]
        rows.append(BaselineRow(tuple(v for v, _ in cells), tuple(n for _, n in cells)))
        tokens.append(str(record.get(ROW_TOKEN_ALIAS)))

    column_types = await load_column_types(pool, table, columns)
    logger.debug("Loaded %s page %d: %d row(s), has_next_page=%s", table.qualified, page_index, len(rows), has_next_page)
    return TablePage(
        table=table,
        columns=columns,
        column_types=column_types,
        rows=rows,
        row_tokens=tokens,
        page_size=page_size,
        page_index=page_index,
        has_next_page=has_next_page,
    )
