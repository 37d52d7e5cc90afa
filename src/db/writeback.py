from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import bindparam, insert as sa_insert, table as sa_table, column as sa_column, text, update as sa_update
from sqlalchemy.sql.elements import quoted_name

from db.errors import StaleRowError, TransactionError, normalize_error
from db.table_loader import TableRef
from models.changes import BaselineRow, ChangeOperation, InsertChange, UpdateChange, WorkingRow, compile_changes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveSummary:
    updated_count: int = 0
    inserted_count: int = 0
    skipped_count: int = 0


def _quoted(name: str) -> quoted_name:
    return quoted_name(name, True)


def build_statement(table: TableRef, columns: Sequence[str], operation: ChangeOperation, adapter, row_token: Optional[str] = None) -> Tuple[Any, Dict[str, Any]]:
    """Build the parameterized INSERT or UPDATE for one operation.

    Identifiers are always quoted and every value is a bound parameter; NULL cells bind None.
    """
    if not operation.cells:
        raise ValueError("Operation has no cell changes")
    names = []
    for cell in operation.cells:
        if cell.column_index < 0 or cell.column_index >= len(columns):
            raise ValueError(f"Column index {cell.column_index} out of range")
        names.append(columns[cell.column_index])

    schema = table.schema or adapter.default_schema
    tbl = sa_table(
        _quoted(table.name),
        *[sa_column(_quoted(n)) for n in dict.fromkeys(names)],
        schema=_quoted(schema) if schema else None,
    )

    values = {}
    params: Dict[str, Any] = {}
    for i, (name, cell) in enumerate(zip(names, operation.cells)):
        pname = f"v_{i}"
        values[tbl.c[name]] = bindparam(pname)
        params[pname] = None if cell.is_null else cell.value

    if isinstance(operation, InsertChange):
        return sa_insert(tbl).values(values), params

    if row_token is None:
        raise ValueError("UPDATE requires a row token")
    params["row_token"] = row_token
    stmt = sa_update(tbl).where(text(adapter.locator_predicate())).values(values)
    return stmt, params


async def _rollback(conn, table: TableRef) -> None:
    try:
        await conn.rollback()
    except Exception:
        logger.exception("Write-back on %s: rollback failed", table.qualified)
    else:
        logger.warning("Write-back on %s: rolled back", table.qualified)


async def apply_changes(pool, table: TableRef, columns: Sequence[str], row_tokens: Sequence[str], operations: Sequence[ChangeOperation]) -> SaveSummary:
    """Run every operation in order in a single transaction.

    UPDATEs whose row index has no tracked token are skipped. Any failure, including an UPDATE
    that no longer matches its row, rolls the whole batch back and raises TransactionError.
    """
    if not operations:
        return SaveSummary()

    # Validate and build everything before touching the database
    planned: List[Tuple[int, ChangeOperation, Any, Dict[str, Any]]] = []
    skipped = 0
    for index, op in enumerate(operations):
        token = None
        if isinstance(op, UpdateChange):
            if op.row_index < 0 or op.row_index >= len(row_tokens) or not row_tokens[op.row_index]:
                logger.warning("Skipping update of row %d in %s: row token is no longer tracked", op.row_index, table.qualified)
                skipped += 1
                continue
            token = row_tokens[op.row_index]
        stmt, params = build_statement(table, columns, op, pool.adapter, token)
        planned.append((index, op, stmt, params))

    updated = 0
    inserted = 0
    conn = await pool.checkout(autocommit=False)
    logger.debug("Write-back on %s: connection acquired", table.qualified)
    try:
        await conn.begin()
        logger.debug("Write-back on %s: transaction open, %d operation(s)", table.qualified, len(planned))
        for index, op, stmt, params in planned:
            try:
                res = await conn.execute(stmt, params)
            except Exception as e:
                info = normalize_error(e)
                raise TransactionError(f"Operation {index + 1} failed: {info.message}", index) from e
            if isinstance(op, UpdateChange):
                if res.affected_count == 0:
                    raise TransactionError(
                        f"Operation {index + 1} failed: row {op.row_index} was changed or removed by someone else",
                        index,
                    ) from StaleRowError(f"row token {params.get('row_token')} matched no row")
                updated += res.affected_count if res.affected_count is not None else 1
            else:
                inserted += res.affected_count if res.affected_count is not None else 1
        await conn.commit()
        logger.debug("Write-back on %s: committed (%d updated, %d inserted)", table.qualified, updated, inserted)
    except TransactionError:
        await _rollback(conn, table)
        raise
    except Exception as e:
        await _rollback(conn, table)
        raise TransactionError(f"Saving changes failed: {normalize_error(e).message}") from e
    except BaseException:
        await _rollback(conn, table)
        raise
    finally:
        await conn.release()
        logger.debug("Write-back on %s: connection released", table.qualified)

    return SaveSummary(updated_count=updated, inserted_count=inserted, skipped_count=skipped)


async def save_changes(pool, table: TableRef, columns: Sequence[str], row_tokens: Sequence[str], original_rows: Sequence[BaselineRow], working_rows: Sequence[WorkingRow]) -> SaveSummary:
    """Compile the grid edits and apply them. The caller must reload the page afterwards."""
    operations = compile_changes(original_rows, working_rows, columns)
    return await apply_changes(pool, table, columns, row_tokens, operations)
