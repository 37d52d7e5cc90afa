import asyncio

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from db.connection import open_pool
from db.dialects import PostgreSQLAdapter, SQLiteAdapter
from db.errors import StaleRowError, TransactionError
from db.pool import StatementResult
from db.table_loader import TableRef, load_page
from db.writeback import apply_changes, build_statement, save_changes
from fakes import FakeDriverError, FakePool, seed_people
from models.changes import CellChange, InsertChange, UpdateChange, WorkingRow, clone_rows

COLUMNS = ["id", "name", "note"]


def _sql(stmt, dialect):
    return str(stmt.compile(dialect=dialect))


def test_update_statement_is_parameterized_and_quoted():
    op = UpdateChange(0, (CellChange(1, "Ada Lovelace"), CellChange(2, "", True)))

    stmt, params = build_statement(TableRef("people"), COLUMNS, op, PostgreSQLAdapter(), "(0,1)")
    sql = _sql(stmt, postgresql.dialect())

    assert sql.startswith('UPDATE "public"."people" SET "name"=')
    assert '"note"=' in sql
    assert "WHERE ctid = CAST(" in sql and "AS tid)" in sql
    assert "Ada Lovelace" not in sql
    assert params == {"v_0": "Ada Lovelace", "v_1": None, "row_token": "(0,1)"}


def test_insert_names_only_changed_columns():
    op = InsertChange((CellChange(1, "Grace"),))

    stmt, params = build_statement(TableRef("people", "crm"), COLUMNS, op, PostgreSQLAdapter())
    sql = _sql(stmt, postgresql.dialect())

    assert sql.startswith('INSERT INTO "crm"."people" ("name") VALUES (')
    assert params == {"v_0": "Grace"}


def test_identifiers_with_quotes_and_case_are_escaped():
    op = InsertChange((CellChange(0, "x"),))

    stmt, _ = build_statement(TableRef('Odd"Table'), ['Mixed Case'], op, SQLiteAdapter())
    sql = _sql(stmt, sqlite.dialect())

    assert '"main"."Odd""Table"' in sql
    assert '("Mixed Case")' in sql


def test_build_statement_rejects_bad_operations():
    with pytest.raises(ValueError):
        build_statement(TableRef("people"), COLUMNS, InsertChange(()), PostgreSQLAdapter())
    with pytest.raises(ValueError):
        build_statement(TableRef("people"), COLUMNS, InsertChange((CellChange(7, "x"),)), PostgreSQLAdapter())
    with pytest.raises(ValueError):
        build_statement(TableRef("people"), COLUMNS, UpdateChange(0, (CellChange(1, "x"),)), PostgreSQLAdapter())


def test_no_operations_does_not_touch_the_database():
    pool = FakePool()

    summary = asyncio.run(apply_changes(pool, TableRef("people"), COLUMNS, [], []))

    assert (summary.updated_count, summary.inserted_count) == (0, 0)
    assert pool.connections == []


def test_operations_run_in_order_inside_one_transaction():
    pool = FakePool(handler=lambda s, p: StatementResult(affected_count=1))
    ops = [
        InsertChange((CellChange(1, "Grace"),)),
        UpdateChange(1, (CellChange(1, "Linus T."),)),
        UpdateChange(0, (CellChange(1, "Ada L."),)),
    ]

    summary = asyncio.run(apply_changes(pool, TableRef("people"), COLUMNS, ["(0,1)", "(0,2)"], ops))

    kinds = [entry[0] for entry in pool.log]
    assert kinds == ["begin", "execute", "execute", "execute", "commit", "release"]
    assert pool.log[1][1].startswith("INSERT")
    assert pool.log[2][2]["row_token"] == "(0,2)"
    assert pool.log[3][2]["row_token"] == "(0,1)"
    assert (summary.updated_count, summary.inserted_count) == (2, 1)


def test_failure_rolls_back_and_releases():
    def handler(statement, params):
        if params.get("row_token") == "(0,2)":
            raise FakeDriverError('null value in column "name" violates not-null constraint', sqlstate="23502")
        return StatementResult(affected_count=1)

    pool = FakePool(handler=handler)
    ops = [UpdateChange(0, (CellChange(1, "a"),)), UpdateChange(1, (CellChange(1, "", True),))]

    with pytest.raises(TransactionError) as exc_info:
        asyncio.run(apply_changes(pool, TableRef("people"), COLUMNS, ["(0,1)", "(0,2)"], ops))

    assert exc_info.value.operation_index == 1
    assert "not-null" in str(exc_info.value)
    kinds = [entry[0] for entry in pool.log]
    assert kinds[-2:] == ["rollback", "release"]
    assert "commit" not in kinds


def test_unknown_row_token_is_skipped():
    pool = FakePool(handler=lambda s, p: StatementResult(affected_count=1))
    ops = [UpdateChange(5, (CellChange(1, "ghost"),)), UpdateChange(0, (CellChange(1, "Ada"),))]

    summary = asyncio.run(apply_changes(pool, TableRef("people"), COLUMNS, ["(0,1)"], ops))

    assert summary.updated_count == 1
    assert summary.skipped_count == 1
    assert len([e for e in pool.log if e[0] == "execute"]) == 1


def test_update_matching_no_row_is_a_conflict():
    pool = FakePool(handler=lambda s, p: StatementResult(affected_count=0))
    ops = [UpdateChange(0, (CellChange(1, "Ada"),))]

    with pytest.raises(TransactionError) as exc_info:
        asyncio.run(apply_changes(pool, TableRef("people"), COLUMNS, ["(0,1)"], ops))

    assert isinstance(exc_info.value.__cause__, StaleRowError)
    assert ("rollback",) in pool.log


def _with_pool(url, body):
    async def scenario():
        pool = open_pool(url)
        try:
            return await body(pool)
        finally:
            await pool.dispose()

    return asyncio.run(scenario())


def test_edit_then_reload_shows_new_baseline(sqlite_url):
    async def body(pool):
        await seed_people(pool, ["Ada", "Linus"])
        table = TableRef("people")
        page = await load_page(pool, table, 10, 0)
        working = clone_rows(page.rows)
        working[0].set_cell(1, "Ada Lovelace", False)
        summary = await save_changes(pool, table, page.columns, page.row_tokens, page.rows, working)
        return summary, await load_page(pool, table, 10, 0)

    summary, reloaded = _with_pool(sqlite_url, body)

    assert (summary.updated_count, summary.inserted_count) == (1, 0)
    assert [r.values[1] for r in reloaded.rows] == ["Ada Lovelace", "Linus"]


def test_new_row_inserts_only_set_columns(sqlite_url):
    async def body(pool):
        await seed_people(pool, ["Ada"])
        table = TableRef("people")
        page = await load_page(pool, table, 10, 0)
        working = clone_rows(page.rows)
        new_row = WorkingRow.empty(len(page.columns))
        new_row.set_cell(1, "Grace", False)
        working.append(new_row)
        summary = await save_changes(pool, table, page.columns, page.row_tokens, page.rows, working)
        return summary, await load_page(pool, table, 10, 0)

    summary, reloaded = _with_pool(sqlite_url, body)

    assert summary.inserted_count == 1
    assert reloaded.rows[1].values == ("2", "Grace", "")
    # id came from the table, note kept its default NULL
    assert reloaded.rows[1].nulls == (False, False, True)


def test_failed_batch_leaves_table_unchanged(sqlite_url):
    async def body(pool):
        await seed_people(pool, ["Ada", "Linus", "Grace"])
        table = TableRef("people")
        before = await load_page(pool, table, 10, 0)
        ops = [
            UpdateChange(0, (CellChange(1, "changed"),)),
            # name is NOT NULL
            UpdateChange(1, (CellChange(1, "", True),)),
            InsertChange((CellChange(1, "Barbara"),)),
        ]
        with pytest.raises(TransactionError):
            await apply_changes(pool, table, before.columns, before.row_tokens, ops)
        return before, await load_page(pool, table, 10, 0)

    before, after = _with_pool(sqlite_url, body)

    assert after.rows == before.rows


def test_row_deleted_elsewhere_is_reported(sqlite_url):
    async def body(pool):
        await seed_people(pool, ["Ada", "Linus"])
        table = TableRef("people")
        page = await load_page(pool, table, 10, 0)
        await pool.execute("DELETE FROM people WHERE name = 'Ada'")
        ops = [UpdateChange(1, (CellChange(1, "Linus T."),)), UpdateChange(0, (CellChange(1, "Ada L."),))]
        with pytest.raises(TransactionError):
            await apply_changes(pool, table, page.columns, page.row_tokens, ops)
        return await load_page(pool, table, 10, 0)

    after = _with_pool(sqlite_url, body)

    assert [r.values[1] for r in after.rows] == ["Linus"]
