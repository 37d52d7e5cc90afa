"""Test doubles for the connection pool plus helpers to seed SQLite test databases."""
import asyncio
import inspect

from db.dialects import PostgreSQLAdapter
from db.pool import StatementResult


class FakeDriverError(Exception):
    """Looks like a psycopg error: carries sqlstate and optional detail/position."""

    def __init__(self, message, sqlstate=None, detail=None, position=None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.detail = detail
        self.position = position


class FakeConnection:
    def __init__(self, pool, backend_id=None):
        self.pool = pool
        self.backend_id = backend_id
        self.release_count = 0

    async def execute(self, statement, params=None):
        self.pool.log.append(("execute", str(statement), params))
        outcome = self.pool.handler(statement, params)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    async def begin(self):
        self.pool.log.append(("begin",))

    async def commit(self):
        self.pool.log.append(("commit",))

    async def rollback(self):
        self.pool.log.append(("rollback",))

    async def release(self):
        self.release_count += 1
        self.pool.log.append(("release",))


class FakePool:
    def __init__(self, handler=None, backend_id=None, adapter=None, checkout_error=None, cancel_error=None):
        self.handler = handler or (lambda statement, params: StatementResult())
        self.backend_id = backend_id
        self.adapter = adapter or PostgreSQLAdapter()
        self.checkout_error = checkout_error
        self.cancel_error = cancel_error
        self.connections = []
        self.out_of_band = []
        self.log = []

    async def checkout(self, autocommit=True, track_backend=False):
        await asyncio.sleep(0)
        if self.checkout_error is not None:
            raise self.checkout_error
        conn = FakeConnection(self, self.backend_id)
        self.connections.append(conn)
        return conn

    async def execute(self, statement, params=None):
        self.out_of_band.append((str(statement), params))
        if self.cancel_error is not None:
            raise self.cancel_error
        return StatementResult()


def rows_result(columns, rows, affected=None):
    return StatementResult(columns=list(columns), rows=[dict(zip(columns, r)) for r in rows], affected_count=affected)


PEOPLE_DDL = "CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT NOT NULL, note TEXT)"


async def seed_people(pool, names, note=None):
    """Create the people table and insert one row per name, in order."""
    await pool.execute(PEOPLE_DDL)
    for name in names:
        await pool.execute("INSERT INTO people (name, note) VALUES (:name, :note)", {"name": name, "note": note})
