from typing import Optional


class DBAdapter:
    """Base class for database adapters.

    Only engines with a physical row locator (used as the row token) support table editing.
    """

    db_type = "base"
    display_name = "Base"
    default_schema: Optional[str] = None
    row_locator = ""
    locator_type = ""
    # SQL returning the backend process id of the current connection (None if unsupported)
    backend_id_query: Optional[str] = None
    # SQL asking the server to cancel the backend named by :pid (None if unsupported)
    cancel_query: Optional[str] = None
    cancelled_sqlstate: Optional[str] = None

    @staticmethod
    def quote_identifier(name: str) -> str:
        return '"' + str(name).replace('"', '""') + '"'

    def qualified_name(self, schema: Optional[str], name: str) -> str:
        schema = schema or self.default_schema
        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(name)}"
        return self.quote_identifier(name)

    def locator_select(self) -> str:
        """Expression selecting the row locator as text."""
        return f"CAST({self.row_locator} AS TEXT)"

    def locator_predicate(self) -> str:
        """WHERE fragment matching one row by its token bound as :row_token."""
        return f"{self.row_locator} = CAST(:row_token AS {self.locator_type})"

    def page_query(self, schema: Optional[str], name: str, alias: str) -> str:
        """SELECT returning the locator under ``alias`` followed by every column.

        Expects :limit and :offset bind parameters.
        """
        return (
            f"SELECT {self.locator_select()} AS {self.quote_identifier(alias)}, * "
            f"FROM {self.qualified_name(schema, name)} "
            f"ORDER BY {self.row_locator} LIMIT :limit OFFSET :offset"
        )

    def column_types_query(self) -> Optional[str]:
        """SQL returning (column_name, type_label) rows; expects :schema and :table."""
        return None


class PostgreSQLAdapter(DBAdapter):
    """Adapter for PostgreSQL."""

    db_type = "postgresql"
    display_name = "PostgreSQL"
    default_schema = "public"
    row_locator = "ctid"
    locator_type = "tid"
    backend_id_query = "SELECT pg_backend_pid()"
    cancel_query = "SELECT pg_cancel_backend(:pid)"
    # query_canceled
    cancelled_sqlstate = "57014"

    def locator_select(self) -> str:
        return f"{self.row_locator}::text"

    def column_types_query(self) -> Optional[str]:
        return """
            SELECT a.attname AS column_name,
                   format_type(a.atttypid, a.atttypmod) AS type_label
            FROM pg_attribute a
            JOIN pg_class c ON c.oid = a.attrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = :schema
              AND c.relname = :table
              AND a.attnum > 0
              AND NOT a.attisdropped
            ORDER BY a.attnum
        """


class SQLiteAdapter(DBAdapter):
    """Adapter for SQLite files (rowid tables only)."""

    db_type = "sqlite"
    display_name = "SQLite"
    default_schema = "main"
    row_locator = "rowid"
    locator_type = "INTEGER"

    def column_types_query(self) -> Optional[str]:
        return """
            SELECT name AS column_name, type AS type_label
            FROM pragma_table_info(:table, :schema)
            ORDER BY cid
        """


_ADAPTERS = {
    "postgresql": PostgreSQLAdapter,
    "sqlite": SQLiteAdapter,
}


def adapter_for(dialect_name: str) -> DBAdapter:
    """Return the adapter for a SQLAlchemy dialect name (e.g. 'postgresql')."""
    key = (dialect_name or "").split("+", 1)[0].lower()
    if key == "postgres":
        key = "postgresql"
    try:
        return _ADAPTERS[key]()
    except KeyError:
        raise ValueError(f"Unsupported database type: {dialect_name}") from None
