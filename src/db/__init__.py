"""Database package: connection pool, query execution, page loading and write-back.

Modules are imported as ``db.<module>`` with the project ``src`` directory on sys.path.
"""

__all__ = [
    "connection",
    "dialects",
    "errors",
    "executor",
    "pool",
    "table_loader",
    "writeback",
]
