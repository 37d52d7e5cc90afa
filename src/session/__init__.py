"""Host-facing sessions: table editor, query results and the registry holding them."""

__all__ = [
    "messages",
    "query_session",
    "registry",
    "table_editor",
]
