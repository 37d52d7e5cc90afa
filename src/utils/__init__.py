__all__ = [
    "settings",
    "sql_text",
]
