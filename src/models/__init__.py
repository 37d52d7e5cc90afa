"""Grid row types, the change compiler and the Qt grid model."""

__all__ = [
    "changes",
    "table_model",
]
