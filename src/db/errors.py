from dataclasses import dataclass
from typing import Any, Optional

CANCELLED_MESSAGE = "Query cancelled."
UNKNOWN_ERROR_MESSAGE = "Unknown error"


@dataclass(frozen=True)
class QueryErrorInfo:
    """Structured view of a database failure suitable for display."""

    message: str
    code: Optional[str] = None
    detail: Optional[str] = None
    position: Optional[str] = None


class DataEditorError(Exception):
    """Base class for data layer errors."""


class DatabaseConnectionError(DataEditorError):
    """A connection could not be checked out (network, credentials, pool closed)."""


class ExecutionError(DataEditorError):
    """The database rejected or failed a statement."""

    def __init__(self, info: QueryErrorInfo):
        super().__init__(info.message)
        self.info = info


class CancellationError(ExecutionError):
    """A statement stopped because cancellation was requested."""


class StaleRowError(DataEditorError):
    """An UPDATE targeted a row token that no longer matches any row."""


class TransactionError(DataEditorError):
    """A write-back batch failed and was rolled back as a whole."""

    def __init__(self, message: str, operation_index: Optional[int] = None):
        super().__init__(message)
        self.operation_index = operation_index


class UnknownMessageError(ValueError):
    """A host message had an unknown command or malformed fields."""


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def normalize_error(error: BaseException) -> QueryErrorInfo:
    """Turn any exception into a QueryErrorInfo.

    SQLAlchemy wraps DBAPI errors; the original driver exception (psycopg, sqlite3, ...) is
    available as ``orig`` and carries the SQLSTATE and diagnostics.
    """
    if isinstance(error, ExecutionError):
        return error.info

    orig = getattr(error, "orig", None) or error

    code = None
    for attr in ("sqlstate", "pgcode", "code"):
        code = _text_or_none(getattr(orig, attr, None))
        if code:
            break

    message = None
    detail = None
    position = None
    diag = getattr(orig, "diag", None)
    if diag is not None:
        message = _text_or_none(getattr(diag, "message_primary", None))
        detail = _text_or_none(getattr(diag, "message_detail", None))
        position = _text_or_none(getattr(diag, "statement_position", None))

    detail = detail or _text_or_none(getattr(orig, "detail", None))
    position = position or _text_or_none(getattr(orig, "position", None))
    if not message:
        message = _text_or_none(getattr(orig, "message", None)) or _text_or_none(str(orig))

    return QueryErrorInfo(
        message=message or UNKNOWN_ERROR_MESSAGE,
        code=code,
        detail=detail,
        position=position,
    )
