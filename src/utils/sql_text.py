from typing import Optional, Tuple

import sqlparse


def _strip_statement(sql: str) -> Optional[str]:
    sql = sql.strip()
    while sql.endswith(";"):
        sql = sql[:-1].strip()
    return sql or None


def statement_spans(text: str) -> list:
    """Return (start, end) offsets of each statement in ``text``.

    sqlparse keeps every character when splitting, so the statements concatenate back to the
    original text and offsets can be accumulated. Semicolons inside strings or comments do not
    split statements.
    """
    spans = []
    offset = 0
    for stmt in sqlparse.parse(text):
        raw = str(stmt)
        spans.append((offset, offset + len(raw)))
        offset += len(raw)
    return spans


def get_sql_to_run(text: str, cursor: int, selection: Optional[Tuple[int, int]] = None) -> Optional[str]:
    """Pick the SQL to execute from an editor buffer.

    A non-empty selection wins (trimmed as-is). Otherwise the statement containing the cursor
    offset is returned without its trailing semicolon. Returns None when there is nothing to run.
    """
    if selection is not None:
        start, end = sorted(selection)
        if start != end:
            selected = text[start:end].strip()
            return selected or None

    if not text or not text.strip():
        return None

    cursor = max(0, min(cursor, len(text)))
    spans = statement_spans(text)
    for start, end in spans:
        if start <= cursor < end:
            return _strip_statement(text[start:end])
    if spans:
        start, end = spans[-1]
        return _strip_statement(text[start:end])
    return None
