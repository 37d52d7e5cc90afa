import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from db.connection import open_pool
from db.executor import run_query
from utils.settings import CONFIG_DIR, load_settings
from utils.sql_text import get_sql_to_run

_LOG_FORMAT = '%(asctime)s %(levelname)-8s %(name)-20s: %(message)s'


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Set up console logging plus a rotating file under the config folder's logs directory."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=_LOG_FORMAT,
        force=True  # Override any existing basicConfig
    )

    log_dir = Path(log_dir) if log_dir else CONFIG_DIR / 'logs'
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / 'pgdataeditor.log'
        handler = RotatingFileHandler(str(log_file), maxBytes=5 * 1024 * 1024, backupCount=3, encoding='utf-8')
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    except OSError:
        # console logging still works without the file
        logging.getLogger(__name__).exception('Failed to configure file logger')


def _format_value(value) -> str:
    return "NULL" if value is None else str(value)


async def _run(url: str, sql: str, row_limit: int) -> int:
    pool = open_pool(url)
    try:
        result = await run_query(pool, sql, row_limit)
    finally:
        await pool.dispose()

    if result.error:
        print(f"ERROR: {result.error.message}", file=sys.stderr)
        if result.error.detail:
            print(f"DETAIL: {result.error.detail}", file=sys.stderr)
        return 1
    if result.columns:
        print("\t".join(result.columns))
        for row in result.rows:
            print("\t".join(_format_value(row.get(c)) for c in result.columns))
    shown = len(result.rows)
    summary = f"{result.row_count if result.row_count is not None else shown} row(s) in {result.elapsed * 1000:.0f} ms"
    if result.truncated:
        summary += f" (showing first {shown})"
    print(summary)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run a SQL statement against the configured database.")
    parser.add_argument("sql", nargs="?", help="statement to run; read from stdin when omitted")
    parser.add_argument("--url", help="database URL (defaults to the configured one)")
    parser.add_argument("--row-limit", type=int, help="maximum rows to display")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings["log_level"])

    url = args.url or settings["database_url"]
    if not url:
        print("No database URL configured.", file=sys.stderr)
        return 2
    text = args.sql if args.sql is not None else sys.stdin.read()
    sql = get_sql_to_run(text, 0)
    if not sql:
        print("Nothing to run.", file=sys.stderr)
        return 2
    return asyncio.run(_run(url, sql, args.row_limit or settings["row_limit"]))


if __name__ == "__main__":
    sys.exit(main())
