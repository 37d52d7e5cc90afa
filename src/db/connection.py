from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
import logging

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from db.dialects import adapter_for
from db.pool import ConnectionPool

logger = logging.getLogger(__name__)

# Async drivers used when a URL names only the database type
_ASYNC_DRIVERS = {
    "postgresql": "postgresql+psycopg",
    "postgres": "postgresql+psycopg",
    "sqlite": "sqlite+aiosqlite",
}


@dataclass
class ConnectionProfile:
    """Plain connection parameters for a server database (or a SQLite file path)."""

    conn_type: str
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    schema: Optional[str] = None


def build_url(profile: ConnectionProfile) -> URL:
    """Build an async SQLAlchemy URL from a profile."""
    conn_type = (profile.conn_type or "").lower()
    if conn_type not in _ASYNC_DRIVERS:
        raise ValueError(f"Unsupported connection type: {profile.conn_type}")
    if conn_type == "sqlite":
        return URL.create(_ASYNC_DRIVERS[conn_type], database=profile.database)
    try:
        return URL.create(
            drivername=_ASYNC_DRIVERS[conn_type],
            username=profile.user or None,
            password=profile.password or None,
            host=profile.host or None,
            port=int(profile.port) if profile.port else None,
            database=profile.database or None,
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid connection parameters: {e}") from e


def to_async_url(url: Union[str, URL]) -> URL:
    """Swap a sync or driverless URL (postgresql://, sqlite:///) for its async driver."""
    url_obj = make_url(url)
    backend = url_obj.get_backend_name()
    if url_obj.get_driver_name() in ("psycopg", "aiosqlite", "asyncpg"):
        return url_obj
    if backend not in _ASYNC_DRIVERS:
        raise ValueError(f"Unsupported database type: {backend}")
    return url_obj.set(drivername=_ASYNC_DRIVERS[backend])


def _log_engine_url(engine: AsyncEngine) -> None:
    """Log the engine's connection URL with password hidden for diagnostics."""
    url_obj = getattr(engine, "url", None)
    if url_obj is None:
        safe = "<engine-without-url>"
    else:
        safe = url_obj.render_as_string(hide_password=True)
    logger.debug("Engine created: %s", safe)


def open_pool(url: Union[str, URL, ConnectionProfile], schema: Optional[str] = None, **engine_kwargs: Any) -> ConnectionPool:
    """Create an engine and wrap it in a ConnectionPool.

    No connection is made here; the first checkout validates the parameters.
    A schema (argument or profile field) becomes the PostgreSQL search_path.
    """
    if isinstance(url, ConnectionProfile):
        schema = schema or url.schema
        url_obj = build_url(url)
    else:
        url_obj = to_async_url(url)

    adapter = adapter_for(url_obj.get_backend_name())
    if schema and adapter.db_type == "postgresql":
        connect_args: Dict[str, Any] = dict(engine_kwargs.pop("connect_args", {}) or {})
        connect_args.setdefault("options", f"-c search_path={schema}")
        engine_kwargs["connect_args"] = connect_args

    engine = create_async_engine(url_obj, **engine_kwargs)
    _log_engine_url(engine)
    return ConnectionPool(engine, adapter)
