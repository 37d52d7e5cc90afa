import os
import json
import logging
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(os.environ.get("PGDATAEDITOR_HOME") or (Path(os.path.expanduser("~")) / ".pgdataeditor"))
SETTINGS_PATH = CONFIG_DIR / "settings.json"
DATABASE_URL_ENV = "PGDATAEDITOR_DATABASE_URL"

DEFAULTS: Dict[str, Any] = {
    # may also be the name of an environment variable holding the URL
    "database_url": "",
    "row_limit": 10000,
    "page_size": 200,
    "log_level": "INFO",
}


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def load_settings(path: Path | None = None) -> Dict[str, Any]:
    """Load settings from settings.json.

      - Missing or unreadable file: defaults.
      - database_url is resolved with os.environ.get(stored, stored), so the stored value may be
        an environment variable name or the literal URL. PGDATAEDITOR_DATABASE_URL wins over both.
      - row_limit/page_size that are not positive integers fall back to the defaults.
    """
    settings_path = Path(path) if path else SETTINGS_PATH
    data: Dict[str, Any] = {}
    if settings_path.exists():
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                data = loaded
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable settings file %s", settings_path, exc_info=True)

    stored_url = str(data.get("database_url") or DEFAULTS["database_url"])
    database_url = os.environ.get(stored_url, stored_url) if stored_url else ""
    database_url = os.environ.get(DATABASE_URL_ENV) or database_url

    return {
        "database_url": database_url,
        "row_limit": _positive_int(data.get("row_limit"), DEFAULTS["row_limit"]),
        "page_size": _positive_int(data.get("page_size"), DEFAULTS["page_size"]),
        "log_level": str(data.get("log_level") or DEFAULTS["log_level"]).upper(),
    }


def save_settings(settings: Dict[str, Any], path: Path | None = None) -> None:
    """Save settings to settings.json. Raises on write failures."""
    settings_path = Path(path) if path else SETTINGS_PATH
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "database_url": str(settings.get("database_url") or ""),
        "row_limit": _positive_int(settings.get("row_limit"), DEFAULTS["row_limit"]),
        "page_size": _positive_int(settings.get("page_size"), DEFAULTS["page_size"]),
        "log_level": str(settings.get("log_level") or DEFAULTS["log_level"]).upper(),
    }
    with open(settings_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
