import json

import pytest

from utils.settings import DATABASE_URL_ENV, DEFAULTS, load_settings, save_settings


@pytest.fixture(autouse=True)
def _no_url_override(monkeypatch):
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "settings.json")
    assert settings == DEFAULTS


def test_round_trip(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    save_settings({"database_url": "postgresql://me@db/crm", "row_limit": 500, "page_size": 50, "log_level": "debug"}, path)

    settings = load_settings(path)

    assert settings["database_url"] == "postgresql://me@db/crm"
    assert settings["row_limit"] == 500
    assert settings["page_size"] == 50
    assert settings["log_level"] == "DEBUG"


def test_database_url_may_name_an_environment_variable(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"database_url": "CRM_DB_URL"}), encoding="utf-8")
    monkeypatch.setenv("CRM_DB_URL", "postgresql://from-env/crm")

    assert load_settings(path)["database_url"] == "postgresql://from-env/crm"


def test_override_variable_wins(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"database_url": "postgresql://stored/crm"}), encoding="utf-8")
    monkeypatch.setenv(DATABASE_URL_ENV, "postgresql://override/crm")

    assert load_settings(path)["database_url"] == "postgresql://override/crm"


def test_bad_values_fall_back(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"row_limit": -3, "page_size": "lots"}), encoding="utf-8")

    settings = load_settings(path)

    assert settings["row_limit"] == DEFAULTS["row_limit"]
    assert settings["page_size"] == DEFAULTS["page_size"]


def test_corrupt_file_is_ignored(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert load_settings(path) == DEFAULTS
