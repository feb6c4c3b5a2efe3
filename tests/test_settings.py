import pytest

from location_engine.settings import BASE_URL_ENV, load_settings


def test_load_settings_from_toml(tmp_path, monkeypatch):
    monkeypatch.delenv(BASE_URL_ENV, raising=False)
    path = tmp_path / "settings.toml"
    path.write_text(
        "[backend]\nbase_url = \"http://api.internal/api\"\nsearch_timeout_seconds = 5\n\n"
        "[engine]\ndebounce_ms = 150\nsearch_country = \"\"\n\n[cache]\nttl_seconds = 60\n",
        encoding="utf-8",
    )
    settings = load_settings(path)
    assert settings.backend.base_url == "http://api.internal/api"
    assert settings.backend.search_timeout_seconds == 5
    assert settings.backend.listing_timeout_seconds == 15
    assert settings.engine.debounce_ms == 150
    assert settings.engine.search_country is None
    assert settings.engine.default_country == "IN"
    assert settings.cache.ttl_seconds == 60
    assert settings.backend.country_names == {"IN": "India"}


def test_environment_overrides_base_url(tmp_path, monkeypatch):
    monkeypatch.setenv(BASE_URL_ENV, "https://locations.example.org/api")
    settings = load_settings(tmp_path / "missing.toml")
    assert settings.backend.base_url == "https://locations.example.org/api"
    assert settings.engine.min_query_length == 2


def test_invalid_settings_raise_value_error(tmp_path, monkeypatch):
    monkeypatch.delenv(BASE_URL_ENV, raising=False)
    path = tmp_path / "settings.toml"
    path.write_text("[engine]\ndebounce_ms = -1\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)
