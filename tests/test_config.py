import pytest

from canvas_backend import config
from canvas_backend.config import DEFAULT_DATABASE_URL, load_cors_origins, load_database_url, load_settings


def test_postgres_url_switches_to_asyncpg(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://canvas:pw@localhost:5432/canvas")

    assert load_database_url() == "postgresql+asyncpg://canvas:pw@localhost:5432/canvas"


def test_sqlite_url_switches_to_aiosqlite(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./local.db")

    assert load_database_url() == "sqlite+aiosqlite:///./local.db"


def test_default_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "")

    assert load_database_url() == DEFAULT_DATABASE_URL


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENWEATHER_API_KEY", "key")
    monkeypatch.setenv("WEATHER_LOCATION", "Lisbon")
    monkeypatch.setenv("EVOLVE_INTERVAL_SECONDS", "300")
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost:5000, http://127.0.0.1:5000")

    settings = load_settings()

    assert settings.openweather_api_key == "key"
    assert settings.weather_location == "Lisbon"
    assert settings.evolve_interval_seconds == 300.0
    assert settings.cors_origins == ["http://localhost:5000", "http://127.0.0.1:5000"]


def test_invalid_number_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPERATION_FLUSH_DELAY", "soon")

    with pytest.raises(ValueError, match="OPERATION_FLUSH_DELAY"):
        load_settings()


def test_cors_origins_do_not_read_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_load_dotenv(*args, **kwargs):
        raise AssertionError(".env must not be read for CORS origins")

    monkeypatch.setattr(config, "load_dotenv", fail_load_dotenv)
    monkeypatch.setenv("CORS_ORIGINS", "http://viewer.local,")

    assert load_cors_origins() == ["http://viewer.local"]


def test_cors_origins_default_to_any(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CORS_ORIGINS", raising=False)

    assert load_cors_origins() == ["*"]
