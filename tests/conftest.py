"""Общие фикстуры: in-memory SQLite, собранный менеджер состояния, клиент API."""

from __future__ import annotations

from datetime import datetime
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from canvas_backend.database import Database
from canvas_backend.operation_batcher import OperationBatcher
from canvas_backend.schemas import CanvasState, WeatherData
from canvas_backend.state_manager import CanvasStateManager, build_initial_state
from canvas_backend.state_store import AsyncCanvasStore

IN_MEMORY_DB = "sqlite+aiosqlite:///:memory:"

# Пачки пишутся только явным flush()/close(), таймер не мешает тестам.
NO_AUTO_FLUSH = 60.0


class CanvasStack:
    """Всё, что нужно менеджеру состояния, поверх одной in-memory базы."""

    def __init__(self, weather_service=None) -> None:
        self.database = Database(IN_MEMORY_DB)
        self.store = AsyncCanvasStore(self.database)
        self.batcher = OperationBatcher(self.store, delay=NO_AUTO_FLUSH)
        self.manager = CanvasStateManager(self.store, self.batcher, weather_service)

    async def __aenter__(self) -> "CanvasStack":
        await self.database.init_db()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.batcher.close()
        await self.database.close()


@pytest.fixture()
def canvas_stack():
    """Фабрика стека; использовать как `async with canvas_stack() as stack`."""
    return CanvasStack


@pytest.fixture()
def noon_state() -> CanvasState:
    return build_initial_state(now=datetime(2024, 6, 1, 12, 0))


@pytest.fixture()
def mild_weather() -> WeatherData:
    return WeatherData(
        temperature=20.0,
        humidity=50.0,
        wind_speed=5.0,
        cloud_cover=30.0,
        precipitation=0.0,
        condition="clear",
    )


@pytest.fixture()
def api_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", IN_MEMORY_DB)
    monkeypatch.setenv("OPENWEATHER_API_KEY", "")
    monkeypatch.setenv("EVOLVE_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("OPERATION_FLUSH_DELAY", str(NO_AUTO_FLUSH))


@pytest.fixture()
def client(api_env: None) -> Iterator[TestClient]:
    from canvas_backend.api import app

    with TestClient(app) as test_client:
        yield test_client
