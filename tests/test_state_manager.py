import asyncio
from datetime import datetime

import pytest
from pydantic import ValidationError

from canvas_backend.schemas import WeatherData
from canvas_backend.state_manager import InvalidSectionError, apply_section_patch
from canvas_backend.state_store import VersionConflictError


class FakeWeatherService:
    def __init__(self, weather):
        self.weather = weather
        self.calls = 0

    async def get_weather(self):
        self.calls += 1
        return self.weather


def test_current_state_is_created_once(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            initialized, _ = await stack.manager.get_initialization_status()
            assert not initialized

            first = await stack.manager.get_current_state()
            second = await stack.manager.get_current_state()

            assert first.version == 1
            assert first.evolution_step == 0
            assert second.id == first.id

            initialized, state = await stack.manager.get_initialization_status()
            assert initialized
            assert state.id == first.id

    asyncio.run(scenario())


def test_update_inserts_next_version(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            v1 = await stack.manager.get_current_state()
            v2 = await stack.manager.update_section("weatherData", {"windSpeed": 12.5})
            v3 = await stack.manager.update_section("timeOfDay", 21.0)

            assert [v1.version, v2.version, v3.version] == [1, 2, 3]
            assert v2.weather_data.wind_speed == 12.5
            assert v3.time_of_day == 21.0

            latest = await stack.store.get_latest()
            assert latest.version == 3
            # Старая версия не изменилась.
            stored_v1 = await stack.manager.get_version(1)
            assert stored_v1.weather_data == v1.weather_data

    asyncio.run(scenario())


def test_update_changes_only_patched_section(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            before = await stack.manager.get_current_state()
            after = await stack.manager.update_section(
                "colorPalette", {"primary": "#123456"})

            volatile = {"id", "version", "last_updated", "color_palette"}
            assert after.model_dump(exclude=volatile) == before.model_dump(exclude=volatile)
            assert after.color_palette.primary == "#123456"
            assert after.color_palette.secondary == before.color_palette.secondary

    asyncio.run(scenario())


def test_update_accepts_snake_case_section_and_keys(noon_state) -> None:
    patched = apply_section_patch(noon_state, "flow_parameters",
                                  {"turbulence": 0.9, "direction": {"y": 1.0}})

    assert patched.flow_parameters.turbulence == 0.9
    assert patched.flow_parameters.direction.x == noon_state.flow_parameters.direction.x
    assert patched.flow_parameters.direction.y == 1.0

    weather = apply_section_patch(noon_state, "weatherData", {"cloud_cover": 80})
    assert weather.weather_data.cloud_cover == 80


def test_particle_config_patch_adds_named_config(noon_state) -> None:
    patched = apply_section_patch(noon_state, "particleConfigs", {
        "slow_dust": {"count": 300, "size": 0.02, "speed": 0.2,
                      "lifetime": 9.0, "color": "#ff1493"},
    })

    assert set(patched.particle_configs) == {"main", "slow_dust"}
    assert patched.particle_configs["main"] == noon_state.particle_configs["main"]


def test_update_records_modifier(noon_state) -> None:
    patched = apply_section_patch(noon_state, "themeId", "ocean", modified_by="admin")

    assert patched.theme_id == "ocean"
    assert patched.metadata.last_modified_by == "admin"
    assert patched.version == noon_state.version + 1


def test_invalid_section_is_rejected(noon_state) -> None:
    with pytest.raises(InvalidSectionError):
        apply_section_patch(noon_state, "version", 99)


def test_invalid_value_is_rejected(noon_state) -> None:
    with pytest.raises(ValidationError):
        apply_section_patch(noon_state, "weatherData", {"humidity": 150})

    with pytest.raises(ValueError):
        apply_section_patch(noon_state, "colorPalette", "#ffffff")


def test_evolve_with_explicit_weather(canvas_stack) -> None:
    storm = WeatherData(temperature=20, humidity=80, wind_speed=25,
                        cloud_cover=50, precipitation=4, condition="storm")

    async def scenario():
        async with canvas_stack() as stack:
            await stack.manager.get_current_state()
            evolved = await stack.manager.evolve(datetime(2024, 6, 1, 13, 30), storm)

            assert evolved.version == 2
            assert evolved.evolution_step == 1
            assert evolved.time_of_day == pytest.approx(13.5)
            assert evolved.weather_data.condition == "storm"
            # growth: 0.6 * (0.8 + (1/3) * 0.4)
            assert evolved.flow_parameters.intensity == pytest.approx(0.56)
            assert evolved.color_palette.saturation == pytest.approx(0.9)

    asyncio.run(scenario())


def test_evolve_uses_weather_service_then_falls_back(canvas_stack) -> None:
    fresh = WeatherData(temperature=5, humidity=90, wind_speed=10,
                        cloud_cover=100, condition="snow")
    service = FakeWeatherService(fresh)

    async def scenario():
        async with canvas_stack(weather_service=service) as stack:
            evolved = await stack.manager.evolve(datetime(2024, 6, 1, 8, 0))
            assert service.calls == 1
            assert evolved.weather_data.condition == "snow"

            service.weather = None
            again = await stack.manager.evolve(datetime(2024, 6, 1, 9, 0))
            assert again.weather_data == evolved.weather_data
            assert again.version == evolved.version + 1

    asyncio.run(scenario())


def test_history_is_newest_first(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            await stack.manager.get_current_state()
            for hour in (6, 12, 18):
                await stack.manager.evolve(datetime(2024, 6, 1, hour, 0))

            history = await stack.manager.get_history(limit=3)
            assert [state.version for state in history] == [4, 3, 2]

    asyncio.run(scenario())


def test_duplicate_version_raises_conflict(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            current = await stack.manager.get_current_state()
            clash = current.model_copy(update={"id": "another-row"})

            with pytest.raises(VersionConflictError):
                await stack.store.insert_state(clash)

    asyncio.run(scenario())


def test_concurrent_first_requests_share_initial_state(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            first, second = await asyncio.gather(
                stack.manager.get_current_state(),
                stack.manager.get_current_state(),
            )

            assert first.id == second.id
            assert first.version == second.version == 1

            history = await stack.manager.get_history()
            assert [state.version for state in history] == [1]
            assert stack.batcher.pending_count == 1

    asyncio.run(scenario())


def test_snapshot_copies_current_state(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            await stack.manager.update_section("themeId", "dusk")
            snapshot = await stack.manager.create_snapshot(created_by="curator")

            assert snapshot.state_version == 2
            assert snapshot.state.theme_id == "dusk"
            assert snapshot.name == "Initial State v2"

            snapshots = await stack.manager.list_snapshots()
            assert [s.id for s in snapshots] == [snapshot.id]
            assert snapshots[0].state == snapshot.state

    asyncio.run(scenario())


def test_operations_are_logged_on_flush(canvas_stack) -> None:
    async def scenario():
        async with canvas_stack() as stack:
            await stack.manager.get_current_state()
            await stack.manager.update_section("timeOfDay", 3.0)
            await stack.manager.evolve(datetime(2024, 6, 1, 3, 0))

            assert stack.batcher.pending_count == 3
            assert await stack.batcher.flush() == 3

            operations = await stack.store.list_operations(limit=10)
            assert sorted(op.type for op in operations) == ["CREATE", "EVOLVE", "UPDATE"]
            update = next(op for op in operations if op.type == "UPDATE")
            assert update.section == "timeOfDay"
            assert update.state_version == 2

    asyncio.run(scenario())
