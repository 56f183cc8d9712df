import copy
import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from pydantic.alias_generators import to_camel

from canvas_backend import constants
from canvas_backend.evolution import evolve_state, get_evolution_phase
from canvas_backend.models import new_id, utcnow
from canvas_backend.operation_batcher import OperationBatcher
from canvas_backend.schemas import (
    UPDATABLE_SECTIONS,
    CanvasMetadata,
    CanvasState,
    SnapshotRecord,
    WeatherData,
)
from canvas_backend.state_store import AsyncCanvasStore, VersionConflictError
from canvas_backend.weather_service import AsyncWeatherService


logger = logging.getLogger(__name__)


class InvalidSectionError(ValueError):
    def __init__(self, section: str):
        super().__init__(f"Invalid section: {section}")
        self.section = section


def resolve_section(section: str) -> str:
    """
    Возвращает имя поля CanvasState для раздела из API.
    Принимает camelCase (weatherData) и snake_case (weather_data).
    """

    if section in UPDATABLE_SECTIONS:
        return UPDATABLE_SECTIONS[section]
    if section in UPDATABLE_SECTIONS.values():
        return section
    raise InvalidSectionError(section)


def _camel_key(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def build_initial_state(now: Optional[datetime] = None) -> CanvasState:
    """
    Состояние по умолчанию, которое создаётся при первом запросе.
    """

    created_at = utcnow()
    local_now = now or datetime.now()

    return CanvasState(
        id=new_id(),
        theme_id=constants.DEFAULT_THEME_ID,
        weather_data=copy.deepcopy(constants.DEFAULT_WEATHER),
        color_palette=copy.deepcopy(constants.DEFAULT_COLORS),
        flow_parameters=copy.deepcopy(constants.DEFAULT_FLOW),
        particle_configs=copy.deepcopy(constants.DEFAULT_PARTICLES),
        time_of_day=local_now.hour + local_now.minute / 60,
        evolution_step=0,
        version=1,
        metadata=CanvasMetadata(
            name=constants.DEFAULT_CANVAS_NAME,
            created_by=constants.SYSTEM_USER,
            created_at=created_at,
            last_modified_by=constants.SYSTEM_USER,
        ),
        last_updated=created_at,
    )


def apply_section_patch(state: CanvasState, section: str, value: Any,
                        modified_by: str = constants.SYSTEM_USER) -> CanvasState:
    """
    Возвращает следующую версию state с изменённым разделом section.

    Разделы-объекты сливаются с патчем поверхностно, скаляры заменяются.
    Результат проходит валидацию целиком, остальные разделы не трогаются.
    """

    field_name = resolve_section(section)
    key = to_camel(field_name)

    # Слияние идёт в camelCase, как состояние уходит наружу.
    data = state.model_dump(by_alias=True)
    current = data[key]

    if isinstance(current, dict):
        if not isinstance(value, dict):
            raise ValueError(f"Section {section} expects an object")
        if field_name == "particle_configs":
            # Именованная конфигурация из патча заменяет существующую целиком.
            patched = {**current, **value}
        else:
            patch = {_camel_key(k): v for k, v in value.items()}
            patched = {**current, **patch}
            if isinstance(patch.get("direction"), dict):
                patched["direction"] = {**current["direction"], **patch["direction"]}
    else:
        patched = value

    data[key] = patched
    data["id"] = new_id()
    data["version"] = state.version + 1
    data["lastUpdated"] = utcnow()
    data["metadata"]["lastModifiedBy"] = modified_by

    return CanvasState.model_validate(data)


class CanvasStateManager:
    def __init__(self,
                 store: AsyncCanvasStore,
                 batcher: OperationBatcher,
                 weather_service: Optional[AsyncWeatherService] = None):
        self.store = store
        self.batcher = batcher
        self.weather_service = weather_service

    async def get_current_state(self) -> CanvasState:
        """
        Последняя версия; если записей нет, создаёт состояние по умолчанию.
        """

        state = await self.store.get_latest()
        if state is not None:
            return state

        return await self._create_initial_state()

    async def _create_initial_state(self) -> CanvasState:
        try:
            state = await self.store.insert_state(build_initial_state())
        except VersionConflictError:
            # Первую версию уже записал параллельный запрос.
            logger.info("Initial canvas state was created concurrently")
            return await self.store.get_latest()

        self.batcher.add("CREATE", state.version, created_by=constants.SYSTEM_USER)
        logger.info("Created initial canvas state %s", state.id)

        return state

    async def get_initialization_status(self) -> Tuple[bool, Optional[CanvasState]]:
        state = await self.store.get_latest()
        return state is not None, state

    async def update_section(self, section: str, value: Any,
                             modified_by: Optional[str] = None) -> CanvasState:
        """
        Меняет один раздел и записывает новую версию.
        """

        modified_by = modified_by or constants.SYSTEM_USER
        current = await self.get_current_state()
        new_state = apply_section_patch(current, section, value, modified_by)

        saved = await self.store.insert_state(new_state)
        self.batcher.add(
            "UPDATE",
            saved.version,
            section=section,
            data=value,
            created_by=modified_by,
        )
        logger.info("Canvas section %s updated, version %d", section, saved.version)

        return saved

    async def _resolve_weather(self, current: CanvasState,
                               weather: Optional[WeatherData]) -> WeatherData:
        if weather is not None:
            return weather

        if self.weather_service is not None:
            fresh = await self.weather_service.get_weather()
            if fresh is not None:
                return fresh

        return current.weather_data

    async def evolve(self, timestamp: Optional[datetime] = None,
                     weather: Optional[WeatherData] = None) -> CanvasState:
        """
        Применяет эволюцию по времени и погоде и записывает новую версию.
        """

        current = await self.get_current_state()
        timestamp = timestamp or datetime.now()
        weather = await self._resolve_weather(current, weather)

        new_state = evolve_state(current, timestamp, weather)
        saved = await self.store.insert_state(new_state)

        self.batcher.add(
            "EVOLVE",
            saved.version,
            data={
                "timestamp": timestamp.isoformat(),
                "phase": get_evolution_phase(saved.time_of_day),
                "weather": weather.model_dump(mode="json"),
            },
            created_by=constants.EVOLUTION_USER,
        )
        logger.info("Canvas evolved to version %d (step %d)",
                    saved.version, saved.evolution_step)

        return saved

    async def get_history(self, limit: int = constants.HISTORY_LIMIT) -> List[CanvasState]:
        return await self.store.list_states(limit)

    async def get_version(self, version: int) -> Optional[CanvasState]:
        return await self.store.get_version(version)

    async def create_snapshot(self, name: Optional[str] = None,
                              created_by: str = constants.SYSTEM_USER) -> SnapshotRecord:
        state = await self.get_current_state()
        name = name or f"{state.metadata.name} v{state.version}"

        snapshot = await self.store.insert_snapshot(name, state, created_by)
        self.batcher.add("SNAPSHOT", state.version, data={"name": name},
                         created_by=created_by)

        return snapshot

    async def list_snapshots(self, limit: int = constants.HISTORY_LIMIT) -> List[SnapshotRecord]:
        return await self.store.list_snapshots(limit)
