import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from canvas_backend.database import Database
from canvas_backend.models import (
    CanvasOperationRecord,
    CanvasSnapshotRecord,
    CanvasStateRecord,
    WeatherCacheRecord,
)
from canvas_backend.schemas import CanvasState, OperationRecord, SnapshotRecord, WeatherData


logger = logging.getLogger(__name__)


class VersionConflictError(Exception):
    """Версия уже занята другим писателем."""

    def __init__(self, version: int):
        super().__init__(f"Canvas version {version} already exists")
        self.version = version


class AsyncCanvasStore:
    """
    Доступ к журналу версий холста и вспомогательным таблицам.
    Изменение состояния - всегда вставка новой строки.
    """

    def __init__(self, database: Database):
        self.database = database
        self.async_session = database.session_factory

    @staticmethod
    def _to_state(record: CanvasStateRecord) -> CanvasState:
        return CanvasState(
            id=record.id,
            theme_id=record.theme_id,
            weather_data=record.weather_data,
            color_palette=record.color_palette,
            flow_parameters=record.flow_parameters,
            particle_configs=record.particle_configs,
            time_of_day=record.time_of_day,
            evolution_step=record.evolution_step,
            version=record.version,
            metadata=record.canvas_metadata,
            last_updated=record.created_at,
        )

    @staticmethod
    def _to_record(state: CanvasState) -> CanvasStateRecord:
        data = state.model_dump(mode="json")

        return CanvasStateRecord(
            id=state.id,
            theme_id=state.theme_id,
            weather_data=data["weather_data"],
            time_of_day=state.time_of_day,
            evolution_step=state.evolution_step,
            color_palette=data["color_palette"],
            flow_parameters=data["flow_parameters"],
            particle_configs=data["particle_configs"],
            canvas_metadata=data["metadata"],
            version=state.version,
            created_by=state.metadata.last_modified_by,
            created_at=state.last_updated,
        )

    async def get_latest(self) -> Optional[CanvasState]:
        """
        Возвращает последнюю версию или None, если таблица пуста.
        """

        async with self.async_session() as session:
            statement = (
                select(CanvasStateRecord)
                .order_by(CanvasStateRecord.version.desc())
                .limit(1)
            )
            record = (await session.execute(statement)).scalar_one_or_none()

        return self._to_state(record) if record else None

    async def get_version(self, version: int) -> Optional[CanvasState]:
        async with self.async_session() as session:
            statement = select(CanvasStateRecord).where(
                CanvasStateRecord.version == version)
            record = (await session.execute(statement)).scalar_one_or_none()

        return self._to_state(record) if record else None

    async def list_states(self, limit: int) -> List[CanvasState]:
        """
        Последние версии, новые первыми.
        """

        async with self.async_session() as session:
            statement = (
                select(CanvasStateRecord)
                .order_by(CanvasStateRecord.version.desc())
                .limit(limit)
            )
            records = (await session.execute(statement)).scalars().all()

        return [self._to_state(record) for record in records]

    async def insert_state(self, state: CanvasState) -> CanvasState:
        """
        Записывает новую версию.
        Если такая версия уже есть, бросает VersionConflictError.
        """

        record = self._to_record(state)

        async with self.async_session() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise VersionConflictError(state.version) from e

        return self._to_state(record)

    async def save_operations(self, operations: List[Dict[str, Any]]) -> None:
        """
        Записывает пачку операций одной транзакцией.
        """

        if not operations:
            return

        async with self.async_session() as session:
            async with session.begin():
                session.add_all(
                    [CanvasOperationRecord(**operation) for operation in operations])

    async def list_operations(self, limit: int) -> List[OperationRecord]:
        async with self.async_session() as session:
            statement = (
                select(CanvasOperationRecord)
                .order_by(CanvasOperationRecord.created_at.desc(),
                          CanvasOperationRecord.state_version.desc())
                .limit(limit)
            )
            records = (await session.execute(statement)).scalars().all()

        return [
            OperationRecord(
                id=record.id,
                type=record.type,
                section=record.section,
                data=record.data,
                state_version=record.state_version,
                created_by=record.created_by,
                created_at=record.created_at,
            )
            for record in records
        ]

    async def insert_snapshot(self, name: str, state: CanvasState,
                              created_by: str) -> SnapshotRecord:
        record = CanvasSnapshotRecord(
            name=name,
            state_version=state.version,
            state=state.model_dump(mode="json"),
            created_by=created_by,
        )

        async with self.async_session() as session:
            async with session.begin():
                session.add(record)

        return SnapshotRecord(
            id=record.id,
            name=record.name,
            state_version=record.state_version,
            state=state,
            created_by=record.created_by,
            created_at=record.created_at,
        )

    async def list_snapshots(self, limit: int) -> List[SnapshotRecord]:
        async with self.async_session() as session:
            statement = (
                select(CanvasSnapshotRecord)
                .order_by(CanvasSnapshotRecord.created_at.desc())
                .limit(limit)
            )
            records = (await session.execute(statement)).scalars().all()

        return [
            SnapshotRecord(
                id=record.id,
                name=record.name,
                state_version=record.state_version,
                state=CanvasState.model_validate(record.state),
                created_by=record.created_by,
                created_at=record.created_at,
            )
            for record in records
        ]

    async def get_cached_weather(self, location: str,
                                 now: datetime) -> Optional[WeatherData]:
        """
        Возвращает последнюю непросроченную запись кэша погоды.
        """

        async with self.async_session() as session:
            statement = (
                select(WeatherCacheRecord)
                .where(WeatherCacheRecord.location == location)
                .where(WeatherCacheRecord.expires_at > now)
                .order_by(WeatherCacheRecord.fetched_at.desc())
                .limit(1)
            )
            record = (await session.execute(statement)).scalar_one_or_none()

        if record is None:
            return None

        return WeatherData.model_validate(record.weather_data)

    async def cache_weather(self, location: str, weather: WeatherData,
                            fetched_at: datetime, expires_at: datetime) -> None:
        """
        Сохраняет свежую погоду и удаляет просроченные записи этой локации.
        """

        async with self.async_session() as session:
            async with session.begin():
                await session.execute(
                    delete(WeatherCacheRecord)
                    .where(WeatherCacheRecord.location == location)
                    .where(WeatherCacheRecord.expires_at <= fetched_at)
                )
                session.add(WeatherCacheRecord(
                    location=location,
                    weather_data=weather.model_dump(mode="json"),
                    fetched_at=fetched_at,
                    expires_at=expires_at,
                ))
