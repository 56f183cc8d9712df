from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    # Храним naive UTC: одинаково ведёт себя в SQLite и в timestamp-колонках Postgres.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class CanvasStateRecord(Base):
    """
    Одна строка - одна версия состояния холста. Строки не изменяются.
    """

    __tablename__ = 'canvas_states'

    id = Column(String(36), primary_key=True, default=new_id)
    theme_id = Column(Text, nullable=False, default='default')
    weather_data = Column(JSON, nullable=False)
    time_of_day = Column(Float, nullable=False)
    evolution_step = Column(Integer, nullable=False, default=0)
    color_palette = Column(JSON, nullable=False)
    flow_parameters = Column(JSON, nullable=False)
    particle_configs = Column(JSON, nullable=False)
    # Имя атрибута metadata занято декларативной базой.
    canvas_metadata = Column('metadata', JSON, nullable=False)
    version = Column(Integer, nullable=False, unique=True, index=True)
    created_by = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class CanvasOperationRecord(Base):
    __tablename__ = 'canvas_operations'

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(Text, nullable=False)
    section = Column(Text)
    data = Column(JSON)
    state_version = Column(Integer, nullable=False)
    created_by = Column(Text, nullable=False, default='system')
    created_at = Column(DateTime, nullable=False, default=utcnow)


class CanvasSnapshotRecord(Base):
    __tablename__ = 'canvas_snapshots'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False)
    state_version = Column(Integer, nullable=False)
    state = Column(JSON, nullable=False)
    created_by = Column(Text, nullable=False, default='system')
    created_at = Column(DateTime, nullable=False, default=utcnow)


class WeatherCacheRecord(Base):
    __tablename__ = 'weather_cache'

    id = Column(Integer, primary_key=True, autoincrement=True)
    location = Column(Text, nullable=False, index=True)
    weather_data = Column(JSON, nullable=False)
    fetched_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
