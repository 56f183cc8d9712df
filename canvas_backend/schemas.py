from datetime import datetime
from typing import Any, Dict, List, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


HEX_COLOR_PATTERN = r"^#[0-9a-fA-F]{6}$"

Phase = Literal["genesis", "growth", "flourishing", "reflection"]


class CamelModel(BaseModel):
    """
    Базовая модель: наружу поля отдаются в camelCase,
    на вход принимаются оба варианта имён.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WeatherData(CamelModel):
    temperature: float = Field(..., description="Температура, °C")
    humidity: float = Field(..., ge=0, le=100)
    wind_speed: float = Field(..., ge=0, description="Скорость ветра, м/с")
    cloud_cover: float = Field(..., ge=0, le=100, description="Облачность, %")
    precipitation: float = Field(default=0.0, ge=0, description="Осадки, мм")
    condition: Optional[str] = None
    location: Optional[str] = None

    @field_validator("condition")
    @classmethod
    def normalize_condition(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower() or None


class ColorPalette(CamelModel):
    primary: str = Field(..., pattern=HEX_COLOR_PATTERN)
    secondary: str = Field(..., pattern=HEX_COLOR_PATTERN)
    accent: str = Field(..., pattern=HEX_COLOR_PATTERN)
    background: str = Field(..., pattern=HEX_COLOR_PATTERN)
    text: str = Field(..., pattern=HEX_COLOR_PATTERN)
    temperature: float = Field(default=0.5, description="Теплота цвета, 0..1")
    saturation: float = 0.7
    brightness: float = 0.7


class Vector3(CamelModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class FlowParameters(CamelModel):
    velocity: float
    turbulence: float
    direction: Vector3
    scale: float
    intensity: float = 0.5


class ParticleConfig(CamelModel):
    count: int = Field(..., ge=0)
    size: float = Field(..., gt=0)
    speed: float
    lifetime: float = Field(..., gt=0)
    color: str = Field(..., pattern=HEX_COLOR_PATTERN)


class CanvasMetadata(CamelModel):
    name: str
    created_by: str
    created_at: datetime
    last_modified_by: str


class CanvasState(CamelModel):
    """
    Версионированный снимок визуальных параметров холста.
    """

    id: str
    theme_id: str
    weather_data: WeatherData
    color_palette: ColorPalette
    flow_parameters: FlowParameters
    particle_configs: Dict[str, ParticleConfig]
    time_of_day: float = Field(..., ge=0, le=24)
    evolution_step: int = Field(..., ge=0)
    version: int = Field(..., ge=1)
    metadata: CanvasMetadata
    last_updated: datetime


# Разделы состояния, которые можно менять через /api/canvas/update.
# Ключ - имя раздела в API, значение - имя поля CanvasState.
UPDATABLE_SECTIONS: Dict[str, str] = {
    "weatherData": "weather_data",
    "flowParameters": "flow_parameters",
    "particleConfigs": "particle_configs",
    "colorPalette": "color_palette",
    "timeOfDay": "time_of_day",
    "themeId": "theme_id",
}


class UpdateRequest(CamelModel):
    section: str = Field(..., min_length=1)
    value: Any
    modified_by: Optional[str] = None


class EvolveRequest(CamelModel):
    timestamp: Optional[datetime] = None
    weather: Optional[WeatherData] = None


class SnapshotRequest(CamelModel):
    name: Optional[str] = None
    created_by: str = "system"


class InitStatusResponse(CamelModel):
    initialized: bool
    state: Optional[CanvasState] = None


class InitResponse(CamelModel):
    success: bool
    state: CanvasState


class OperationRecord(CamelModel):
    id: str
    type: str
    section: Optional[str] = None
    data: Any = None
    state_version: int
    created_by: str
    created_at: datetime


class SnapshotRecord(CamelModel):
    id: str
    name: str
    state_version: int
    state: CanvasState
    created_by: str
    created_at: datetime


class LightConfig(CamelModel):
    ambient: float
    directional: float
    color: str
    flicker: bool = False


class Ribbon(CamelModel):
    points: List[List[float]]
    color: str
    width: float
    opacity: float


class ParticleGroup(CamelModel):
    name: str
    count: int
    size: float
    speed: float
    lifetime: float
    color: str
    clusters: List[List[float]]


class Scene(CamelModel):
    """
    Описание сцены для рендера на фронте.
    """

    version: int
    phase: Phase
    time_of_day: float
    intensity: float
    turbulence: float
    lighting: LightConfig
    palette: Dict[str, str]
    ribbons: List[Ribbon]
    particles: List[ParticleGroup]


