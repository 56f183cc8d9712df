"""
Эволюция состояния холста.

Новое состояние вычисляется из текущего по трём входам:
    - фаза суток (четыре фиксированных интервала по часам),
    - интенсивность погоды (температура, ветер, облачность, в пределах [0, 1]),
    - теплота цвета (кусочная таблица по часу).

Все функции чистые: одинаковые входы дают одинаковый результат.
"""

from datetime import datetime
from typing import Dict, Tuple

from canvas_backend.constants import EVOLUTION_USER
from canvas_backend.models import new_id, utcnow
from canvas_backend.schemas import (
    CanvasState,
    ColorPalette,
    FlowParameters,
    ParticleConfig,
    Phase,
    WeatherData,
)


# Границы фаз: [6, 12), [12, 18), [18, 24), остальное - reflection.
PHASE_BOUNDARIES: Tuple[Tuple[float, float, Phase], ...] = (
    (6, 12, "genesis"),
    (12, 18, "growth"),
    (18, 24, "flourishing"),
)

PHASE_INTENSITY: Dict[str, float] = {
    "genesis": 0.3,
    "growth": 0.6,
    "flourishing": 0.9,
    "reflection": 0.4,
}

# (saturation, brightness) по состоянию погоды.
WEATHER_COLOR_ADJUSTMENTS: Dict[str, Tuple[float, float]] = {
    "clear": (0.1, 0.1),
    "cloudy": (-0.1, -0.05),
    "rain": (-0.2, -0.1),
    "storm": (0.2, -0.2),
    "snow": (-0.3, 0.1),
}

MIN_SATURATION = 0.4
MIN_BRIGHTNESS = 0.3


def get_evolution_phase(time_of_day: float) -> Phase:
    for start, end, phase in PHASE_BOUNDARIES:
        if start <= time_of_day < end:
            return phase

    return "reflection"


def time_of_day_from(timestamp: datetime) -> float:
    """
    Переводит момент времени в часы суток: 13:30 -> 13.5.
    """

    return timestamp.hour + timestamp.minute / 60


def calculate_weather_intensity(weather: WeatherData) -> float:
    """
    Сводит погоду к одному числу в [0, 1].

    Отклонение температуры от 20°C нормируется на 30,
    ветер на 50 м/с, облачность на 100%; берётся среднее.
    """

    temp_factor = abs(weather.temperature - 20) / 30
    wind_factor = weather.wind_speed / 50
    cloud_factor = weather.cloud_cover / 100

    return max(0.0, min(1.0, (temp_factor + wind_factor + cloud_factor) / 3))


def calculate_color_warmth(hour: float) -> float:
    """
    Ночь холодная, утро и вечер тёплые, середина дня нейтральная.
    """

    if hour < 6 or hour > 20:
        return 0.3
    if hour < 10 or hour > 16:
        return 0.8
    return 0.5


def get_weather_color_adjustment(weather: WeatherData) -> Tuple[float, float]:
    return WEATHER_COLOR_ADJUSTMENTS.get(weather.condition or "", (0.0, 0.0))


def evolve_flow_parameters(flow: FlowParameters, phase: Phase,
                           weather_intensity: float) -> FlowParameters:
    base = PHASE_INTENSITY[phase]

    return flow.model_copy(update={
        "intensity": base * (0.8 + weather_intensity * 0.4),
        "turbulence": min(1.0, flow.turbulence + (weather_intensity - 0.5) * 0.1),
        "velocity": base * 0.5,
    })


def evolve_particle_configs(configs: Dict[str, ParticleConfig], phase: Phase,
                            time_progress: float) -> Dict[str, ParticleConfig]:
    """
    Скорость частиц растёт с фазой и к концу суток.
    Количество, размер, время жизни и цвет не меняются.
    """

    base = PHASE_INTENSITY[phase]

    return {
        name: config.model_copy(update={"speed": base * (0.5 + time_progress)})
        for name, config in configs.items()
    }


def evolve_color_palette(palette: ColorPalette, hour: float,
                         weather: WeatherData) -> ColorPalette:
    saturation_delta, brightness_delta = get_weather_color_adjustment(weather)

    return palette.model_copy(update={
        "temperature": calculate_color_warmth(hour),
        "saturation": max(MIN_SATURATION, palette.saturation + saturation_delta),
        "brightness": max(MIN_BRIGHTNESS, palette.brightness + brightness_delta),
    })


def evolve_state(state: CanvasState, timestamp: datetime,
                 weather: WeatherData) -> CanvasState:
    """
    Строит следующую версию состояния для момента timestamp и погоды weather.
    Идентификатор и время записи новые, версия и шаг эволюции +1.
    """

    time_of_day = time_of_day_from(timestamp)
    phase = get_evolution_phase(time_of_day)
    weather_intensity = calculate_weather_intensity(weather)

    return state.model_copy(update={
        "id": new_id(),
        "weather_data": weather,
        "time_of_day": time_of_day,
        "evolution_step": state.evolution_step + 1,
        "flow_parameters": evolve_flow_parameters(
            state.flow_parameters, phase, weather_intensity),
        "particle_configs": evolve_particle_configs(
            state.particle_configs, phase, time_of_day / 24),
        "color_palette": evolve_color_palette(
            state.color_palette, time_of_day, weather),
        "version": state.version + 1,
        "last_updated": utcnow(),
        "metadata": state.metadata.model_copy(
            update={"last_modified_by": EVOLUTION_USER}),
    })
