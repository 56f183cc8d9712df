import colorsys
import math
import random
from typing import Dict, List, Optional

from canvas_backend.constants import PALETTE_COLOR_KEYS, RIBBON_COLORS
from canvas_backend.evolution import get_evolution_phase
from canvas_backend.schemas import (
    CanvasState,
    ColorPalette,
    LightConfig,
    ParticleGroup,
    Ribbon,
    Scene,
)


# Размер видимой области в мировых координатах three.js при камере на z=5.
VIEWPORT_WIDTH = 16.0
VIEWPORT_HEIGHT = 9.0

CLUSTER_COUNT = 5
MAX_PARTICLES_PER_GROUP = 20000

LIGHTING = {
    "genesis": {"ambient": 0.4, "directional": 0.6, "color": "#ffeb3b"},
    "growth": {"ambient": 0.6, "directional": 0.8, "color": "#ffffff"},
    "flourishing": {"ambient": 0.8, "directional": 1.0, "color": "#ff9800"},
    "reflection": {"ambient": 0.3, "directional": 0.4, "color": "#3f51b5"},
}

# Насыщенность и яркость палитры по умолчанию, относительно них идёт масштабирование.
NEUTRAL_LEVEL = 0.7

# Акцентные цвета, к которым применяются теплота, насыщенность и яркость.
ADJUSTED_KEYS = ("primary", "secondary", "accent")


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def hex_to_rgb(color: str) -> tuple[float, float, float]:
    color = color.lstrip("#")
    return tuple(int(color[i:i + 2], 16) / 255 for i in (0, 2, 4))


def rgb_to_hex(r: float, g: float, b: float) -> str:
    return "#" + "".join(f"{round(_clamp(c) * 255):02x}" for c in (r, g, b))


def adjust_color(color: str, warmth: float, saturation: float, brightness: float) -> str:
    """
    Сдвигает оттенок к тёплым (warmth > 0.5) или холодным тонам
    и масштабирует насыщенность и светлоту.
    """

    h, l, s = colorsys.rgb_to_hls(*hex_to_rgb(color))
    h = (h + (0.5 - warmth) * 0.08) % 1.0
    s = _clamp(s * saturation / NEUTRAL_LEVEL)
    l = _clamp(l * brightness / NEUTRAL_LEVEL)

    return rgb_to_hex(*colorsys.hls_to_rgb(h, l, s))


def effective_palette(palette: ColorPalette) -> Dict[str, str]:
    colors = {key: getattr(palette, key) for key in PALETTE_COLOR_KEYS}
    for key in ADJUSTED_KEYS:
        colors[key] = adjust_color(
            colors[key], palette.temperature, palette.saturation, palette.brightness)

    return colors


def build_lighting(state: CanvasState) -> LightConfig:
    config = LIGHTING[get_evolution_phase(state.time_of_day)]

    return LightConfig(
        ambient=config["ambient"],
        directional=config["directional"],
        color=config["color"],
        flicker=state.weather_data.condition == "storm",
    )


def _ribbon_points(rng: random.Random, wind_speed: float) -> List[List[float]]:
    segments = 20 + rng.randint(0, 29)

    start_x = (rng.random() - 0.5) * VIEWPORT_WIDTH * 2
    start_y = (rng.random() - 0.5) * VIEWPORT_HEIGHT * 2
    base_direction = rng.random() * math.pi * 2
    wobble = 0.5 * (wind_speed / 50)

    points = []
    for i in range(segments):
        t = i / segments
        x = (start_x
             + math.cos(base_direction + t * math.pi * 2) * VIEWPORT_WIDTH * 0.8 * t
             + math.sin(t * math.pi * 6) * wobble)
        y = (start_y
             + math.sin(base_direction + t * math.pi * 2) * VIEWPORT_HEIGHT * 0.6 * t
             + math.cos(t * math.pi * 4) * wobble)
        z = math.sin(t * math.pi * 3) * 2 + (rng.random() - 0.5) * 0.5
        points.append([round(x, 4), round(y, 4), round(z, 4)])

    return points


def build_ribbons(state: CanvasState, colors: Dict[str, str],
                  rng: random.Random) -> List[Ribbon]:
    intensity = _clamp(state.flow_parameters.intensity)
    ribbon_count = int(3 + intensity * 7)

    cycle = [colors[key] for key in ADJUSTED_KEYS] + list(RIBBON_COLORS[3:])

    return [
        Ribbon(
            points=_ribbon_points(rng, state.weather_data.wind_speed),
            color=cycle[index % len(cycle)],
            width=round(0.1 + rng.random() * 0.3, 4),
            opacity=round(0.6 + rng.random() * 0.4, 4),
        )
        for index in range(ribbon_count)
    ]


def build_particle_groups(state: CanvasState, rng: random.Random) -> List[ParticleGroup]:
    groups = []

    for name in sorted(state.particle_configs):
        config = state.particle_configs[name]
        clusters = [
            [
                round((c - 2) * VIEWPORT_WIDTH * 0.4, 4),
                round((rng.random() - 0.5) * VIEWPORT_HEIGHT * 2, 4),
                0.0,
            ]
            for c in range(CLUSTER_COUNT)
        ]
        groups.append(ParticleGroup(
            name=name,
            count=min(config.count, MAX_PARTICLES_PER_GROUP),
            size=config.size,
            speed=config.speed,
            lifetime=config.lifetime,
            color=config.color,
            clusters=clusters,
        ))

    return groups


def build_scene(state: CanvasState, seed: Optional[int] = None) -> Scene:
    """
    Собирает описание сцены для фронта.
    При одинаковых state и seed результат одинаковый; seed по умолчанию - версия.
    """

    rng = random.Random(state.version if seed is None else seed)
    colors = effective_palette(state.color_palette)

    return Scene(
        version=state.version,
        phase=get_evolution_phase(state.time_of_day),
        time_of_day=state.time_of_day,
        intensity=state.flow_parameters.intensity,
        turbulence=state.flow_parameters.turbulence,
        lighting=build_lighting(state),
        palette=colors,
        ribbons=build_ribbons(state, colors, rng),
        particles=build_particle_groups(state, rng),
    )
