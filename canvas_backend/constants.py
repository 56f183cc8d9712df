SYSTEM_USER = "system"
EVOLUTION_USER = "evolution"

DEFAULT_THEME_ID = "default"
DEFAULT_CANVAS_NAME = "Initial State"

DEFAULT_WEATHER = {
    "temperature": 20.0,
    "humidity": 50.0,
    "wind_speed": 5.0,
    "cloud_cover": 30.0,
    "precipitation": 0.0,
    "condition": "clear",
}

DEFAULT_COLORS = {
    "primary": "#00ff88",
    "secondary": "#4169e1",
    "accent": "#ffa500",
    "background": "#000000",
    "text": "#ffffff",
    "temperature": 0.5,
    "saturation": 0.7,
    "brightness": 0.7,
}

DEFAULT_FLOW = {
    "velocity": 1.0,
    "turbulence": 0.5,
    "direction": {"x": 1.0, "y": 0.0, "z": 0.0},
    "scale": 1.0,
    "intensity": 0.5,
}

DEFAULT_PARTICLES = {
    "main": {
        "count": 2000,
        "size": 0.05,
        "speed": 1.0,
        "lifetime": 5.0,
        "color": "#00ff88",
    }
}

# Ключи палитры, которые фронт рисует как цвета (остальные поля скалярные).
PALETTE_COLOR_KEYS = ("primary", "secondary", "accent", "background", "text")

# Цвета лент по умолчанию, если в палитре меньше пяти цветов.
RIBBON_COLORS = ("#00ff88", "#4169e1", "#ffa500", "#ff1493", "#9370db")

OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"

HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 200
