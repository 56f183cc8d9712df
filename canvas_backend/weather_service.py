import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx

from canvas_backend.constants import OPENWEATHER_URL
from canvas_backend.models import utcnow
from canvas_backend.schemas import WeatherData
from canvas_backend.state_store import AsyncCanvasStore


logger = logging.getLogger(__name__)

# Группы OpenWeatherMap -> состояния, которые понимает эволюция цвета.
CONDITION_ALIASES = {
    "clouds": "cloudy",
    "drizzle": "rain",
    "thunderstorm": "storm",
    "squall": "storm",
    "tornado": "storm",
}


def parse_openweather_response(payload: Dict[str, Any], location: str) -> WeatherData:
    """
    Переводит ответ /data/2.5/weather (units=metric) в WeatherData.
    """

    main = payload["main"]
    conditions = payload.get("weather") or []
    condition = conditions[0]["main"].lower() if conditions else None
    if condition is not None:
        condition = CONDITION_ALIASES.get(condition, condition)

    precipitation = 0.0
    for key in ("rain", "snow"):
        precipitation += float((payload.get(key) or {}).get("1h", 0.0))

    return WeatherData(
        temperature=float(main["temp"]),
        humidity=float(main["humidity"]),
        wind_speed=float((payload.get("wind") or {}).get("speed", 0.0)),
        cloud_cover=float((payload.get("clouds") or {}).get("all", 0.0)),
        precipitation=precipitation,
        condition=condition,
        location=location,
    )


class AsyncWeatherService:
    def __init__(self,
                 store: AsyncCanvasStore,
                 api_key: Optional[str],
                 location: str = "Tokyo",
                 cache_minutes: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.store = store
        self.api_key = api_key
        self.location = location
        self.cache_ttl = timedelta(minutes=cache_minutes)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _fetch(self) -> WeatherData:
        response = await self.client.get(
            OPENWEATHER_URL,
            params={"q": self.location, "appid": self.api_key, "units": "metric"},
        )
        response.raise_for_status()

        return parse_openweather_response(response.json(), self.location)

    async def get_weather(self, now: Optional[datetime] = None) -> Optional[WeatherData]:
        """
        Возвращает погоду из кэша или из API.
        Без ключа API и при ошибках запроса возвращает None.
        """

        if not self.enabled:
            return None

        now = now or utcnow()

        cached = await self.store.get_cached_weather(self.location, now)
        if cached is not None:
            return cached

        try:
            weather = await self._fetch()
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("Weather fetch for %s failed: %s", self.location, e)
            return None

        await self.store.cache_weather(
            self.location, weather, fetched_at=now, expires_at=now + self.cache_ttl)
        logger.info("Fetched weather for %s: %s, %.1f°C",
                    self.location, weather.condition, weather.temperature)

        return weather

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
