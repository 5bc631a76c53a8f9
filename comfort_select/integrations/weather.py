"""Open-Meteo current-conditions client.

Returns a :class:`WeatherNow` snapshot in imperial units (°F, mph, in/hr).
"""

from __future__ import annotations

import logging
from contextlib import suppress
from typing import Any

import httpx
from pydantic import ValidationError

from comfort_select.models.schemas import WeatherNow
from comfort_select.timeutil import utc_now_iso

logger = logging.getLogger(__name__)

OPEN_METEO_BASE_URL = "https://api.open-meteo.com"

CURRENT_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "wind_speed_10m",
    "wind_direction_10m",
    "precipitation",
    "weather_code",
)

# WMO weather interpretation codes used by Open-Meteo.
WMO_CONDITIONS: dict[int, str] = {
    0: "clear sky",
    1: "mainly clear",
    2: "partly cloudy",
    3: "overcast",
    45: "fog",
    48: "depositing rime fog",
    51: "light drizzle",
    53: "moderate drizzle",
    55: "dense drizzle",
    56: "light freezing drizzle",
    57: "dense freezing drizzle",
    61: "slight rain",
    63: "moderate rain",
    65: "heavy rain",
    66: "light freezing rain",
    67: "heavy freezing rain",
    71: "slight snow",
    73: "moderate snow",
    75: "heavy snow",
    77: "snow grains",
    80: "slight rain showers",
    81: "moderate rain showers",
    82: "violent rain showers",
    85: "slight snow showers",
    86: "heavy snow showers",
    95: "thunderstorm",
    96: "thunderstorm with slight hail",
    99: "thunderstorm with heavy hail",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class WeatherError(Exception):
    """Base exception for weather fetch failures."""


class WeatherTimeoutError(WeatherError):
    """Raised when the weather request exceeds its timeout."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class OpenMeteoClient:
    def __init__(
        self,
        *,
        lat: float,
        lon: float,
        timezone: str,
        timeout: float = 10.0,
        base_url: str = OPEN_METEO_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.lat = lat
        self.lon = lon
        self.timezone = timezone
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        with suppress(Exception):
            await self._client.aclose()

    def _params(self) -> dict[str, Any]:
        return {
            "latitude": self.lat,
            "longitude": self.lon,
            "current": ",".join(CURRENT_FIELDS),
            "temperature_unit": "fahrenheit",
            "wind_speed_unit": "mph",
            "precipitation_unit": "inch",
            "timezone": self.timezone,
        }

    async def get_weather_now(self) -> WeatherNow:
        """Fetch current outdoor conditions.

        Raises:
            WeatherTimeoutError: If Open-Meteo does not answer in time.
            WeatherError: On transport errors, non-2xx status or a malformed payload.
        """
        try:
            response = await self._client.get("/v1/forecast", params=self._params())
        except httpx.TimeoutException as exc:
            raise WeatherTimeoutError(f"Open-Meteo timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise WeatherError(f"Open-Meteo request failed: {exc}") from exc

        if not response.is_success:
            raise WeatherError(f"Open-Meteo error: {response.status_code} {response.reason_phrase}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise WeatherError("Open-Meteo returned invalid JSON") from exc

        current = payload.get("current") if isinstance(payload, dict) else None
        if not isinstance(current, dict):
            raise WeatherError("Open-Meteo response missing current")
        return parse_current(current)


def parse_current(current: dict[str, Any]) -> WeatherNow:
    temp = current.get("temperature_2m")
    rh = current.get("relative_humidity_2m")
    if temp is None or rh is None:
        raise WeatherError("Open-Meteo current conditions missing temperature or humidity")
    code = current.get("weather_code")
    try:
        weather = WeatherNow(
            temp_f=temp,
            rh_pct=rh,
            wind_mph=current.get("wind_speed_10m"),
            wind_dir_deg=current.get("wind_direction_10m"),
            precip_in_hr=current.get("precipitation"),
            conditions=WMO_CONDITIONS.get(code) if isinstance(code, int) else None,
            observation_time_utc=utc_now_iso(),
        )
    except ValidationError as exc:
        raise WeatherError(f"Open-Meteo current conditions are malformed: {exc}") from exc
    logger.debug("Weather now: %.1f°F %.0f%% RH", weather.temp_f, weather.rh_pct)
    return weather


__all__ = [
    "OPEN_METEO_BASE_URL",
    "OpenMeteoClient",
    "WeatherError",
    "WeatherTimeoutError",
    "parse_current",
]
