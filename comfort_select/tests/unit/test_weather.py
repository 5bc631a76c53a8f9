"""Unit tests for the Open-Meteo weather client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from comfort_select.integrations.weather import (
    OPEN_METEO_BASE_URL,
    OpenMeteoClient,
    WeatherError,
    WeatherTimeoutError,
    parse_current,
)

CURRENT: dict[str, Any] = {
    "time": "2026-01-15T09:00",
    "temperature_2m": 31.4,
    "relative_humidity_2m": 72,
    "wind_speed_10m": 11.2,
    "wind_direction_10m": 300,
    "precipitation": 0.0,
    "weather_code": 3,
}


def _client(handler) -> OpenMeteoClient:
    return OpenMeteoClient(
        lat=40.7,
        lon=-73.9,
        timezone="America/New_York",
        timeout=1.0,
        client=httpx.AsyncClient(base_url=OPEN_METEO_BASE_URL, transport=httpx.MockTransport(handler)),
    )


class TestParseCurrent:
    def test_maps_fields_and_conditions(self) -> None:
        weather = parse_current(CURRENT)
        assert weather.temp_f == 31.4
        assert weather.rh_pct == 72
        assert weather.wind_mph == 11.2
        assert weather.wind_dir_deg == 300
        assert weather.precip_in_hr == 0.0
        assert weather.conditions == "overcast"
        assert weather.observation_time_utc.endswith("Z")

    def test_unknown_weather_code_has_no_conditions(self) -> None:
        assert parse_current({**CURRENT, "weather_code": 1234}).conditions is None

    def test_missing_temperature_raises(self) -> None:
        with pytest.raises(WeatherError):
            parse_current({"relative_humidity_2m": 50})

    @pytest.mark.parametrize(
        "field,value",
        [("temperature_2m", "n/a"), ("relative_humidity_2m", {"v": 1}), ("wind_speed_10m", "calm")],
    )
    def test_non_numeric_field_raises_weather_error(self, field: str, value: Any) -> None:
        with pytest.raises(WeatherError, match="malformed"):
            parse_current({**CURRENT, field: value})


class TestOpenMeteoClient:
    async def test_requests_imperial_units(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"current": CURRENT})

        client = _client(handler)
        weather = await client.get_weather_now()
        await client.aclose()

        assert weather.conditions == "overcast"
        params = seen[0].url.params
        assert seen[0].url.path == "/v1/forecast"
        assert params["temperature_unit"] == "fahrenheit"
        assert params["wind_speed_unit"] == "mph"
        assert params["precipitation_unit"] == "inch"
        assert "weather_code" in params["current"]

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        with pytest.raises(WeatherTimeoutError):
            await _client(handler).get_weather_now()

    async def test_http_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with pytest.raises(WeatherError, match="500"):
            await _client(handler).get_weather_now()

    async def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(WeatherError, match="invalid JSON"):
            await _client(handler).get_weather_now()

    async def test_missing_current_block(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"hourly": {}})

        with pytest.raises(WeatherError, match="missing current"):
            await _client(handler).get_weather_now()

    async def test_malformed_current_block(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"current": {**CURRENT, "temperature_2m": "n/a"}})

        with pytest.raises(WeatherError, match="malformed"):
            await _client(handler).get_weather_now()
