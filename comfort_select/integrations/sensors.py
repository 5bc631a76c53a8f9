"""Ecowitt sensor sources: local gateway, cloud API and a mock file.

All sources translate a vendor payload into :class:`SensorsNow` through a
mapping file that names, for every site sensor id, the payload keys holding
its temperature (°F) and relative humidity::

    {"sensors": [{"id": "living_center", "temp_key": "temp1f", "humidity_key": "humidity1"}]}
"""

from __future__ import annotations

import logging
import math
import re
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from comfort_select.config import Settings
from comfort_select.models.enums import SensorSource
from comfort_select.models.schemas import SensorReading, SensorsNow
from comfort_select.result import Err, FailureReason, Ok, Result, load_json_file
from comfort_select.timeutil import utc_now_iso

logger = logging.getLogger(__name__)

ECOWITT_CLOUD_BASE_URL = "https://api.ecowitt.net"

_CHANNEL_KEY = re.compile(r"^temp_and_humidity_ch(\d+)$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SensorError(Exception):
    """Base exception for sensor fetch failures."""


class SensorTimeoutError(SensorError):
    """Raised when a sensor request exceeds its timeout."""


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


class SensorMappingEntry(BaseModel):
    id: str = Field(min_length=1)
    temp_key: str = Field(min_length=1)
    humidity_key: str = Field(min_length=1)


class SensorMapping(BaseModel):
    sensors: list[SensorMappingEntry] = Field(default_factory=list)


def load_sensor_mapping(path: str | Path) -> Result[SensorMapping]:
    raw = load_json_file(path)
    if isinstance(raw, Err):
        return raw
    try:
        return Ok(SensorMapping.model_validate(raw.value))
    except ValidationError as exc:
        return Err(FailureReason.validation_failed, f"sensor mapping is invalid: {exc}")


def _require_mapping(path: str | Path) -> SensorMapping:
    mapping = load_sensor_mapping(path)
    if isinstance(mapping, Err):
        raise SensorError(f"cannot load sensor mapping ({mapping.reason}): {mapping.detail}")
    return mapping.value


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def coerce_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def find_value(payload: Any, key: str) -> Any:
    """Depth-first lookup of ``key``; ``{"value": x}`` wrappers are unwrapped."""
    if isinstance(payload, dict):
        if key in payload:
            found = payload[key]
            if isinstance(found, dict) and "value" in found:
                return found["value"]
            return found
        children = payload.values()
    elif isinstance(payload, list):
        children = payload
    else:
        return None
    for child in children:
        found = find_value(child, key)
        if found is not None:
            return found
    return None


def _unwrap(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("value")
    return value


def normalize_realtime_payload(data: Any) -> tuple[dict[str, Any], list[int]]:
    """Flatten Ecowitt cloud ``real_time`` data to gateway-style keys.

    ``temp_and_humidity_chN`` becomes ``tempNf`` / ``humidityN`` and
    ``indoor`` becomes ``tempinf`` / ``humidityin``. Returns the normalized
    dict and the sorted channel numbers found.
    """
    normalized: dict[str, Any] = dict(data) if isinstance(data, dict) else {}
    channels: set[int] = set()

    for key, value in normalized.copy().items():
        match = _CHANNEL_KEY.match(key)
        if not match or not isinstance(value, dict):
            continue
        channel = int(match.group(1))
        temperature = _unwrap(value.get("temperature"))
        humidity = _unwrap(value.get("humidity"))
        if temperature is not None:
            normalized[f"temp{channel}f"] = temperature
        if humidity is not None:
            normalized[f"humidity{channel}"] = humidity
        channels.add(channel)

    indoor = normalized.get("indoor")
    if isinstance(indoor, dict):
        temperature = _unwrap(indoor.get("temperature"))
        humidity = _unwrap(indoor.get("humidity"))
        if temperature is not None:
            normalized["tempinf"] = temperature
        if humidity is not None:
            normalized["humidityin"] = humidity

    return normalized, sorted(channels)


def map_readings_from_payload(mapping: SensorMapping, payload: Any) -> list[SensorReading]:
    """Map payload keys to readings, skipping sensors that are missing or non-numeric."""
    readings: list[SensorReading] = []
    for entry in mapping.sensors:
        temp_raw = find_value(payload, entry.temp_key)
        rh_raw = find_value(payload, entry.humidity_key)
        if temp_raw is None or rh_raw is None:
            logger.warning(
                "Payload missing keys %s/%s for sensor %s; skipping",
                entry.temp_key,
                entry.humidity_key,
                entry.id,
            )
            continue
        temp, rh = coerce_number(temp_raw), coerce_number(rh_raw)
        if temp is None or rh is None:
            logger.warning(
                "Non-numeric values for sensor %s (temp=%r, rh=%r); skipping", entry.id, temp_raw, rh_raw
            )
            continue
        readings.append(SensorReading(sensor_id=entry.id, temp_f=temp, rh_pct=rh))
    return readings


def _snapshot(mapping: SensorMapping, payload: Any, *, source: str, raw: Any = None) -> SensorsNow:
    try:
        readings = map_readings_from_payload(mapping, payload)
        if not readings:
            raise SensorError(f"{source} payload did not include any mapped sensor readings")
        snapshot = SensorsNow(
            observation_time_utc=utc_now_iso(),
            readings=readings,
            raw=payload if raw is None else raw,
        )
    except ValidationError as exc:
        raise SensorError(f"{source} payload produced malformed sensor readings: {exc}") from exc
    logger.debug("%s: %d of %d mapped sensors reporting", source, len(readings), len(mapping.sensors))
    return snapshot


def _translate_http_error(exc: httpx.HTTPError, source: str, timeout: float) -> SensorError:
    if isinstance(exc, httpx.TimeoutException):
        return SensorTimeoutError(f"{source} timed out after {timeout}s")
    return SensorError(f"{source} request failed: {exc}")


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class SensorSourceClient(Protocol):
    async def get_sensors_now(self) -> SensorsNow: ...

    async def aclose(self) -> None: ...


class MockSensorSource:
    """Reads a captured gateway payload from disk."""

    def __init__(self, *, mapping_path: str | Path, mock_path: str | Path) -> None:
        self.mapping_path = mapping_path
        self.mock_path = mock_path

    async def aclose(self) -> None:
        return None

    async def get_sensors_now(self) -> SensorsNow:
        mapping = _require_mapping(self.mapping_path)
        payload = load_json_file(self.mock_path)
        if isinstance(payload, Err):
            raise SensorError(f"cannot load mock sensor payload ({payload.reason}): {payload.detail}")
        return _snapshot(mapping, payload.value, source="mock")


class LocalGatewaySensorSource:
    """Polls an Ecowitt gateway's ``/get_livedata_info`` endpoint on the LAN."""

    def __init__(
        self,
        *,
        gateway_url: str,
        mapping_path: str | Path,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.mapping_path = mapping_path
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=gateway_url.rstrip("/"), timeout=timeout)

    async def aclose(self) -> None:
        with suppress(Exception):
            await self._client.aclose()

    async def get_sensors_now(self) -> SensorsNow:
        mapping = _require_mapping(self.mapping_path)
        try:
            response = await self._client.get("/get_livedata_info")
        except httpx.HTTPError as exc:
            raise _translate_http_error(exc, "Ecowitt gateway", self._timeout) from exc
        if not response.is_success:
            raise SensorError(f"Ecowitt gateway error: {response.status_code} {response.reason_phrase}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise SensorError("Ecowitt gateway returned invalid JSON") from exc
        return _snapshot(mapping, payload, source="Ecowitt gateway")


class EcowittCloudSensorSource:
    """Reads real-time data from the Ecowitt cloud API (v3)."""

    def __init__(
        self,
        *,
        application_key: str,
        api_key: str,
        mapping_path: str | Path,
        device_mac: str | None = None,
        base_url: str = ECOWITT_CLOUD_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.application_key = application_key
        self.api_key = api_key
        self.mapping_path = mapping_path
        self.device_mac = (device_mac or "").strip() or None
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def aclose(self) -> None:
        with suppress(Exception):
            await self._client.aclose()

    def _auth_params(self) -> dict[str, str]:
        return {"application_key": self.application_key, "api_key": self.api_key}

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise _translate_http_error(exc, f"Ecowitt Cloud {path}", self._timeout) from exc
        if not response.is_success:
            raise SensorError(
                f"Ecowitt Cloud {path} error: {response.status_code} {response.reason_phrase}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SensorError(f"Ecowitt Cloud {path} returned invalid JSON") from exc

    async def resolve_device_mac(self) -> str:
        """Return the configured MAC or the first device found via ``device/list``."""
        payload = await self._get_json(
            "/api/v3/device/list", {**self._auth_params(), "limit": 10, "page": 1}
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        items: list[Any] = []
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            for key in ("list", "items", "devices"):
                if isinstance(data.get(key), list):
                    items.extend(data[key])

        macs = [mac for mac in (extract_mac(item) for item in items) if mac]
        if self.device_mac:
            wanted = normalize_mac(self.device_mac)
            if len(wanted) != 12:
                raise SensorError(f"configured Ecowitt device MAC is not a MAC address: {self.device_mac!r}")
            for mac in macs:
                if normalize_mac(mac) == wanted:
                    return mac
            logger.warning("Configured Ecowitt MAC %s not in device list; using it anyway", self.device_mac)
            return self.device_mac
        if not macs:
            raise SensorError("Ecowitt Cloud device/list did not return any device with a MAC")
        if len(macs) > 1:
            logger.info("Ecowitt Cloud returned %d devices; using %s", len(macs), macs[0])
        return macs[0]

    async def get_sensors_now(self) -> SensorsNow:
        mapping = _require_mapping(self.mapping_path)
        mac = await self.resolve_device_mac()
        payload = await self._get_json(
            "/api/v3/device/real_time", {**self._auth_params(), "mac": mac, "call_back": "all"}
        )
        data = payload.get("data", payload) if isinstance(payload, dict) else payload
        normalized, channels = normalize_realtime_payload(data)
        logger.debug("Ecowitt Cloud channels discovered: %s", channels)
        raw = {**payload, "data": normalized} if isinstance(payload, dict) else normalized
        return _snapshot(mapping, normalized, source="Ecowitt Cloud", raw=raw)


def normalize_mac(mac: str) -> str:
    return re.sub(r"[^a-fA-F0-9]", "", mac).lower()


def extract_mac(device: Any) -> str | None:
    if not isinstance(device, dict):
        return None
    for key in ("mac", "device_mac", "macAddress", "device_mac_address", "deviceMac"):
        candidate = device.get(key)
        if isinstance(candidate, str) and len(normalize_mac(candidate.strip())) == 12:
            return candidate.strip()
    return None


def build_sensor_source(settings: Settings) -> SensorSourceClient:
    """Construct the sensor source selected by ``settings.sensor_source``."""
    source = SensorSource(settings.sensor_source)
    if source == SensorSource.local_gateway:
        if not settings.ecowitt_gateway_url:
            raise SensorError("local_gateway sensor source requires ecowitt_gateway_url")
        return LocalGatewaySensorSource(
            gateway_url=settings.ecowitt_gateway_url,
            mapping_path=settings.sensor_mapping_path,
            timeout=settings.http_timeout_s,
        )
    if source == SensorSource.cloud_api:
        if not settings.ecowitt_cloud_application_key or not settings.ecowitt_cloud_api_key:
            raise SensorError("cloud_api sensor source requires Ecowitt application and API keys")
        return EcowittCloudSensorSource(
            application_key=settings.ecowitt_cloud_application_key,
            api_key=settings.ecowitt_cloud_api_key,
            mapping_path=settings.sensor_mapping_path,
            device_mac=settings.ecowitt_cloud_device_mac,
            base_url=settings.ecowitt_cloud_base_url,
            timeout=settings.http_timeout_s,
        )
    return MockSensorSource(mapping_path=settings.sensor_mapping_path, mock_path=settings.sensor_mock_path)


__all__ = [
    "EcowittCloudSensorSource",
    "LocalGatewaySensorSource",
    "MockSensorSource",
    "SensorError",
    "SensorMapping",
    "SensorMappingEntry",
    "SensorSourceClient",
    "SensorTimeoutError",
    "build_sensor_source",
    "coerce_number",
    "extract_mac",
    "find_value",
    "load_sensor_mapping",
    "map_readings_from_payload",
    "normalize_mac",
    "normalize_realtime_payload",
]
