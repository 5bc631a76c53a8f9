"""Unit tests for the Ecowitt sensor sources."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from comfort_select.config import Settings
from comfort_select.integrations.sensors import (
    EcowittCloudSensorSource,
    LocalGatewaySensorSource,
    MockSensorSource,
    SensorError,
    SensorMapping,
    SensorTimeoutError,
    build_sensor_source,
    coerce_number,
    extract_mac,
    find_value,
    load_sensor_mapping,
    map_readings_from_payload,
    normalize_realtime_payload,
)
from comfort_select.models.schemas import SensorReading
from comfort_select.result import Err, FailureReason

REPO_ROOT = Path(__file__).resolve().parents[3]
MAPPING_PATH = REPO_ROOT / "config" / "sensors.mapping.json"
MOCK_PATH = REPO_ROOT / "mock" / "ecowitt.sample.json"

MAPPING = SensorMapping.model_validate(
    {
        "sensors": [
            {"id": "kitchen_main", "temp_key": "temp1f", "humidity_key": "humidity1"},
            {"id": "living_center", "temp_key": "temp2f", "humidity_key": "humidity2"},
        ]
    }
)


@pytest.fixture
def mapping_path(tmp_path: Path) -> Path:
    path = tmp_path / "mapping.json"
    path.write_text(MAPPING.model_dump_json(), encoding="utf-8")
    return path


# ===========================================================================
# Payload helpers
# ===========================================================================


class TestPayloadHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [(72, 72.0), ("71.5", 71.5), (" 40 ", 40.0), ("n/a", None), (True, None), (float("nan"), None), (None, None)],
    )
    def test_coerce_number(self, value: Any, expected: float | None) -> None:
        assert coerce_number(value) == expected

    def test_find_value_nested_and_wrapped(self) -> None:
        payload = {"common_list": [{"id": "x"}, {"temp1f": {"value": "70.1", "unit": "F"}}]}
        assert find_value(payload, "temp1f") == "70.1"
        assert find_value(payload, "missing") is None

    def test_map_readings_skips_missing_and_non_numeric(self) -> None:
        readings = map_readings_from_payload(
            MAPPING, {"temp1f": "72.0", "humidity1": "40", "temp2f": "--", "humidity2": "38"}
        )
        assert [(r.sensor_id, r.temp_f, r.rh_pct) for r in readings] == [("kitchen_main", 72.0, 40.0)]

    def test_normalize_realtime_payload(self) -> None:
        data = {
            "indoor": {"temperature": {"value": "71.2"}, "humidity": {"value": "39"}},
            "temp_and_humidity_ch1": {"temperature": {"value": "70.0"}, "humidity": {"value": "41"}},
            "temp_and_humidity_ch3": {"temperature": {"value": "68.5"}},
        }
        normalized, channels = normalize_realtime_payload(data)
        assert channels == [1, 3]
        assert normalized["temp1f"] == "70.0"
        assert normalized["humidity1"] == "41"
        assert normalized["temp3f"] == "68.5"
        assert "humidity3" not in normalized
        assert normalized["tempinf"] == "71.2"

    def test_extract_mac(self) -> None:
        assert extract_mac({"mac": "AA:BB:CC:DD:EE:FF"}) == "AA:BB:CC:DD:EE:FF"
        assert extract_mac({"mac": "not-a-mac"}) is None
        assert extract_mac("AA:BB:CC:DD:EE:FF") is None

    def test_invalid_mapping_is_validation_failure(self, tmp_path: Path) -> None:
        path = tmp_path / "mapping.json"
        path.write_text(json.dumps({"sensors": [{"id": "x"}]}), encoding="utf-8")
        result = load_sensor_mapping(path)
        assert isinstance(result, Err)
        assert result.reason == FailureReason.validation_failed


# ===========================================================================
# Sources
# ===========================================================================


class TestMockSensorSource:
    async def test_shipped_sample_maps_every_sensor(self) -> None:
        snapshot = await MockSensorSource(mapping_path=MAPPING_PATH, mock_path=MOCK_PATH).get_sensors_now()
        assert len(snapshot.readings) == 7
        radiator = next(r for r in snapshot.readings if r.sensor_id == "living_radiator")
        assert radiator.temp_f == 79.3
        assert snapshot.raw["model"] == "GW2000A"

    async def test_missing_mock_file_raises(self, mapping_path: Path, tmp_path: Path) -> None:
        with pytest.raises(SensorError, match="not_found"):
            await MockSensorSource(mapping_path=mapping_path, mock_path=tmp_path / "none.json").get_sensors_now()

    async def test_no_mapped_readings_raises(self, mapping_path: Path, tmp_path: Path) -> None:
        mock = tmp_path / "payload.json"
        mock.write_text(json.dumps({"tempinf": "70"}), encoding="utf-8")
        with pytest.raises(SensorError, match="did not include any mapped sensor readings"):
            await MockSensorSource(mapping_path=mapping_path, mock_path=mock).get_sensors_now()

    async def test_malformed_reading_raises_sensor_error(self, mapping_path: Path, tmp_path: Path) -> None:
        mock = tmp_path / "payload.json"
        mock.write_text(json.dumps({"temp1f": "70", "humidity1": "40"}), encoding="utf-8")

        def malformed(*_: Any) -> list[SensorReading]:
            return [SensorReading.model_validate({"sensor_id": "kitchen_main", "temp_f": "warm"})]

        with patch("comfort_select.integrations.sensors.map_readings_from_payload", side_effect=malformed):
            with pytest.raises(SensorError, match="malformed sensor readings"):
                await MockSensorSource(mapping_path=mapping_path, mock_path=mock).get_sensors_now()


class TestLocalGatewaySensorSource:
    def _source(self, mapping_path: Path, handler) -> LocalGatewaySensorSource:
        return LocalGatewaySensorSource(
            gateway_url="http://gateway.local",
            mapping_path=mapping_path,
            timeout=1.0,
            client=httpx.AsyncClient(base_url="http://gateway.local", transport=httpx.MockTransport(handler)),
        )

    async def test_reads_livedata(self, mapping_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/get_livedata_info"
            return httpx.Response(
                200, json={"ch_aisle": [{"temp1f": "72.3", "humidity1": "40", "temp2f": "70", "humidity2": "37"}]}
            )

        snapshot = await self._source(mapping_path, handler).get_sensors_now()
        assert {r.sensor_id: r.temp_f for r in snapshot.readings} == {"kitchen_main": 72.3, "living_center": 70.0}

    async def test_timeout(self, mapping_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(SensorTimeoutError):
            await self._source(mapping_path, handler).get_sensors_now()

    async def test_error_status(self, mapping_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        with pytest.raises(SensorError, match="503"):
            await self._source(mapping_path, handler).get_sensors_now()


class TestEcowittCloudSensorSource:
    def _source(self, mapping_path: Path, handler, device_mac: str | None = None) -> EcowittCloudSensorSource:
        return EcowittCloudSensorSource(
            application_key="app",
            api_key="key",
            mapping_path=mapping_path,
            device_mac=device_mac,
            timeout=1.0,
            client=httpx.AsyncClient(base_url="https://cloud.test", transport=httpx.MockTransport(handler)),
        )

    async def test_resolves_mac_then_reads_real_time(self, mapping_path: Path) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/api/v3/device/list":
                return httpx.Response(200, json={"data": {"list": [{"mac": "AA:BB:CC:DD:EE:FF"}]}})
            return httpx.Response(
                200,
                json={
                    "code": 0,
                    "data": {
                        "temp_and_humidity_ch1": {"temperature": {"value": "72"}, "humidity": {"value": "40"}},
                        "temp_and_humidity_ch2": {"temperature": {"value": "69.5"}, "humidity": {"value": "36"}},
                    },
                },
            )

        snapshot = await self._source(mapping_path, handler).get_sensors_now()

        assert seen[1].url.params["mac"] == "AA:BB:CC:DD:EE:FF"
        assert seen[1].url.params["application_key"] == "app"
        assert {r.sensor_id: r.temp_f for r in snapshot.readings} == {"kitchen_main": 72.0, "living_center": 69.5}
        assert snapshot.raw["data"]["temp1f"] == "72"

    async def test_configured_mac_matched_case_insensitively(self, mapping_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"mac": "AA:BB:CC:DD:EE:01"}, {"mac": "AA:BB:CC:DD:EE:02"}]})

        mac = await self._source(mapping_path, handler, device_mac="aabbccddee02").resolve_device_mac()
        assert mac == "AA:BB:CC:DD:EE:02"

    async def test_no_devices_raises(self, mapping_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": []})

        with pytest.raises(SensorError, match="did not return any device"):
            await self._source(mapping_path, handler).resolve_device_mac()


class TestBuildSensorSource:
    def test_mock_is_default(self) -> None:
        assert isinstance(build_sensor_source(Settings(_env_file=None)), MockSensorSource)

    def test_gateway_requires_url(self) -> None:
        with pytest.raises(SensorError, match="ecowitt_gateway_url"):
            build_sensor_source(Settings(_env_file=None, sensor_source="local_gateway"))

    def test_cloud_requires_keys(self) -> None:
        with pytest.raises(SensorError, match="keys"):
            build_sensor_source(Settings(_env_file=None, sensor_source="cloud_api"))
