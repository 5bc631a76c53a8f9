import copy
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from comfort_select.core.telemetry import summarize_telemetry
from comfort_select.integrations.llm.prompts import (
    PromptAssets,
    PromptTemplate,
    build_prompt_assets,
    load_prompt_template,
)
from comfort_select.models.schemas import (
    ActuationResult,
    CycleRecord,
    Decision,
    DeviceState,
    PanelNote,
    PlugState,
    SensorReading,
    SensorsNow,
    TransomState,
    WeatherNow,
)
from comfort_select.models.site import SiteConfig
from comfort_select.timeutil import to_local_iso, to_utc_iso

SITE_DATA: dict[str, Any] = {
    "site": {
        "id": "test_site",
        "label": "Test apartment",
        "timezone": "America/New_York",
        "address": "1 Test St",
        "location": {"lat": 40.7, "lon": -73.9},
    },
    "curators": ["Building Scientist", "HVAC Technician"],
    "rooms": [
        {"id": "kitchen", "label": "Kitchen", "connected_room_ids": ["living"]},
        {"id": "bathroom", "label": "Bathroom", "connected_room_ids": ["bedroom"]},
        {"id": "living", "label": "Living room"},
        {"id": "bedroom", "label": "Bedroom"},
        {"id": "outdoor", "label": "Outdoors", "exterior": True},
    ],
    "connections": [{"from": "living", "to": "bedroom"}],
    "sensors": [
        {"id": "kitchen_main", "room_id": "kitchen", "is_primary_for_room": True},
        {"id": "bathroom_main", "room_id": "bathroom", "is_primary_for_room": True},
        {"id": "living_center", "room_id": "living", "is_primary_for_room": True},
        {"id": "living_radiator", "room_id": "living", "role": "radiator_proximity"},
        {"id": "bedroom_main", "room_id": "bedroom"},
    ],
    "devices": [
        {"id": "kitchen_transom", "room_id": "kitchen", "kind": "transom", "label": "Kitchen transom"},
        {"id": "bathroom_transom", "room_id": "bathroom", "kind": "transom", "label": "Bathroom transom"},
        {"id": "kitchen_vornado_630", "room_id": "kitchen", "kind": "plug", "label": "Kitchen 630"},
        {"id": "living_vornado_630", "room_id": "living", "kind": "plug", "label": "Living 630"},
    ],
    "features": [
        {
            "id": "living_radiator_delta_f",
            "description": "Radiator minus room center",
            "kind": "sensor_delta",
            "metric": "temp_f",
            "a": "living_radiator",
            "b": "living_center",
        },
        {
            "id": "kitchen_vs_bedroom_f",
            "kind": "room_delta",
            "metric": "temp_f",
            "a": "kitchen",
            "b": "bedroom",
        },
    ],
}

BASE_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Site and prompt assets
# ---------------------------------------------------------------------------


@pytest.fixture
def site_data() -> dict[str, Any]:
    return copy.deepcopy(SITE_DATA)


@pytest.fixture
def site_config() -> SiteConfig:
    return SiteConfig.model_validate(SITE_DATA)


@pytest.fixture
def prompt_template() -> PromptTemplate:
    return load_prompt_template()


@pytest.fixture
def prompt_assets(site_config: SiteConfig, prompt_template: PromptTemplate) -> PromptAssets:
    return build_prompt_assets(site_config, prompt_template)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


@pytest.fixture
def weather() -> WeatherNow:
    return WeatherNow(
        temp_f=34.0,
        rh_pct=60.0,
        wind_mph=8.5,
        wind_dir_deg=270.0,
        precip_in_hr=0.0,
        conditions="overcast",
        observation_time_utc="2026-01-15T12:00:00.000Z",
    )


@pytest.fixture
def sensors_now() -> SensorsNow:
    return SensorsNow(
        observation_time_utc="2026-01-15T12:00:00.000Z",
        readings=[
            SensorReading(sensor_id="kitchen_main", temp_f=72.0, rh_pct=40.0),
            SensorReading(sensor_id="bathroom_main", temp_f=74.0, rh_pct=55.0),
            SensorReading(sensor_id="living_center", temp_f=70.0, rh_pct=38.0),
            SensorReading(sensor_id="living_radiator", temp_f=80.0, rh_pct=30.0),
            SensorReading(sensor_id="bedroom_main", temp_f=68.0, rh_pct=42.0),
        ],
    )


@pytest.fixture
def make_decision(site_config: SiteConfig) -> Callable[..., Decision]:
    def _make(
        actions: dict[str, DeviceState] | None = None,
        *,
        confidence: float = 0.7,
        hypothesis: str = "Exhausting the kitchen lowers living room temperature.",
    ) -> Decision:
        base: dict[str, DeviceState] = {
            "kitchen_transom": TransomState(
                power="ON", direction="EXHAUST", speed="LOW", auto=False, set_temp_f=70
            ),
            "bathroom_transom": TransomState(
                power="OFF", direction="EXHAUST", speed="LOW", auto=False, set_temp_f=70
            ),
            "kitchen_vornado_630": PlugState(power="OFF"),
            "living_vornado_630": PlugState(power="ON"),
        }
        base.update(actions or {})
        return Decision(
            panel=[
                PanelNote(speaker=f"{name} (imagined panel)", notes="Keep it steady.")
                for name in site_config.curators
            ],
            actions=base,
            hypothesis=hypothesis,
            confidence_0_1=confidence,
            predictions=[],
        )

    return _make


@pytest.fixture
def make_record(
    site_config: SiteConfig,
    weather: WeatherNow,
    sensors_now: SensorsNow,
    make_decision: Callable[..., Decision],
) -> Callable[..., CycleRecord]:
    counter = iter(range(1, 10_000))

    def _make(
        moment: datetime = BASE_TIME,
        *,
        applied: dict[str, DeviceState] | None = None,
        decision: Decision | None = None,
        readings: list[SensorReading] | None = None,
        errors: list[str] | None = None,
        decision_id: str | None = None,
    ) -> CycleRecord:
        decision = decision or make_decision()
        sensors = sensors_now if readings is None else sensors_now.model_copy(update={"readings": readings})
        telemetry = summarize_telemetry(site_config, sensors)
        errors = errors or []
        return CycleRecord(
            decision_id=decision_id or f"decision_test_{next(counter):04d}",
            llm_model="gpt-test",
            prompt_template_version="default.md#deadbeef",
            site_config_id=site_config.site.id,
            timestamp_local_iso=to_local_iso(moment, "America/New_York"),
            timestamp_utc_iso=to_utc_iso(moment),
            weather=weather,
            sensors=sensors,
            telemetry=telemetry,
            features=telemetry.features,
            decision=decision,
            actuation=ActuationResult(
                applied=dict(decision.actions) if applied is None else applied,
                errors=errors,
                actuation_ok=not errors,
            ),
        )

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    from comfort_select.api.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
