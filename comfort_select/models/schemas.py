"""Pydantic schemas for comfort-select cycle data."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import Power, RepresentativeMethod, TransomDirection, TransomSpeed

# ---------------------------------------------------------------------------
# Observations
# ---------------------------------------------------------------------------


class WeatherNow(BaseModel):
    temp_f: float
    rh_pct: float
    wind_mph: float | None = None
    wind_dir_deg: float | None = None
    precip_in_hr: float | None = None
    conditions: str | None = None
    observation_time_utc: str


class SensorReading(BaseModel):
    sensor_id: str
    temp_f: float
    rh_pct: float


class SensorsNow(BaseModel):
    observation_time_utc: str
    readings: list[SensorReading] = Field(default_factory=list)
    raw: Any = None


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class StatSummary(BaseModel):
    min: float
    max: float
    mean: float
    count: int


class RoomStats(BaseModel):
    temp_f: StatSummary | None = None
    rh_pct: StatSummary | None = None


class SensorWithReading(BaseModel):
    sensor_id: str
    role: str
    is_primary_for_room: bool = False
    reading: SensorReading | None = None


class Representative(BaseModel):
    sensor_id: str
    temp_f: float | None = None
    rh_pct: float | None = None
    method: RepresentativeMethod


class RoomTelemetry(BaseModel):
    room_id: str
    sensors: list[SensorWithReading] = Field(default_factory=list)
    stats: RoomStats = Field(default_factory=RoomStats)
    representative: Representative | None = None


class TelemetrySummary(BaseModel):
    rooms: list[RoomTelemetry] = Field(default_factory=list)
    features: dict[str, float | None] = Field(default_factory=dict)

    def room(self, room_id: str) -> RoomTelemetry | None:
        return next((r for r in self.rooms if r.room_id == room_id), None)


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


class TransomState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    power: Power
    direction: TransomDirection
    speed: TransomSpeed
    auto: bool
    set_temp_f: int = Field(ge=60, le=90)


class PlugState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    power: Power


DeviceState = TransomState | PlugState


class PanelNote(BaseModel):
    speaker: str = Field(min_length=1)
    notes: str = Field(min_length=1)


class Prediction(BaseModel):
    target_id: str
    temp_f_delta: float | None = None
    rh_pct_delta: float | None = None


class Decision(BaseModel):
    panel: list[PanelNote]
    actions: dict[str, DeviceState]
    hypothesis: str = Field(min_length=1)
    confidence_0_1: float = Field(ge=0, le=1)
    predictions: list[Prediction] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Actuation & persistence
# ---------------------------------------------------------------------------


class ActuationResult(BaseModel):
    applied: dict[str, DeviceState] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    actuation_ok: bool = True
    skipped: list[str] = Field(default_factory=list)


class CycleRecord(BaseModel):
    decision_id: str
    llm_model: str
    llm_response_id: str | None = None
    prompt_template_version: str
    site_config_id: str
    timestamp_local_iso: str
    timestamp_utc_iso: str
    weather: WeatherNow
    sensors: SensorsNow
    telemetry: TelemetrySummary
    features: dict[str, float | None] = Field(default_factory=dict)
    decision: Decision
    actuation: ActuationResult
    blocking_errors: list[str] = Field(default_factory=list)
    decision_errors: list[str] = Field(default_factory=list)
    non_blocking_errors: list[str] = Field(default_factory=list)


__all__ = [
    "ActuationResult",
    "CycleRecord",
    "Decision",
    "DeviceState",
    "PanelNote",
    "PlugState",
    "Prediction",
    "Representative",
    "RoomStats",
    "RoomTelemetry",
    "SensorReading",
    "SensorWithReading",
    "SensorsNow",
    "StatSummary",
    "TelemetrySummary",
    "TransomState",
    "WeatherNow",
]
