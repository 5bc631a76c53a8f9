"""Reduce raw per-sensor readings into per-room statistics and derived features."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from comfort_select.models.enums import FeatureKind, Metric, RepresentativeMethod, SensorRole
from comfort_select.models.schemas import (
    Representative,
    RoomStats,
    RoomTelemetry,
    SensorReading,
    SensorsNow,
    SensorWithReading,
    StatSummary,
    TelemetrySummary,
)
from comfort_select.models.site import FeatureDefinition, Room, SiteConfig

logger = logging.getLogger(__name__)


def to_stats(values: Iterable[float | None]) -> StatSummary | None:
    """Return min/max/mean over the finite values, or ``None`` if there are none."""
    nums = [v for v in values if v is not None and math.isfinite(v)]
    if not nums:
        return None
    return StatSummary(
        min=round(min(nums), 2),
        max=round(max(nums), 2),
        mean=round(sum(nums) / len(nums), 2),
        count=len(nums),
    )


def _metric_value(reading: SensorReading | None, metric: Metric) -> float | None:
    if reading is None:
        return None
    value = reading.temp_f if metric == Metric.temp_f else reading.rh_pct
    return value if math.isfinite(value) else None


def _summarize_room(
    room: Room,
    site_config: SiteConfig,
    lookup: dict[str, SensorReading],
) -> RoomTelemetry:
    room_sensors = site_config.sensors_in_room(room.id)
    sensors = [
        SensorWithReading(
            sensor_id=s.id,
            role=s.role,
            is_primary_for_room=s.is_primary_for_room,
            reading=lookup.get(s.id),
        )
        for s in room_sensors
    ]

    # Radiator-proximity sensors count only when they are all the room has.
    comfort = [s for s in sensors if s.role != SensorRole.radiator_proximity] or sensors
    stats = RoomStats(
        temp_f=to_stats(_metric_value(s.reading, Metric.temp_f) for s in comfort),
        rh_pct=to_stats(_metric_value(s.reading, Metric.rh_pct) for s in comfort),
    )

    representative: Representative | None = None
    primary = next((s for s in sensors if s.is_primary_for_room and s.reading), None)
    chosen = primary or next((s for s in sensors if s.reading), None)
    if chosen is not None and chosen.reading is not None:
        temp = _metric_value(chosen.reading, Metric.temp_f)
        rh = _metric_value(chosen.reading, Metric.rh_pct)
        representative = Representative(
            sensor_id=chosen.sensor_id,
            temp_f=round(temp, 2) if temp is not None else None,
            rh_pct=round(rh, 2) if rh is not None else None,
            method=(
                RepresentativeMethod.primary_sensor
                if primary is not None
                else RepresentativeMethod.first_available
            ),
        )

    return RoomTelemetry(
        room_id=room.id, sensors=sensors, stats=stats, representative=representative
    )


def compute_feature(
    feature: FeatureDefinition,
    lookup: dict[str, SensorReading],
    rooms: dict[str, RoomTelemetry],
) -> float | None:
    """Evaluate ``a - b`` for a feature definition; ``None`` when either side is missing."""
    if feature.kind == FeatureKind.sensor_delta:
        a = _metric_value(lookup.get(feature.a), feature.metric)
        b = _metric_value(lookup.get(feature.b), feature.metric)
    else:
        a = _room_mean(rooms.get(feature.a), feature.metric)
        b = _room_mean(rooms.get(feature.b), feature.metric)
    if a is None or b is None:
        return None
    return round(a - b, 2)


def _room_mean(room: RoomTelemetry | None, metric: Metric) -> float | None:
    if room is None:
        return None
    stat = room.stats.temp_f if metric == Metric.temp_f else room.stats.rh_pct
    return stat.mean if stat is not None else None


def summarize_telemetry(site_config: SiteConfig, sensors_now: SensorsNow) -> TelemetrySummary:
    """Summarize one cycle's readings. Pure; empty readings yield ``None`` stats."""
    lookup = {r.sensor_id: r for r in sensors_now.readings}
    rooms = [_summarize_room(room, site_config, lookup) for room in site_config.rooms]
    by_id = {r.room_id: r for r in rooms}
    features = {f.id: compute_feature(f, lookup, by_id) for f in site_config.features}

    unknown = set(lookup) - {s.id for s in site_config.sensors}
    if unknown:
        logger.debug("Ignoring readings for unmapped sensors: %s", sorted(unknown))

    return TelemetrySummary(rooms=rooms, features=features)


__all__ = ["compute_feature", "summarize_telemetry", "to_stats"]
