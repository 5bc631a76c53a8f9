"""Bounded prompt history built from persisted cycle records.

The history fed back to the decider has two parts:

- a table (header + one row per record) whose columns are derived from the
  site config alone, so rows from different cycles stay columnar-consistent;
- a short natural-language trend summary capped at a character budget.

Records are expected in ascending ``timestamp_utc`` order, as returned by the
store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from comfort_select.models.enums import DeviceKind, Power, SensorRole
from comfort_select.models.schemas import CycleRecord, DeviceState, TransomState
from comfort_select.models.site import DeviceDefinition, SensorDefinition, SiteConfig

from .actuation import device_states_equal

logger = logging.getLogger(__name__)

EMPTY_HISTORY_SUMMARY = "No history available (store not reachable or empty)."
ELLIPSIS = "..."
HYPOTHESIS_MAX_CHARS = 200
ERRORS_MAX_CHARS = 280
DEFAULT_SUMMARY_MAX_CHARS = 1200

PROMPT_HISTORY_TAG = "prompt_history"

WEATHER_COLUMNS: tuple[tuple[str, str], ...] = (
    ("weather__outside__temp_f", "temp_f"),
    ("weather__outside__rh_pct", "rh_pct"),
    ("weather__outside__wind_mph", "wind_mph"),
    ("weather__outside__wind_dir_deg", "wind_dir_deg"),
    ("weather__outside__precip_in_hr", "precip_in_hr"),
)


@dataclass(slots=True)
class HistoryWindow:
    history_rows: list[list[str]]
    history_summary: str
    last_applied: dict[str, DeviceState] | None = field(default=None)


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


def format_cell(value: Any) -> str:
    """Render a scalar as a table cell; missing values become ``""``."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def clip(text: str, max_chars: int) -> str:
    """Clip ``text`` to ``max_chars``, ending with an ellipsis when shortened."""
    if len(text) <= max_chars:
        return text
    if max_chars <= len(ELLIPSIS):
        return ELLIPSIS[: max(0, max_chars)]
    return text[: max_chars - len(ELLIPSIS)] + ELLIPSIS


def parse_utc(ts: str) -> datetime | None:
    """Parse an ISO timestamp; values without an offset are taken as UTC."""
    try:
        dt = datetime.fromisoformat(ts)
    except (TypeError, ValueError):
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------


def pick_prompt_sensors(site_config: SiteConfig) -> list[SensorDefinition]:
    """Sensors worth a column: primaries, tagged ones and proximity sensors.

    Falls back to every sensor when none qualify.
    """
    prioritized = [
        s
        for s in site_config.sensors
        if s.is_primary_for_room
        or PROMPT_HISTORY_TAG in s.tags
        or s.role in (SensorRole.radiator_proximity, SensorRole.window_proximity)
    ]
    return prioritized or list(site_config.sensors)


def device_columns(device: DeviceDefinition, suffix: str) -> list[str]:
    columns = [f"device__{device.id}__power_{suffix}"]
    if device.kind == DeviceKind.transom:
        columns += [f"device__{device.id}__direction_{suffix}", f"device__{device.id}__speed_{suffix}"]
    return columns


def build_prompt_history_header(site_config: SiteConfig) -> list[str]:
    header = ["timestamp_local_iso", "timestamp_utc_iso"]
    header += [column for column, _ in WEATHER_COLUMNS]
    for sensor in pick_prompt_sensors(site_config):
        header += [f"temp_f__{sensor.id}", f"rh__{sensor.id}"]
    for room in site_config.interior_rooms:
        header += [f"temp_f_mean__{room.id}", f"rh_mean__{room.id}"]
    header += [f"feature__{feature.id}" for feature in site_config.features]
    for device in site_config.devices:
        header += device_columns(device, "req")
    for device in site_config.devices:
        header += device_columns(device, "applied")
    header += ["hypothesis", "confidence_0_1", "actuation_ok", "actuation_errors_compact"]
    return header


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


def _flatten_device_state(
    device: DeviceDefinition, state: DeviceState | None, suffix: str, into: dict[str, Any]
) -> None:
    into[f"device__{device.id}__power_{suffix}"] = getattr(state, "power", None)
    if device.kind == DeviceKind.transom:
        into[f"device__{device.id}__direction_{suffix}"] = getattr(state, "direction", None)
        into[f"device__{device.id}__speed_{suffix}"] = getattr(state, "speed", None)


def cycle_record_to_prompt_history_row(
    record: CycleRecord, site_config: SiteConfig, header: Sequence[str]
) -> list[str]:
    values: dict[str, Any] = {
        "timestamp_local_iso": record.timestamp_local_iso,
        "timestamp_utc_iso": record.timestamp_utc_iso,
    }
    for column, attr in WEATHER_COLUMNS:
        values[column] = getattr(record.weather, attr)

    readings = {r.sensor_id: r for r in record.sensors.readings}
    for sensor in pick_prompt_sensors(site_config):
        reading = readings.get(sensor.id)
        values[f"temp_f__{sensor.id}"] = reading.temp_f if reading else None
        values[f"rh__{sensor.id}"] = reading.rh_pct if reading else None

    for room in site_config.interior_rooms:
        telemetry = record.telemetry.room(room.id)
        stats = telemetry.stats if telemetry else None
        values[f"temp_f_mean__{room.id}"] = stats.temp_f.mean if stats and stats.temp_f else None
        values[f"rh_mean__{room.id}"] = stats.rh_pct.mean if stats and stats.rh_pct else None

    for feature in site_config.features:
        values[f"feature__{feature.id}"] = record.features.get(feature.id)

    for device in site_config.devices:
        _flatten_device_state(device, record.decision.actions.get(device.id), "req", values)
    for device in site_config.devices:
        _flatten_device_state(device, record.actuation.applied.get(device.id), "applied", values)

    values["hypothesis"] = record.decision.hypothesis[:HYPOTHESIS_MAX_CHARS]
    values["confidence_0_1"] = record.decision.confidence_0_1
    values["actuation_ok"] = record.actuation.actuation_ok
    values["actuation_errors_compact"] = clip(" | ".join(record.actuation.errors), ERRORS_MAX_CHARS)

    return [format_cell(values.get(key)) for key in header]


# ---------------------------------------------------------------------------
# Trend summary
# ---------------------------------------------------------------------------


def describe_state(kind: DeviceKind, state: DeviceState | None) -> str:
    if state is None:
        return "unknown"
    if kind == DeviceKind.transom and isinstance(state, TransomState):
        return "OFF" if state.power == Power.OFF else f"{state.direction}/{state.speed}"
    return str(state.power)


def find_last_actuation_change(records: Sequence[CycleRecord], site_config: SiteConfig) -> str | None:
    """Scan backwards for the most recent applied-state change between consecutive records."""
    for i in range(len(records) - 1, 0, -1):
        current, prev = records[i], records[i - 1]
        for device in site_config.devices:
            now_state = current.actuation.applied.get(device.id)
            prev_state = prev.actuation.applied.get(device.id)
            if now_state is None and prev_state is None:
                continue
            if not device_states_equal(device.kind, now_state, prev_state):
                return (
                    f"last actuation change: {device.id} changed "
                    f"{describe_state(device.kind, prev_state)} -> "
                    f"{describe_state(device.kind, now_state)} at {current.timestamp_local_iso}"
                )
    return None


def format_delta_line(
    label: str, start: float | None, end: float | None, unit: str = ""
) -> str | None:
    if start is None or end is None:
        return None
    delta = end - start
    delta_str = "0" if delta == 0 else f"{delta:.1f}"
    return f"{label}: {end:.1f}{unit} (Δ {delta_str}{unit})"


def _room_means(record: CycleRecord, room_id: str) -> tuple[float | None, float | None]:
    telemetry = record.telemetry.room(room_id)
    if telemetry is None:
        return None, None
    temp = telemetry.stats.temp_f.mean if telemetry.stats.temp_f else None
    rh = telemetry.stats.rh_pct.mean if telemetry.stats.rh_pct else None
    return temp, rh


def summarize_trends(records: Sequence[CycleRecord], site_config: SiteConfig) -> list[str]:
    if not records:
        return ["window: 0 rows"]
    first, last = records[0], records[-1]
    lines = [
        f"window: {len(records)} rows ({first.timestamp_local_iso} -> {last.timestamp_local_iso})",
        find_last_actuation_change(records, site_config)
        or "last actuation change: none (all stable in window)",
    ]

    for room in site_config.interior_rooms:
        first_temp, first_rh = _room_means(first, room.id)
        last_temp, last_rh = _room_means(last, room.id)
        for line in (
            format_delta_line(f"{room.id} temp", first_temp, last_temp, "°F"),
            format_delta_line(f"{room.id} RH", first_rh, last_rh, "%RH"),
        ):
            if line:
                lines.append(line)

    for feature in site_config.features:
        line = format_delta_line(
            f"feature {feature.id}", first.features.get(feature.id), last.features.get(feature.id)
        )
        if line:
            lines.append(line)
    return lines


# ---------------------------------------------------------------------------
# Window
# ---------------------------------------------------------------------------


def filter_by_time_window(records: Sequence[CycleRecord], max_minutes: int | None) -> list[CycleRecord]:
    """Drop records older than ``max_minutes`` before the *last* record's timestamp."""
    if not records or not max_minutes:
        return list(records)
    latest = parse_utc(records[-1].timestamp_utc_iso)
    if latest is None:
        logger.warning("Latest record has an unparseable timestamp; skipping time filter")
        return list(records)
    cutoff = latest - timedelta(minutes=max_minutes)
    kept = []
    for record in records:
        ts = parse_utc(record.timestamp_utc_iso)
        if ts is not None and ts >= cutoff:
            kept.append(record)
    return kept


def build_prompt_history_window(
    records: Sequence[CycleRecord],
    site_config: SiteConfig,
    max_rows: int,
    max_minutes: int | None = None,
    summary_max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
) -> HistoryWindow:
    """Build the bounded history table, trend summary and last applied state.

    The table always contains at least the header row. ``last_applied`` is
    taken from the newest record of the unfiltered input so actuation state
    survives gaps in the prompt window.
    """
    header = build_prompt_history_header(site_config)
    if not records:
        return HistoryWindow(history_rows=[header], history_summary=EMPTY_HISTORY_SUMMARY)

    recent = filter_by_time_window(records, max_minutes)
    trimmed = recent[-max_rows:] if max_rows > 0 else []
    rows = [cycle_record_to_prompt_history_row(rec, site_config, header) for rec in trimmed]
    summary = clip("\n".join(summarize_trends(trimmed, site_config)), summary_max_chars)

    logger.debug(
        "History window: %d of %d records (max_rows=%s, max_minutes=%s)",
        len(trimmed),
        len(records),
        max_rows,
        max_minutes,
    )
    return HistoryWindow(
        history_rows=[header, *rows],
        history_summary=summary,
        last_applied=dict(records[-1].actuation.applied),
    )


__all__ = [
    "EMPTY_HISTORY_SUMMARY",
    "HistoryWindow",
    "build_prompt_history_header",
    "build_prompt_history_window",
    "clip",
    "cycle_record_to_prompt_history_row",
    "describe_state",
    "device_columns",
    "filter_by_time_window",
    "find_last_actuation_change",
    "format_cell",
    "format_delta_line",
    "parse_utc",
    "pick_prompt_sensors",
    "summarize_trends",
]
