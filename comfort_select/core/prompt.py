"""Assemble the decision prompt from live telemetry, site topology and history.

If the rendered prompt exceeds ``prompt_max_chars`` the history table is
shrunk with a geometric backoff (``window -= ceil(window / 3)``) and
re-rendered. The CSV block is never cut mid-row: when even the header-only
render is over budget, the header-only prompt is returned as is.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from comfort_select.integrations.llm.prompts import PromptAssets
from comfort_select.models.schemas import (
    RoomTelemetry,
    SensorReading,
    SensorsNow,
    StatSummary,
    TelemetrySummary,
    WeatherNow,
)
from comfort_select.models.site import SiteConfig

from .history import build_prompt_history_header, format_cell
from .psychrometrics import absolute_humidity_gm3, dew_point_f
from .telemetry import summarize_telemetry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PromptBuild:
    prompt: str
    prompt_version: str
    site_config_id: str


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

_CSV_SPECIAL = (",", '"', "\n", "\r")


def _csv_cell(cell: object) -> str:
    s = format_cell(cell)
    if any(ch in s for ch in _CSV_SPECIAL):
        return '"' + s.replace('"', '""') + '"'
    return s


def to_csv(rows: Sequence[Sequence[object]]) -> str:
    """Render rows RFC 4180 style, joined by ``\\n``."""
    return "\n".join(",".join(_csv_cell(cell) for cell in row) for row in rows)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _or_unknown(value: float | None) -> str:
    return "?" if value is None else format_cell(value)


def build_weather_line(weather: WeatherNow) -> str:
    parts = [f"{weather.temp_f:.1f}°F", f"{weather.rh_pct:.0f}% RH"]
    if weather.conditions:
        parts.append(f"conditions: {weather.conditions}")
    parts.append(f"wind: {_or_unknown(weather.wind_mph)} mph @ {_or_unknown(weather.wind_dir_deg)}°")
    parts.append(f"precip: {_or_unknown(weather.precip_in_hr)} in/hr")
    return "; ".join(parts)


def build_adjacency(site_config: SiteConfig) -> dict[str, list[str]]:
    """Symmetric room graph from ``connected_room_ids`` plus explicit connections."""
    adjacency: dict[str, set[str]] = {}

    def add_edge(a: str, b: str) -> None:
        adjacency.setdefault(a, set()).add(b)
        adjacency.setdefault(b, set()).add(a)

    for room in site_config.rooms:
        for neighbor in room.connected_room_ids:
            add_edge(room.id, neighbor)
    for edge in site_config.connections:
        add_edge(edge.from_room, edge.to_room)
    return {room: sorted(neighbors) for room, neighbors in sorted(adjacency.items())}


def _reading_line(reading: SensorReading) -> str:
    dew = dew_point_f(reading.temp_f, reading.rh_pct)
    ah = absolute_humidity_gm3(reading.temp_f, reading.rh_pct)
    return (
        f"{reading.temp_f:.1f}°F, {reading.rh_pct:.0f}% RH, "
        f"dew point {dew:.1f}°F, AH {ah:.2f} g/m³"
    )


def render_sensor_lines(site_config: SiteConfig, sensors: SensorsNow) -> str:
    lookup = {r.sensor_id: r for r in sensors.readings}
    lines: list[str] = []
    for room in site_config.rooms:
        lines.append(f"- {room.id} ({room.label}{', exterior' if room.exterior else ''}):")
        room_sensors = site_config.sensors_in_room(room.id)
        if not room_sensors:
            lines.append("  - no sensors")
        for sensor in room_sensors:
            flags = [str(sensor.role)] + (["primary"] if sensor.is_primary_for_room else [])
            reading = lookup.get(sensor.id)
            body = _reading_line(reading) if reading else "no reading"
            lines.append(f"  - {sensor.id} [{', '.join(flags)}]: {body}")
    return "\n".join(lines)


def _stat_text(stat: StatSummary | None, unit: str) -> str:
    if stat is None:
        return "n/a"
    return f"{stat.mean:.1f}{unit} (min {stat.min:.1f} / max {stat.max:.1f}, n={stat.count})"


def _room_summary_line(room: RoomTelemetry) -> str:
    if room.stats.temp_f is None and room.stats.rh_pct is None:
        return f"- {room.room_id}: no readings"
    line = (
        f"- {room.room_id}: temp {_stat_text(room.stats.temp_f, '°F')}; "
        f"RH {_stat_text(room.stats.rh_pct, '%')}"
    )
    if room.representative:
        line += f"; representative {room.representative.sensor_id} ({room.representative.method})"
    return line


def render_room_summaries(telemetry: TelemetrySummary) -> str:
    return "\n".join(_room_summary_line(room) for room in telemetry.rooms) or "(no rooms)"


def render_adjacency(site_config: SiteConfig) -> str:
    adjacency = build_adjacency(site_config)
    if not adjacency:
        return "(no connections)"
    return "\n".join(f"- {room}: {', '.join(neighbors)}" for room, neighbors in adjacency.items())


def render_devices(site_config: SiteConfig) -> str:
    lines: list[str] = []
    for room in site_config.rooms:
        devices = site_config.devices_in_room(room.id)
        if not devices:
            continue
        lines.append(f"- {room.id}:")
        for device in devices:
            caps = json.dumps(device.capabilities, sort_keys=True)
            lines.append(f"  - {device.id} ({device.kind}, {device.label}) capabilities: {caps}")
    return "\n".join(lines) or "(no devices)"


def _feature_value(value: float | None) -> str:
    return "unavailable" if value is None else format_cell(round(value, 2))


def render_features(features: Mapping[str, float | None], site_config: SiteConfig) -> str:
    """Defined features first (in config order), then any extra computed values."""
    lines = []
    defined = set()
    for feature in site_config.features:
        defined.add(feature.id)
        desc = f" ({feature.description})" if feature.description else ""
        lines.append(f"- {feature.id} = {_feature_value(features.get(feature.id))}{desc}")
    for feature_id, value in features.items():
        if feature_id not in defined:
            lines.append(f"- {feature_id} = {_feature_value(value)}")
    return "\n".join(lines) or "(none)"


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_prompt(
    weather: WeatherNow,
    sensors: SensorsNow,
    history_rows: Sequence[Sequence[str]],
    timezone: str,
    prompt_assets: PromptAssets,
    telemetry: TelemetrySummary | None = None,
    features: Mapping[str, float | None] | None = None,
    history_summary: str | None = None,
    prompt_max_chars: int | None = None,
) -> PromptBuild:
    site_config = prompt_assets.site_config
    telemetry = telemetry or summarize_telemetry(site_config, sensors)
    features = features if features is not None else telemetry.features

    rows = [list(r) for r in history_rows] or [build_prompt_history_header(site_config)]
    header, data_rows = rows[0], rows[1:]

    context = {
        "site_id": site_config.site.id,
        "site_label": site_config.site.label,
        "site_address": site_config.site.address,
        "site_notes": site_config.site.notes or "(none)",
        "timezone": timezone,
        "curators": "\n".join(f"- {label}" for label in prompt_assets.curator_labels),
        "panel_size": str(len(prompt_assets.curator_labels)),
        "weather_line": build_weather_line(weather),
        "sensors_observed_at": sensors.observation_time_utc,
        "sensor_lines": render_sensor_lines(site_config, sensors),
        "room_summaries": render_room_summaries(telemetry),
        "adjacency": render_adjacency(site_config),
        "devices": render_devices(site_config),
        "features": render_features(features, site_config),
        "history_summary": history_summary or "",
    }

    def render(csv_rows: Sequence[Sequence[str]]) -> str:
        return prompt_assets.template.render({**context, "history_csv": to_csv(csv_rows)})

    prompt = render(rows)
    if prompt_max_chars and len(prompt) > prompt_max_chars:
        full_length = len(prompt)
        window = len(data_rows)
        fitted = False
        while window > 0:
            candidate = render([header, *data_rows[-window:]])
            if len(candidate) <= prompt_max_chars:
                prompt, fitted = candidate, True
                break
            window -= math.ceil(window / 3)
        if not fitted:
            prompt = render([header])
        logger.info(
            "Prompt over budget (%d > %d chars); kept %d of %d history rows",
            full_length,
            prompt_max_chars,
            window if fitted else 0,
            len(data_rows),
        )

    return PromptBuild(
        prompt=prompt,
        prompt_version=prompt_assets.template.version,
        site_config_id=site_config.site.id,
    )


__all__ = [
    "PromptBuild",
    "build_adjacency",
    "build_prompt",
    "build_weather_line",
    "render_devices",
    "render_features",
    "render_room_summaries",
    "render_sensor_lines",
    "to_csv",
]
