"""Site topology: rooms, sensors, devices, derived features and curators.

The site config is loaded once at process start and treated as immutable for
the lifetime of the process.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from comfort_select.result import Err, FailureReason, Ok, Result, load_json_file, parse_json

from .enums import DeviceKind, FeatureKind, Metric, SensorRole

logger = logging.getLogger(__name__)


class SiteConfigError(Exception):
    """Raised when the site config cannot be read, parsed or validated."""


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SiteLocation(_Frozen):
    lat: float
    lon: float


class SiteDetails(_Frozen):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    timezone: str | None = None
    address: str = Field(min_length=1)
    notes: str | None = None
    location: SiteLocation | None = None


class Room(_Frozen):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    exterior: bool = False
    connected_room_ids: list[str] = Field(default_factory=list)


class Connection(_Frozen):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_room: str = Field(alias="from", min_length=1)
    to_room: str = Field(alias="to", min_length=1)


class SensorDefinition(_Frozen):
    id: str = Field(min_length=1)
    room_id: str = Field(min_length=1)
    label: str | None = None
    role: SensorRole = SensorRole.ambient
    is_primary_for_room: bool = False
    tags: list[str] = Field(default_factory=list)


class DeviceDefinition(_Frozen):
    id: str = Field(min_length=1)
    room_id: str = Field(min_length=1)
    kind: DeviceKind
    label: str = Field(min_length=1)
    capabilities: dict[str, Any] = Field(default_factory=dict)


class FeatureDefinition(_Frozen):
    id: str = Field(min_length=1)
    description: str = ""
    kind: FeatureKind
    metric: Metric = Metric.temp_f
    a: str = Field(min_length=1)
    b: str = Field(min_length=1)


class SiteConfig(_Frozen):
    site: SiteDetails
    curators: list[str] = Field(min_length=1)
    rooms: list[Room] = Field(min_length=1)
    connections: list[Connection] = Field(default_factory=list)
    sensors: list[SensorDefinition] = Field(default_factory=list)
    devices: list[DeviceDefinition] = Field(default_factory=list)
    features: list[FeatureDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> SiteConfig:
        for name, items in (
            ("rooms", self.rooms),
            ("sensors", self.sensors),
            ("devices", self.devices),
            ("features", self.features),
        ):
            seen: set[str] = set()
            for item in items:
                if item.id in seen:
                    raise ValueError(f"duplicate {name} id: {item.id}")
                seen.add(item.id)

        room_ids = {r.id for r in self.rooms}
        sensor_ids = {s.id for s in self.sensors}

        for room in self.rooms:
            for neighbor in room.connected_room_ids:
                if neighbor not in room_ids:
                    raise ValueError(f"room {room.id} connects to unknown room {neighbor}")
        for edge in self.connections:
            if edge.from_room not in room_ids or edge.to_room not in room_ids:
                raise ValueError(f"connection {edge.from_room}->{edge.to_room} references unknown room")
        for sensor in self.sensors:
            if sensor.room_id not in room_ids:
                raise ValueError(f"sensor {sensor.id} references unknown room {sensor.room_id}")
        for device in self.devices:
            if device.room_id not in room_ids:
                raise ValueError(f"device {device.id} references unknown room {device.room_id}")
        for feature in self.features:
            known = sensor_ids if feature.kind == FeatureKind.sensor_delta else room_ids
            for ref in (feature.a, feature.b):
                if ref not in known:
                    raise ValueError(
                        f"feature {feature.id} references unknown {feature.kind.split('_')[0]} {ref}"
                    )
        return self

    # -- lookups --------------------------------------------------------------

    def device(self, device_id: str) -> DeviceDefinition | None:
        return next((d for d in self.devices if d.id == device_id), None)

    def sensors_in_room(self, room_id: str) -> list[SensorDefinition]:
        return [s for s in self.sensors if s.room_id == room_id]

    def devices_in_room(self, room_id: str) -> list[DeviceDefinition]:
        return [d for d in self.devices if d.room_id == room_id]

    @property
    def interior_rooms(self) -> list[Room]:
        return [r for r in self.rooms if not r.exterior]

    def with_curators(self, curators: list[str]) -> SiteConfig:
        return self.model_copy(update={"curators": list(curators)})


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_site_config(data: Any, *, source: str = "<memory>") -> Result[SiteConfig]:
    try:
        return Ok(SiteConfig.model_validate(data))
    except ValidationError as exc:
        return Err(FailureReason.validation_failed, f"Site config validation error ({source}): {exc}")


def load_site_config(path: str | Path) -> SiteConfig:
    """Load and validate the site config, raising :class:`SiteConfigError` on failure."""
    source = str(Path(path).resolve())
    raw = load_json_file(path)
    if isinstance(raw, Err):
        raise SiteConfigError(f"Failed to load site config: {raw.detail}")
    parsed = parse_site_config(raw.value, source=source)
    if isinstance(parsed, Err):
        raise SiteConfigError(parsed.detail)
    logger.info(
        "Loaded site config %s (%d rooms, %d sensors, %d devices)",
        parsed.value.site.id,
        len(parsed.value.rooms),
        len(parsed.value.sensors),
        len(parsed.value.devices),
    )
    return parsed.value


def parse_curators_json(raw: str) -> Result[list[str]]:
    """Parse a JSON list of curator names (used to override the site's panel)."""
    parsed = parse_json(raw, source="curators_json")
    if isinstance(parsed, Err):
        return parsed
    value = parsed.value
    if (
        not isinstance(value, list)
        or not value
        or not all(isinstance(v, str) and v.strip() for v in value)
    ):
        return Err(
            FailureReason.validation_failed,
            "curators_json must be a non-empty JSON list of non-empty strings",
        )
    return Ok(value)


def hash_site_config(site_config: SiteConfig) -> str:
    """Return the sha256 of the site config serialized as canonical JSON."""
    payload = site_config.model_dump(mode="json", by_alias=True)
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


__all__ = [
    "Connection",
    "DeviceDefinition",
    "FeatureDefinition",
    "Room",
    "SensorDefinition",
    "SiteConfig",
    "SiteConfigError",
    "SiteDetails",
    "SiteLocation",
    "hash_site_config",
    "load_site_config",
    "parse_curators_json",
    "parse_site_config",
]
