"""Domain enums for comfort-select models."""

from enum import StrEnum


class Power(StrEnum):
    ON = "ON"
    OFF = "OFF"


class TransomDirection(StrEnum):
    EXHAUST = "EXHAUST"
    DIRECT = "DIRECT"


class TransomSpeed(StrEnum):
    LOW = "LOW"
    MED = "MED"
    HIGH = "HIGH"
    TURBO = "TURBO"


class DeviceKind(StrEnum):
    transom = "transom"
    plug = "plug"


class SensorRole(StrEnum):
    ambient = "ambient"
    radiator_proximity = "radiator_proximity"
    window_proximity = "window_proximity"
    outdoor = "outdoor"


class FeatureKind(StrEnum):
    sensor_delta = "sensor_delta"
    room_delta = "room_delta"


class Metric(StrEnum):
    temp_f = "temp_f"
    rh_pct = "rh_pct"


class RepresentativeMethod(StrEnum):
    primary_sensor = "primary_sensor"
    first_available = "first_available"


class SensorSource(StrEnum):
    mock = "mock"
    local_gateway = "local_gateway"
    cloud_api = "cloud_api"
