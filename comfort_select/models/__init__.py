"""Domain models for comfort-select."""

from .enums import DeviceKind, FeatureKind, Metric, Power, SensorRole, TransomDirection, TransomSpeed
from .schemas import (
    ActuationResult,
    CycleRecord,
    Decision,
    DeviceState,
    PanelNote,
    PlugState,
    Prediction,
    SensorReading,
    SensorsNow,
    TelemetrySummary,
    TransomState,
    WeatherNow,
)
from .site import SiteConfig, SiteConfigError, hash_site_config, load_site_config

__all__ = [
    "ActuationResult",
    "CycleRecord",
    "Decision",
    "DeviceKind",
    "DeviceState",
    "FeatureKind",
    "Metric",
    "PanelNote",
    "PlugState",
    "Power",
    "Prediction",
    "SensorReading",
    "SensorRole",
    "SensorsNow",
    "SiteConfig",
    "SiteConfigError",
    "TelemetrySummary",
    "TransomDirection",
    "TransomSpeed",
    "WeatherNow",
    "hash_site_config",
    "load_site_config",
]
