"""Psychrometric helpers for prompt context.

Approximations good enough for control heuristics and logging:

- dew point via the Magnus formula
- absolute humidity via the Magnus saturation vapour pressure and the ideal
  gas law
"""

from __future__ import annotations

import math

_MAGNUS_A = 17.625
_MAGNUS_B_C = 243.04


def f_to_c(temp_f: float) -> float:
    return (temp_f - 32.0) * 5.0 / 9.0


def c_to_f(temp_c: float) -> float:
    return temp_c * 9.0 / 5.0 + 32.0


def dew_point_f(temp_f: float, rh_pct: float) -> float:
    """Return the dew point in °F for a dry-bulb temperature and relative humidity."""
    t = f_to_c(temp_f)
    rh = max(1e-6, min(100.0, rh_pct)) / 100.0
    gamma = math.log(rh) + (_MAGNUS_A * t) / (_MAGNUS_B_C + t)
    return c_to_f((_MAGNUS_B_C * gamma) / (_MAGNUS_A - gamma))


def absolute_humidity_gm3(temp_f: float, rh_pct: float) -> float:
    """Return absolute humidity in g/m³."""
    t = f_to_c(temp_f)
    rh = max(0.0, min(100.0, rh_pct)) / 100.0
    saturation_hpa = 6.112 * math.exp((17.67 * t) / (t + 243.5))
    return 216.7 * (rh * saturation_hpa / (t + 273.15))


__all__ = ["absolute_humidity_gm3", "c_to_f", "dew_point_f", "f_to_c"]
