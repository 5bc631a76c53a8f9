"""Core comfort-control pipeline for comfort-select."""

from __future__ import annotations

from .actuation import ActuationDiffer, Actuator, device_states_equal, noop_decision
from .history import HistoryWindow, build_prompt_history_header, build_prompt_history_window
from .prompt import PromptBuild, build_prompt
from .sanity import apply_sanity
from .telemetry import summarize_telemetry

__all__ = [
    "ActuationDiffer",
    "Actuator",
    "HistoryWindow",
    "PromptBuild",
    "apply_sanity",
    "build_prompt",
    "build_prompt_history_header",
    "build_prompt_history_window",
    "device_states_equal",
    "noop_decision",
    "summarize_telemetry",
]
