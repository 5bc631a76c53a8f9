"""Structured-output schema for the panel decision.

The JSON schema is strict (every property required, no additional
properties) and derived from the site's devices and curator labels, so the
model must return exactly one action per device and one panel note per
curator.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from comfort_select.models.enums import DeviceKind, Power, TransomDirection, TransomSpeed
from comfort_select.models.schemas import Decision, PlugState, TransomState
from comfort_select.models.site import SiteConfig

SCHEMA_NAME = "comfort_decision"


class DecisionValidationError(ValueError):
    """Raised when decider output does not conform to the decision schema."""


def _enum(values: type) -> dict[str, Any]:
    return {"type": "string", "enum": [v.value for v in values]}  # type: ignore[attr-defined]


def _object(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


TRANSOM_STATE_SCHEMA = _object(
    {
        "power": _enum(Power),
        "direction": _enum(TransomDirection),
        "speed": _enum(TransomSpeed),
        "auto": {"type": "boolean"},
        "set_temp_f": {"type": "integer", "minimum": 60, "maximum": 90},
    }
)

PLUG_STATE_SCHEMA = _object({"power": _enum(Power)})

PREDICTION_SCHEMA = _object(
    {
        "target_id": {"type": "string"},
        "temp_f_delta": {"type": ["number", "null"]},
        "rh_pct_delta": {"type": ["number", "null"]},
    }
)


def build_decision_json_schema(site_config: SiteConfig, curator_labels: Sequence[str]) -> dict[str, Any]:
    speaker: dict[str, Any] = (
        {"type": "string", "enum": list(curator_labels)} if curator_labels else {"type": "string"}
    )
    panel: dict[str, Any] = {
        "type": "array",
        "items": _object({"speaker": speaker, "notes": {"type": "string"}}),
        "minItems": len(curator_labels) or 1,
    }
    if curator_labels:
        panel["maxItems"] = len(curator_labels)

    actions = _object(
        {
            device.id: TRANSOM_STATE_SCHEMA if device.kind == DeviceKind.transom else PLUG_STATE_SCHEMA
            for device in site_config.devices
        }
    )
    return _object(
        {
            "panel": panel,
            "actions": actions,
            "hypothesis": {"type": "string"},
            "confidence_0_1": {"type": "number", "minimum": 0, "maximum": 1},
            "predictions": {"type": "array", "items": PREDICTION_SCHEMA},
        }
    )


def response_format(site_config: SiteConfig, curator_labels: Sequence[str]) -> dict[str, Any]:
    """OpenAI-style ``response_format`` payload accepted by litellm."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": SCHEMA_NAME,
            "strict": True,
            "schema": build_decision_json_schema(site_config, curator_labels),
        },
    }


def validate_decision(
    data: Any, site_config: SiteConfig, curator_labels: Sequence[str]
) -> Decision:
    """Validate parsed decider output against the site-specific decision shape.

    Raises:
        DecisionValidationError: On any schema violation.
    """
    try:
        decision = Decision.model_validate(data)
    except ValidationError as exc:
        raise DecisionValidationError(f"decision failed validation: {exc}") from exc

    if curator_labels:
        if len(decision.panel) != len(curator_labels):
            raise DecisionValidationError(
                f"panel has {len(decision.panel)} notes, expected {len(curator_labels)}"
            )
        unknown = [n.speaker for n in decision.panel if n.speaker not in curator_labels]
        if unknown:
            raise DecisionValidationError(f"unknown panel speaker(s): {', '.join(unknown)}")
    elif not decision.panel:
        raise DecisionValidationError("panel must not be empty")

    device_ids = {d.id for d in site_config.devices}
    extra = sorted(set(decision.actions) - device_ids)
    if extra:
        raise DecisionValidationError(f"actions for unknown device(s): {', '.join(extra)}")
    for device in site_config.devices:
        state = decision.actions.get(device.id)
        if state is None:
            raise DecisionValidationError(f"missing action for {device.id}")
        expected = TransomState if device.kind == DeviceKind.transom else PlugState
        if not isinstance(state, expected):
            raise DecisionValidationError(f"action for {device.id} is not a {device.kind} state")
    return decision


__all__ = [
    "PLUG_STATE_SCHEMA",
    "SCHEMA_NAME",
    "TRANSOM_STATE_SCHEMA",
    "DecisionValidationError",
    "build_decision_json_schema",
    "response_format",
    "validate_decision",
]
