"""Idempotent actuation: diff requested device states against the last applied ones.

Only devices whose requested state differs from the last applied state are
sent to the actuator. A failed call keeps the last known-good state in
``applied`` and records a device-scoped error; other devices are unaffected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from comfort_select.models.enums import DeviceKind, Power, TransomDirection, TransomSpeed
from comfort_select.models.schemas import (
    ActuationResult,
    Decision,
    DeviceState,
    PanelNote,
    PlugState,
    TransomState,
)
from comfort_select.models.site import DeviceDefinition, SiteConfig

logger = logging.getLogger(__name__)


class Actuator(Protocol):
    async def apply(
        self, device: DeviceDefinition, state: DeviceState, decision_id: str
    ) -> None: ...


# ---------------------------------------------------------------------------
# State equality
# ---------------------------------------------------------------------------


def transom_states_equal(a: DeviceState | None, b: DeviceState | None) -> bool:
    if not isinstance(a, TransomState) or not isinstance(b, TransomState):
        return False
    return (
        a.power == b.power
        and a.direction == b.direction
        and a.speed == b.speed
        and a.auto == b.auto
        and a.set_temp_f == b.set_temp_f
    )


def plug_states_equal(a: DeviceState | None, b: DeviceState | None) -> bool:
    if not isinstance(a, PlugState) or not isinstance(b, PlugState):
        return False
    return a.power == b.power


def device_states_equal(kind: DeviceKind, a: DeviceState | None, b: DeviceState | None) -> bool:
    if kind == DeviceKind.transom:
        return transom_states_equal(a, b)
    return plug_states_equal(a, b)


def state_matches_kind(kind: DeviceKind, state: DeviceState) -> bool:
    expected = TransomState if kind == DeviceKind.transom else PlugState
    return isinstance(state, expected)


# ---------------------------------------------------------------------------
# Fallback decision
# ---------------------------------------------------------------------------

SAFE_TRANSOM_STATE = TransomState(
    power=Power.OFF,
    direction=TransomDirection.EXHAUST,
    speed=TransomSpeed.LOW,
    auto=False,
    set_temp_f=70,
)
SAFE_PLUG_STATE = PlugState(power=Power.OFF)


def safe_state(kind: DeviceKind) -> DeviceState:
    return SAFE_TRANSOM_STATE if kind == DeviceKind.transom else SAFE_PLUG_STATE


def noop_decision(reason: str, speakers: Sequence[str], site_config: SiteConfig) -> Decision:
    """Deterministic safe decision used when inputs or the decider failed."""
    return Decision(
        panel=[PanelNote(speaker=s, notes=f"Fallback: {reason}") for s in speakers],
        actions={d.id: safe_state(d.kind) for d in site_config.devices},
        hypothesis=f"Fallback no-op decision due to error: {reason}",
        confidence_0_1=0,
        predictions=[],
    )


# ---------------------------------------------------------------------------
# Differ
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _DeviceOutcome:
    device_id: str
    applied: DeviceState | None
    error: str | None = None
    skipped: bool = False


class ActuationDiffer:
    """Applies a decision to every device in the site config."""

    def __init__(self, site_config: SiteConfig, actuator: Actuator, *, dry_run: bool = False) -> None:
        self.site_config = site_config
        self.actuator = actuator
        self.dry_run = dry_run

    async def actuate(
        self,
        decision: Decision,
        decision_id: str,
        last_applied: Mapping[str, DeviceState] | None = None,
    ) -> ActuationResult:
        previous_map = dict(last_applied or {})

        if self.dry_run:
            applied = dict(previous_map)
            applied.update(
                {d.id: decision.actions[d.id] for d in self.site_config.devices if d.id in decision.actions}
            )
            logger.info("Dry run: %d device state(s) recorded without actuation", len(decision.actions))
            return ActuationResult(applied=applied, errors=[], actuation_ok=True)

        outcomes = await asyncio.gather(
            *(
                self._actuate_device(device, decision, decision_id, previous_map.get(device.id))
                for device in self.site_config.devices
            )
        )

        applied: dict[str, DeviceState] = {}
        errors: list[str] = []
        skipped: list[str] = []
        for outcome in outcomes:
            if outcome.applied is not None:
                applied[outcome.device_id] = outcome.applied
            if outcome.error:
                errors.append(outcome.error)
            if outcome.skipped:
                skipped.append(outcome.device_id)

        result = ActuationResult(
            applied=applied, errors=errors, actuation_ok=not errors, skipped=skipped
        )
        logger.info(
            "Actuation done: %d device(s), %d unchanged, %d error(s)",
            len(outcomes),
            len(skipped),
            len(errors),
        )
        return result

    async def _actuate_device(
        self,
        device: DeviceDefinition,
        decision: Decision,
        decision_id: str,
        previous: DeviceState | None,
    ) -> _DeviceOutcome:
        requested = decision.actions.get(device.id)
        if requested is None:
            logger.warning("Decision has no action for %s; leaving it untouched", device.id)
            return _DeviceOutcome(device.id, previous)

        if not state_matches_kind(device.kind, requested):
            return _DeviceOutcome(
                device.id,
                previous,
                error=f"{device.id}: requested state does not match device kind {device.kind}",
            )

        if previous is not None and device_states_equal(device.kind, previous, requested):
            logger.debug("%s unchanged; skipping actuation", device.id)
            return _DeviceOutcome(device.id, previous, skipped=True)

        try:
            await self.actuator.apply(device, requested, decision_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Actuation failed for %s: %s", device.id, exc)
            return _DeviceOutcome(
                device.id,
                previous if previous is not None else requested,
                error=f"{device.id}: {exc}",
            )
        return _DeviceOutcome(device.id, requested)


__all__ = [
    "SAFE_PLUG_STATE",
    "SAFE_TRANSOM_STATE",
    "ActuationDiffer",
    "Actuator",
    "device_states_equal",
    "noop_decision",
    "plug_states_equal",
    "safe_state",
    "state_matches_kind",
    "transom_states_equal",
]
