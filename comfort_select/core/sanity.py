"""Decision sanity stage.

Runs between the decider and the actuation differ. It receives a schema-valid
:class:`Decision` and must return one; today it applies no transformation.
"""

from __future__ import annotations

from comfort_select.models.schemas import Decision


def apply_sanity(decision: Decision) -> Decision:
    return decision


__all__ = ["apply_sanity"]
