"""Webhook actuators for transom fans and smart plugs.

Each device is driven by POSTing its desired state to a bridge service that
triggers the matching smart-home routine::

    {"kind": "vornado_transom_ae", "device": "<id>", "state": {...}, "decision_id": "..."}
    {"kind": "meross_smart_plug", "plug": "<id>", "state": {...}, "decision_id": "..."}

Network failures and non-2xx responses are raised as :class:`ActuatorError`;
timeouts as :class:`ActuatorTimeoutError`.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import httpx

from comfort_select.models.enums import DeviceKind
from comfort_select.models.schemas import DeviceState
from comfort_select.models.site import DeviceDefinition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ActuatorError(Exception):
    """Base exception for actuation webhook failures."""


class ActuatorTimeoutError(ActuatorError):
    """Raised when a webhook call exceeds its timeout."""


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

WEBHOOK_KINDS: dict[DeviceKind, tuple[str, str]] = {
    DeviceKind.transom: ("vornado_transom_ae", "device"),
    DeviceKind.plug: ("meross_smart_plug", "plug"),
}


def build_webhook_payload(
    device: DeviceDefinition, state: DeviceState, decision_id: str
) -> dict[str, Any]:
    kind, key = WEBHOOK_KINDS[device.kind]
    return {
        "kind": kind,
        key: device.id,
        "state": state.model_dump(mode="json"),
        "decision_id": decision_id,
    }


@dataclass(frozen=True, slots=True)
class WebhookTarget:
    url: str | None = None
    token: str | None = None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class WebhookActuator:
    """Async webhook caller shared by all devices of a site.

    One ``httpx.AsyncClient`` is held for the lifetime of the actuator; call
    :meth:`aclose` (or use ``async with``) on shutdown.
    """

    def __init__(
        self,
        *,
        transom: WebhookTarget,
        plug: WebhookTarget,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._targets = {DeviceKind.transom: transom, DeviceKind.plug: plug}
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> WebhookActuator:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        with suppress(Exception):
            await self._client.aclose()

    async def apply(self, device: DeviceDefinition, state: DeviceState, decision_id: str) -> None:
        """Send ``state`` for ``device``.

        Raises:
            ActuatorTimeoutError: If the call does not complete within the timeout.
            ActuatorError: On a missing webhook URL, network failure or non-2xx status.
        """
        target = self._targets[device.kind]
        if not target.url:
            raise ActuatorError(f"no webhook URL configured for {device.kind} devices")

        headers = {"Content-Type": "application/json"}
        if target.token:
            headers["Authorization"] = f"Bearer {target.token}"
        payload = build_webhook_payload(device, state, decision_id)

        logger.info("Actuating %s -> %s", device.id, payload["state"])
        try:
            response = await self._client.post(
                target.url, json=payload, headers=headers, timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            raise ActuatorTimeoutError(f"webhook timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ActuatorError(f"webhook request failed: {exc}") from exc

        if not response.is_success:
            detail = response.text[:300]
            raise ActuatorError(
                f"webhook failed: {response.status_code} {response.reason_phrase} {detail}".strip()
            )


__all__ = [
    "WEBHOOK_KINDS",
    "ActuatorError",
    "ActuatorTimeoutError",
    "WebhookActuator",
    "WebhookTarget",
    "build_webhook_payload",
]
