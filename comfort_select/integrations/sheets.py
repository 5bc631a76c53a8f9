"""Google Sheets mirror of recent cycle records.

Talks to the Sheets v4 ``values`` REST API with a bearer token, either a
static one or one minted from a service-account key (google-auth). The
sheet is a read-only projection of the store: every sync overwrites it with
the header plus the most recent ``sheet_sync_rows`` records.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from comfort_select.core.history import WEATHER_COLUMNS, format_cell
from comfort_select.models.enums import DeviceKind
from comfort_select.models.schemas import CycleRecord, DeviceState
from comfort_select.models.site import DeviceDefinition, SiteConfig

logger = logging.getLogger(__name__)

SHEETS_BASE_URL = "https://sheets.googleapis.com"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

TRANSOM_FIELDS = ("power", "direction", "speed", "auto", "set_temp_f")
PLUG_FIELDS = ("power",)


class SheetsError(Exception):
    """Raised when the spreadsheet cannot be read, written or validated."""


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def _state_fields(device: DeviceDefinition) -> tuple[str, ...]:
    return TRANSOM_FIELDS if device.kind == DeviceKind.transom else PLUG_FIELDS


def build_sheet_header(site_config: SiteConfig) -> list[str]:
    """Column names for the mirror, derived from the site config alone."""
    header = [
        "timestamp_local_iso",
        "timestamp_utc_iso",
        "decision_id",
        "llm_model",
        "prompt_template_version",
        "site_config_id",
    ]
    header += [column for column, _ in WEATHER_COLUMNS]
    header.append("weather__outside__conditions")
    for sensor in site_config.sensors:
        header += [f"temp_f__{sensor.id}", f"rh__{sensor.id}"]
    for room in site_config.interior_rooms:
        header += [f"temp_f_mean__{room.id}", f"rh_mean__{room.id}"]
    header += [f"feature__{feature.id}" for feature in site_config.features]
    for suffix in ("req", "applied"):
        for device in site_config.devices:
            header += [f"device__{device.id}__{name}_{suffix}" for name in _state_fields(device)]
    header += [
        "hypothesis",
        "panel",
        "confidence_0_1",
        "predictions_json",
        "decision_json",
        "actuation_ok",
        "actuation_errors_json",
    ]
    return header


def _flatten_state(
    device: DeviceDefinition, state: DeviceState | None, suffix: str, into: dict[str, Any]
) -> None:
    for name in _state_fields(device):
        into[f"device__{device.id}__{name}_{suffix}"] = getattr(state, name, None)


def panel_text(record: CycleRecord) -> str:
    return "\n\n".join(
        " ".join(f"{note.speaker}: {note.notes}".split()) for note in record.decision.panel
    )


def cycle_record_to_sheet_row(
    record: CycleRecord, site_config: SiteConfig, header: Sequence[str]
) -> list[str]:
    values: dict[str, Any] = {
        "timestamp_local_iso": record.timestamp_local_iso,
        "timestamp_utc_iso": record.timestamp_utc_iso,
        "decision_id": record.decision_id,
        "llm_model": record.llm_model,
        "prompt_template_version": record.prompt_template_version,
        "site_config_id": record.site_config_id,
        "weather__outside__conditions": record.weather.conditions,
    }
    for column, attr in WEATHER_COLUMNS:
        values[column] = getattr(record.weather, attr)

    readings = {r.sensor_id: r for r in record.sensors.readings}
    for sensor in site_config.sensors:
        reading = readings.get(sensor.id)
        values[f"temp_f__{sensor.id}"] = reading.temp_f if reading else None
        values[f"rh__{sensor.id}"] = reading.rh_pct if reading else None

    for room in site_config.interior_rooms:
        telemetry = record.telemetry.room(room.id)
        stats = telemetry.stats if telemetry else None
        values[f"temp_f_mean__{room.id}"] = stats.temp_f.mean if stats and stats.temp_f else None
        values[f"rh_mean__{room.id}"] = stats.rh_pct.mean if stats and stats.rh_pct else None

    for feature in site_config.features:
        values[f"feature__{feature.id}"] = record.features.get(feature.id)

    for device in site_config.devices:
        _flatten_state(device, record.decision.actions.get(device.id), "req", values)
        _flatten_state(device, record.actuation.applied.get(device.id), "applied", values)

    values["hypothesis"] = record.decision.hypothesis
    values["panel"] = panel_text(record)
    values["confidence_0_1"] = record.decision.confidence_0_1
    values["predictions_json"] = json.dumps(
        [p.model_dump(mode="json") for p in record.decision.predictions]
    )
    values["decision_json"] = record.decision.model_dump_json()
    values["actuation_ok"] = record.actuation.actuation_ok
    values["actuation_errors_json"] = json.dumps(record.actuation.errors)

    return [format_cell(values.get(key)) for key in header]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TokenSource(Protocol):
    async def get_token(self) -> str: ...


class StaticToken:
    """A pre-minted bearer token, used as-is for every request."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_token(self) -> str:
        return self._token


class ServiceAccountToken:
    """OAuth access tokens minted from a Google service-account key file.

    The key is loaded on first use. The token is refreshed whenever it is
    missing or within google-auth's expiry skew.
    """

    def __init__(self, key_path: str | Path, *, timeout: float = 10.0, credentials: Any = None) -> None:
        self.key_path = Path(key_path)
        self.timeout = timeout
        self._credentials = credentials
        self._lock = asyncio.Lock()

    def _load(self) -> Any:
        try:
            return service_account.Credentials.from_service_account_file(
                str(self.key_path), scopes=[SHEETS_SCOPE]
            )
        except (OSError, ValueError) as exc:
            raise SheetsError(f"Cannot load service account key {self.key_path}: {exc}") from exc

    async def get_token(self) -> str:
        async with self._lock:
            if self._credentials is None:
                self._credentials = self._load()
            if not self._credentials.valid:
                try:
                    async with asyncio.timeout(self.timeout):
                        await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
                except TimeoutError as exc:
                    raise SheetsError(f"Sheets token refresh timed out after {self.timeout}s") from exc
                except GoogleAuthError as exc:
                    raise SheetsError(f"Failed to refresh Sheets access token: {exc}") from exc
                logger.debug("Refreshed Sheets access token (expires %s)", self._credentials.expiry)
            return self._credentials.token


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SheetMirror:
    """Thin client over one worksheet of one spreadsheet."""

    def __init__(
        self,
        *,
        spreadsheet_id: str,
        sheet_name: str,
        access_token: str | None = None,
        token_source: TokenSource | None = None,
        timeout: float = 10.0,
        base_url: str = SHEETS_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        if token_source is None:
            if not access_token:
                raise ValueError("SheetMirror needs an access token or a token source")
            token_source = StaticToken(access_token)
        self._token_source = token_source
        self.header_ensured = False

    async def aclose(self) -> None:
        with suppress(Exception):
            await self._client.aclose()

    async def __aenter__(self) -> SheetMirror:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def full_range(self) -> str:
        return f"{self.sheet_name}!A:ZZ"

    def _values_path(self, suffix: str = "") -> str:
        range_ = quote(self.full_range, safe="!:")
        return f"/v4/spreadsheets/{self.spreadsheet_id}/values/{range_}{suffix}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {await self._token_source.get_token()}"}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise SheetsError(f"Sheets API timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise SheetsError(f"Sheets API request failed: {exc}") from exc

        if not response.is_success:
            raise SheetsError(
                f"Sheets API error: {response.status_code} {response.text[:200]}"
            )
        try:
            return response.json() if response.content else {}
        except ValueError as exc:
            raise SheetsError("Sheets API returned invalid JSON") from exc

    # -- operations -----------------------------------------------------------

    async def read_all_rows(self) -> list[list[str]]:
        payload = await self._request("GET", self._values_path())
        return [[str(cell) for cell in row] for row in payload.get("values", [])]

    async def append_row(self, row: Sequence[str]) -> None:
        await self._request(
            "POST",
            self._values_path(":append"),
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [list(row)]},
        )

    async def ensure_header_row(self, header: Sequence[str]) -> None:
        """Write ``header`` to an empty sheet, or verify the existing first row starts with it.

        Raises:
            SheetsError: If the sheet's first row does not match ``header``.
        """
        if self.header_ensured:
            return
        rows = await self.read_all_rows()
        if not rows:
            await self.append_row(header)
            logger.info("Wrote sheet header (%d columns) to %s", len(header), self.sheet_name)
        else:
            first = rows[0]
            if len(first) < len(header) or any(a != b for a, b in zip(first, header, strict=False)):
                raise SheetsError(
                    f"Sheet header row mismatch: expected first row to match the "
                    f"{len(header)}-column header"
                )
        self.header_ensured = True

    async def overwrite(self, rows: Sequence[Sequence[str]]) -> None:
        """Clear the sheet and write ``rows`` starting at A1."""
        await self._request("POST", self._values_path(":clear"), json={})
        await self._request(
            "PUT",
            self._values_path(),
            params={"valueInputOption": "USER_ENTERED"},
            json={
                "range": self.full_range,
                "majorDimension": "ROWS",
                "values": [list(row) for row in rows],
            },
        )
        self.header_ensured = bool(rows)
        logger.info("Overwrote sheet %s with %d rows", self.sheet_name, len(rows))

    async def sync(self, records: Sequence[CycleRecord], site_config: SiteConfig) -> int:
        """Project ``records`` and overwrite the sheet; returns the number of data rows."""
        header = build_sheet_header(site_config)
        rows = [cycle_record_to_sheet_row(rec, site_config, header) for rec in records]
        await self.overwrite([header, *rows])
        return len(rows)


__all__ = [
    "SHEETS_BASE_URL",
    "SHEETS_SCOPE",
    "ServiceAccountToken",
    "SheetMirror",
    "SheetsError",
    "StaticToken",
    "TokenSource",
    "build_sheet_header",
    "cycle_record_to_sheet_row",
    "panel_text",
]
