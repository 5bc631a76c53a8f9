"""Cycle orchestration.

One cycle gathers inputs, asks the decider for a decision, actuates the
devices and persists a :class:`CycleRecord`. Expected failures never escape a
cycle: they are collected into the record's error lists and, when they make
the inputs or the decision untrustworthy, replace the decision with the safe
fallback before actuation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

from comfort_select.config import Settings
from comfort_select.integrations.actuators import WebhookActuator, WebhookTarget
from comfort_select.integrations.llm import (
    DecisionError,
    DecisionResponse,
    LLMDecider,
    PromptAssets,
    load_prompt_assets,
)
from comfort_select.integrations.sensors import SensorError, SensorSourceClient, build_sensor_source
from comfort_select.integrations.sheets import (
    ServiceAccountToken,
    SheetMirror,
    SheetsError,
    build_sheet_header,
)
from comfort_select.integrations.store import CycleStore, StoreError
from comfort_select.integrations.weather import OpenMeteoClient, WeatherError
from comfort_select.models.schemas import CycleRecord, Decision, SensorsNow, TelemetrySummary, WeatherNow
from comfort_select.models.site import hash_site_config
from comfort_select.timeutil import to_local_iso, to_utc_iso, utc_now, utc_now_iso

from .actuation import ActuationDiffer, Actuator, noop_decision
from .history import EMPTY_HISTORY_SUMMARY, HistoryWindow, build_prompt_history_header, build_prompt_history_window
from .prompt import PromptBuild, build_prompt
from .sanity import apply_sanity
from .telemetry import summarize_telemetry

logger = logging.getLogger(__name__)


class WeatherSource(Protocol):
    async def get_weather_now(self) -> WeatherNow: ...


class Decider(Protocol):
    @property
    def model_name(self) -> str: ...

    async def decide(self, prompt: str) -> DecisionResponse: ...


def new_decision_id() -> str:
    return f"decision_{int(time.time() * 1000)}_{uuid4().hex[:12]}"


def fallback_weather(reason: str) -> WeatherNow:
    return WeatherNow(
        temp_f=0,
        rh_pct=0,
        conditions=f"unavailable ({reason})",
        observation_time_utc=utc_now_iso(),
    )


def fallback_sensors(reason: str) -> SensorsNow:
    return SensorsNow(observation_time_utc=utc_now_iso(), readings=[], raw={"error": reason})


@dataclass(slots=True)
class CycleInputs:
    weather: WeatherNow
    sensors: SensorsNow
    telemetry: TelemetrySummary
    window: HistoryWindow
    build: PromptBuild
    blocking_errors: list[str]


class CycleRunner:
    """Runs control cycles against long-lived collaborators.

    Collaborators are created once (see :meth:`from_settings`) and closed by
    :meth:`aclose`. :meth:`tick` is the scheduler entry point and never runs
    two cycles at once.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        prompt_assets: PromptAssets,
        store: CycleStore,
        weather: WeatherSource,
        sensors: SensorSourceClient,
        decider: Decider,
        actuator: Actuator,
        sheets: SheetMirror | None = None,
    ) -> None:
        self.settings = settings
        self.prompt_assets = prompt_assets
        self.site_config = prompt_assets.site_config
        self.store = store
        self.weather = weather
        self.sensors = sensors
        self.decider = decider
        self.actuator = actuator
        self.sheets = sheets
        self.differ = ActuationDiffer(self.site_config, actuator, dry_run=settings.dry_run)
        self.site_config_hash = hash_site_config(self.site_config)
        self.timezone = self.site_config.site.timezone or settings.timezone

        self.last_record: CycleRecord | None = None
        self._running = False
        self._store_ready = False

    @classmethod
    def from_settings(cls, settings: Settings, prompt_assets: PromptAssets | None = None) -> CycleRunner:
        assets = prompt_assets or load_prompt_assets(
            settings.site_config_path, settings.prompt_template_path, settings.curators_json
        )
        site = assets.site_config.site
        lat = site.location.lat if site.location else settings.home_lat
        lon = site.location.lon if site.location else settings.home_lon
        if lat is None or lon is None:
            raise ValueError("Site location unknown: set site.location or COMFORT_HOME_LAT/COMFORT_HOME_LON")

        sheets = None
        if settings.sheets_configured:
            token_source = None
            if settings.sheets_service_account_json:
                token_source = ServiceAccountToken(
                    settings.sheets_service_account_json, timeout=settings.http_timeout_s
                )
            sheets = SheetMirror(
                spreadsheet_id=settings.sheets_spreadsheet_id or "",
                sheet_name=settings.sheets_sheet_name,
                access_token=settings.sheets_access_token,
                token_source=token_source,
                timeout=settings.http_timeout_s,
            )

        return cls(
            settings=settings,
            prompt_assets=assets,
            store=CycleStore.from_url(
                settings.database_url, echo=settings.debug, timeout_s=settings.db_timeout_s
            ),
            weather=OpenMeteoClient(
                lat=lat, lon=lon, timezone=site.timezone or settings.timezone, timeout=settings.http_timeout_s
            ),
            sensors=build_sensor_source(settings),
            decider=LLMDecider(
                provider=settings.llm_provider,
                model=settings.llm_model,
                api_key=settings.llm_api_key,
                site_config=assets.site_config,
                curator_labels=assets.curator_labels,
                base_url=settings.llm_base_url,
                timeout_s=settings.llm_timeout_s,
            ),
            actuator=WebhookActuator(
                transom=WebhookTarget(settings.transom_webhook_url, settings.transom_webhook_token),
                plug=WebhookTarget(settings.plug_webhook_url, settings.plug_webhook_token),
                timeout=settings.http_timeout_s,
            ),
            sheets=sheets,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def aclose(self) -> None:
        for resource in (self.weather, self.sensors, self.decider, self.actuator, self.sheets):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()
        await self.store.close()

    # ------------------------------------------------------------------
    # Scheduler entry point
    # ------------------------------------------------------------------

    async def tick(self) -> CycleRecord | None:
        """Run one cycle unless one is already in flight; never raises."""
        if self._running:
            logger.warning("Cycle skipped: previous cycle still running")
            return None
        self._running = True
        try:
            record = await self.run_cycle_once()
        except Exception:
            logger.exception("Cycle crashed")
            return None
        finally:
            self._running = False
        self.last_record = record
        return record

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _ensure_store(self) -> None:
        if not self._store_ready:
            await self.store.init()
            self._store_ready = True

    async def gather_inputs(self) -> CycleInputs:
        """Collect weather, sensors, telemetry and history and build the prompt."""
        site_config = self.site_config
        blocking_errors: list[str] = []

        # ── 1. Store ────────────────────────────────────────────────────
        try:
            await self._ensure_store()
        except StoreError as exc:
            msg = f"Failed to connect to store: {exc}"
            logger.error(msg)
            blocking_errors.append(msg)

        # ── 2. Weather ──────────────────────────────────────────────────
        try:
            weather = await self.weather.get_weather_now()
        except WeatherError as exc:
            msg = f"Weather fetch failed: {exc}"
            logger.error(msg)
            blocking_errors.append(msg)
            weather = fallback_weather(msg)

        # ── 3. Sensors ──────────────────────────────────────────────────
        try:
            sensors = await self.sensors.get_sensors_now()
        except SensorError as exc:
            msg = f"Sensor fetch failed: {exc}"
            logger.error(msg)
            blocking_errors.append(msg)
            sensors = fallback_sensors(msg)

        # ── 4. Telemetry ────────────────────────────────────────────────
        telemetry = summarize_telemetry(site_config, sensors)

        # ── 5. History window ───────────────────────────────────────────
        window = HistoryWindow(
            history_rows=[build_prompt_history_header(site_config)],
            history_summary=EMPTY_HISTORY_SUMMARY,
        )
        if self._store_ready:
            try:
                records = await self.store.get_recent_cycle_records(self.settings.history_fetch_limit)
            except StoreError as exc:
                msg = f"Failed to read cycle history: {exc}"
                logger.error(msg)
                blocking_errors.append(msg)
            else:
                max_rows = self.settings.history_rows if self.settings.history_mode == "window" else len(records)
                window = build_prompt_history_window(
                    records,
                    site_config,
                    max_rows=max_rows,
                    max_minutes=self.settings.history_max_minutes,
                    summary_max_chars=self.settings.history_summary_max_chars,
                )

        # ── 6. Prompt ───────────────────────────────────────────────────
        build = build_prompt(
            weather,
            sensors,
            window.history_rows,
            self.timezone,
            self.prompt_assets,
            telemetry=telemetry,
            features=telemetry.features,
            history_summary=window.history_summary,
            prompt_max_chars=self.settings.prompt_max_chars,
        )
        return CycleInputs(
            weather=weather,
            sensors=sensors,
            telemetry=telemetry,
            window=window,
            build=build,
            blocking_errors=blocking_errors,
        )

    async def run_cycle_once(self) -> CycleRecord:
        site_config = self.site_config
        decision_id = new_decision_id()
        started = utc_now()
        timestamp_local_iso = to_local_iso(started, self.timezone)
        logger.info("Cycle start: %s (%s)", decision_id, timestamp_local_iso)

        inputs = await self.gather_inputs()
        blocking_errors = inputs.blocking_errors
        decision_errors: list[str] = []

        # ── 7. Decision ─────────────────────────────────────────────────
        response_id: str | None = None
        decision: Decision
        if blocking_errors:
            decision = noop_decision("; ".join(blocking_errors), self.prompt_assets.curator_labels, site_config)
        else:
            try:
                response = await self.decider.decide(inputs.build.prompt)
            except DecisionError as exc:
                logger.error("Decision failed: %s", exc)
                decision_errors.append(str(exc))
                decision = noop_decision(str(exc), self.prompt_assets.curator_labels, site_config)
            else:
                decision = response.decision
                response_id = response.response_id

        decision = apply_sanity(decision)

        # ── 8. Actuation ────────────────────────────────────────────────
        actuation = await self.differ.actuate(decision, decision_id, inputs.window.last_applied)

        record = CycleRecord(
            decision_id=decision_id,
            llm_model=self.decider.model_name,
            llm_response_id=response_id,
            prompt_template_version=inputs.build.prompt_version,
            site_config_id=inputs.build.site_config_id,
            timestamp_local_iso=timestamp_local_iso,
            timestamp_utc_iso=to_utc_iso(started),
            weather=inputs.weather,
            sensors=inputs.sensors,
            telemetry=inputs.telemetry,
            features=inputs.telemetry.features,
            decision=decision,
            actuation=actuation,
            blocking_errors=blocking_errors,
            decision_errors=decision_errors,
        )

        # ── 9. Persist and mirror ───────────────────────────────────────
        if self._store_ready:
            try:
                await self.store.insert_cycle_record(record, site_config_hash=self.site_config_hash)
            except StoreError as exc:
                msg = f"Failed to insert cycle record: {exc}"
                logger.error(msg)
                record.non_blocking_errors.append(msg)

            if self.sheets is not None:
                try:
                    await self.sync_sheet()
                except (StoreError, SheetsError) as exc:
                    msg = f"Failed to sync sheet from store (non-blocking): {exc}"
                    logger.error(msg)
                    record.non_blocking_errors.append(msg)

        logger.info(
            "Cycle complete: %s (confidence=%.2f, actuation_errors=%d, blocking=%d, decision_errors=%d)",
            decision_id,
            decision.confidence_0_1,
            len(actuation.errors),
            len(blocking_errors),
            len(decision_errors),
        )
        return record

    # ------------------------------------------------------------------
    # Sheet mirror
    # ------------------------------------------------------------------

    def _require_sheets(self) -> SheetMirror:
        if self.sheets is None:
            raise SheetsError(
                "Spreadsheet mirror is not configured (spreadsheet id and service account key or access token)"
            )
        return self.sheets

    async def init_sheet(self) -> None:
        await self._require_sheets().ensure_header_row(build_sheet_header(self.site_config))

    async def sync_sheet(self) -> int:
        """Overwrite the sheet with the most recent ``sheet_sync_rows`` records."""
        sheets = self._require_sheets()
        await self._ensure_store()
        recent = await self.store.get_recent_cycle_records(self.settings.sheet_sync_rows)
        return await sheets.sync(recent, self.site_config)


__all__ = [
    "CycleInputs",
    "CycleRunner",
    "Decider",
    "WeatherSource",
    "fallback_sensors",
    "fallback_weather",
    "new_decision_id",
]
