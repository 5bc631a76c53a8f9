"""
comfort-select API - Main Entry Point

Runs the comfort-control cycle on an interval and exposes a small HTTP
status surface for external monitoring.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]
from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from comfort_select import __version__
from comfort_select.config import get_settings
from comfort_select.core.cycle import CycleRunner

# Configure logging
settings_instance = get_settings()
logging.basicConfig(
    level=logging.DEBUG if settings_instance.debug else settings_instance.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# ============================================================================
# Application State
# ============================================================================


class AppState:
    """Centralized application state container."""

    def __init__(self) -> None:
        self.runner: CycleRunner | None = None
        self.scheduler: AsyncIOScheduler | None = None
        self.startup_time: datetime | None = None


app_state = AppState()


# ============================================================================
# Scheduler
# ============================================================================


def init_scheduler(runner: CycleRunner, cycle_minutes: int) -> AsyncIOScheduler:
    """Schedule the control cycle: once immediately, then every ``cycle_minutes``."""
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )
    scheduler.add_job(
        runner.tick,
        IntervalTrigger(minutes=cycle_minutes),
        id="comfort_cycle",
        name="Comfort Control Cycle",
        next_run_time=datetime.now(UTC),
        replace_existing=True,
    )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager for startup and shutdown.
    """
    settings = settings_instance
    logger.info("Starting comfort-select (cycle every %d min, dry_run=%s)...", settings.cycle_minutes, settings.dry_run)

    try:
        app_state.runner = CycleRunner.from_settings(settings)
        app_state.scheduler = init_scheduler(app_state.runner, settings.cycle_minutes)
        app_state.scheduler.start()
        app_state.startup_time = datetime.now(UTC)
    except Exception as e:
        logger.error("Startup failed: %s", e)
        raise

    yield

    logger.info("Shutting down comfort-select...")
    if app_state.scheduler:
        logger.info("Stopping scheduler...")
        app_state.scheduler.shutdown(wait=False)
        app_state.scheduler = None
    if app_state.runner:
        await app_state.runner.aclose()
        app_state.runner = None
    logger.info("comfort-select shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="comfort-select",
    description="LLM-curated comfort control loop for transom fans and smart plugs.",
    version=__version__,
    docs_url="/docs" if settings_instance.debug else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings_instance.debug else None,
    lifespan=lifespan,
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/healthz", tags=["Health"])
async def healthz() -> dict[str, Any]:
    """Summary of the last completed cycle."""
    record = app_state.runner.last_record if app_state.runner else None
    return {
        "ok": True,
        "cycle_running": bool(app_state.runner and app_state.runner.running),
        "last_cycle_utc": record.timestamp_utc_iso if record else None,
        "last_cycle_local": record.timestamp_local_iso if record else None,
        "last_confidence": record.decision.confidence_0_1 if record else None,
        "last_actuation_errors": record.actuation.errors if record else [],
        "last_actuation_ok": record.actuation.actuation_ok if record else None,
        "last_decision_id": record.decision_id if record else None,
    }


@app.get("/last-decision", tags=["Health"], response_model=None)
async def last_decision() -> JSONResponse:
    record = app_state.runner.last_record if app_state.runner else None
    if record is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"ok": False, "error": "no cycles yet"},
        )
    return JSONResponse(
        content={
            "timestamp_utc": record.timestamp_utc_iso,
            "decision_id": record.decision_id,
            "decision": record.decision.model_dump(mode="json"),
            "actuation": record.actuation.model_dump(mode="json"),
            "errors": {
                "blocking": record.blocking_errors,
                "decision": record.decision_errors,
                "non_blocking": record.non_blocking_errors,
            },
        }
    )


@app.get("/health/live", tags=["Health"])
async def liveness_check() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}


# ============================================================================
# CLI Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "comfort_select.api.main:app",
        host=settings_instance.host,
        port=settings_instance.port,
        loop="asyncio",
        log_level=settings_instance.log_level.lower(),
        access_log=True,
    )
