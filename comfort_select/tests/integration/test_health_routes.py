"""Integration tests for the status endpoints."""

from collections.abc import Callable
from types import SimpleNamespace

import pytest
from httpx import AsyncClient

from comfort_select.api.main import app_state
from comfort_select.models.schemas import CycleRecord


@pytest.fixture
def no_runner(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_state, "runner", None)


@pytest.fixture
def last_record(monkeypatch: pytest.MonkeyPatch, make_record: Callable[..., CycleRecord]) -> CycleRecord:
    record = make_record(errors=["kitchen_transom: webhook timed out after 10.0s"])
    record.decision_errors.append("decider refused: no")
    monkeypatch.setattr(app_state, "runner", SimpleNamespace(last_record=record, running=True))
    return record


async def test_liveness(client: AsyncClient) -> None:
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


async def test_healthz_before_first_cycle(client: AsyncClient, no_runner: None) -> None:
    response = await client.get("/healthz")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["cycle_running"] is False
    assert body["last_cycle_utc"] is None
    assert body["last_decision_id"] is None
    assert body["last_actuation_errors"] == []


async def test_healthz_reports_last_cycle(client: AsyncClient, last_record: CycleRecord) -> None:
    response = await client.get("/healthz")
    body = response.json()
    assert body["cycle_running"] is True
    assert body["last_cycle_utc"] == last_record.timestamp_utc_iso
    assert body["last_cycle_local"] == last_record.timestamp_local_iso
    assert body["last_confidence"] == 0.7
    assert body["last_actuation_ok"] is False
    assert body["last_actuation_errors"] == ["kitchen_transom: webhook timed out after 10.0s"]
    assert body["last_decision_id"] == last_record.decision_id


async def test_last_decision_404_before_first_cycle(client: AsyncClient, no_runner: None) -> None:
    response = await client.get("/last-decision")
    assert response.status_code == 404
    assert response.json() == {"ok": False, "error": "no cycles yet"}


async def test_last_decision(client: AsyncClient, last_record: CycleRecord) -> None:
    response = await client.get("/last-decision")
    assert response.status_code == 200
    body = response.json()
    assert body["decision_id"] == last_record.decision_id
    assert body["timestamp_utc"] == last_record.timestamp_utc_iso
    assert body["decision"]["actions"]["kitchen_transom"]["direction"] == "EXHAUST"
    assert body["actuation"]["actuation_ok"] is False
    assert body["errors"] == {"blocking": [], "decision": ["decider refused: no"], "non_blocking": []}
