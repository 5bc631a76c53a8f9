"""Append-only store of :class:`CycleRecord` rows.

Records are keyed by ``decision_id`` and ordered by ``timestamp_utc``.
Inserting a record whose ``decision_id`` already exists is a no-op, so a
retried insert never errors or duplicates. Every database round trip is
bounded by ``timeout_s`` and raises :class:`StoreTimeoutError` when exceeded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from comfort_select.models.database import AsyncEngineManager, CycleRecordRow
from comfort_select.models.schemas import CycleRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0


class StoreError(Exception):
    """Raised when the cycle store cannot be read or written."""


class StoreTimeoutError(StoreError):
    """Raised when a store operation exceeds its timeout."""


_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class CycleStore:
    """Cycle-record persistence over an explicit engine handle."""

    def __init__(self, engine: AsyncEngineManager, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self._engine = engine
        self.timeout_s = timeout_s

    @classmethod
    def from_url(
        cls, database_url: str, *, echo: bool = False, timeout_s: float = DEFAULT_TIMEOUT_S
    ) -> CycleStore:
        return cls(AsyncEngineManager(database_url, echo=echo, connect_timeout=timeout_s), timeout_s=timeout_s)

    @property
    def engine(self) -> AsyncEngineManager:
        return self._engine

    @asynccontextmanager
    async def _bounded(self, action: str) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(self.timeout_s):
                yield
        except TimeoutError as exc:
            logger.warning("%s timed out after %.1fs", action, self.timeout_s)
            raise StoreTimeoutError(f"{action}: timed out after {self.timeout_s}s") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{action}: {exc}") from exc

    async def init(self) -> None:
        async with self._bounded("Failed to initialise cycle store"):
            await self._engine.create_all()

    async def close(self) -> None:
        await self._engine.dispose()

    # -- writes ---------------------------------------------------------------

    async def insert_cycle_record(self, record: CycleRecord, *, site_config_hash: str) -> bool:
        """Insert ``record``; returns ``False`` if its ``decision_id`` was already stored."""
        insert = _INSERTS.get(self._engine.dialect_name)
        if insert is None:
            raise StoreError(f"Unsupported database dialect: {self._engine.dialect_name}")

        values = {
            "decision_id": record.decision_id,
            "timestamp_utc": datetime.fromisoformat(record.timestamp_utc_iso),
            "site_config_id": record.site_config_id,
            "site_config_hash": site_config_hash,
            "llm_model": record.llm_model,
            "payload": record.model_dump(mode="json"),
        }
        stmt = insert(CycleRecordRow).values(**values).on_conflict_do_nothing(
            index_elements=[CycleRecordRow.decision_id]
        )
        async with self._bounded(f"Failed to insert cycle record {record.decision_id}"):
            async with self._engine.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()

        inserted = bool(result.rowcount)
        if not inserted:
            logger.info("Cycle record %s already stored; insert ignored", record.decision_id)
        return inserted

    # -- reads ----------------------------------------------------------------

    async def get_recent_cycle_records(self, limit: int | None = None) -> list[CycleRecord]:
        """Most recent ``limit`` records (all when ``None``) in ascending chronological order."""
        stmt = select(CycleRecordRow.payload).order_by(
            CycleRecordRow.timestamp_utc.desc(), CycleRecordRow.decision_id.desc()
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._bounded("Failed to read cycle records"):
            async with self._engine.session_factory() as session:
                payloads = (await session.execute(stmt)).scalars().all()
        return [self._to_record(p) for p in reversed(payloads)]

    async def get_latest_cycle_record(self) -> CycleRecord | None:
        records = await self.get_recent_cycle_records(limit=1)
        return records[0] if records else None

    async def count(self) -> int:
        async with self._bounded("Failed to count cycle records"):
            async with self._engine.session_factory() as session:
                return int((await session.execute(select(func.count(CycleRecordRow.decision_id)))).scalar_one())

    @staticmethod
    def _to_record(payload: dict) -> CycleRecord:
        try:
            return CycleRecord.model_validate(payload)
        except ValidationError as exc:
            raise StoreError(
                f"Stored cycle record {payload.get('decision_id')!r} is not a valid CycleRecord: {exc}"
            ) from exc


__all__ = ["CycleStore", "StoreError", "StoreTimeoutError"]
