"""SQLAlchemy models and async engine handle for comfort-select."""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, make_url
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = logging.getLogger(__name__)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""


def utcnow() -> datetime:
    return datetime.now(UTC)


class CycleRecordRow(Base):
    """One persisted control cycle. Rows are inserted once and never updated."""

    __tablename__ = "cycle_records"
    __table_args__ = (Index("ix_cycle_records_timestamp_utc", "timestamp_utc"),)

    decision_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    site_config_id: Mapped[str] = mapped_column(String(128), nullable=False)
    site_config_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    llm_model: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False)


# ============================================================================
# Engine handle
# ============================================================================


class AsyncEngineManager:
    """Owns the async engine and session factory for the lifetime of the process."""

    def __init__(self, database_url: str, echo: bool = False, connect_timeout: float | None = None) -> None:
        self._database_url = database_url
        connect_args: dict[str, Any] = {}
        if connect_timeout and make_url(database_url).get_backend_name() == "postgresql":
            # libpq takes whole seconds
            connect_args["connect_timeout"] = max(1, math.ceil(connect_timeout))
        self.connect_args = connect_args
        self._engine = create_async_engine(database_url, echo=echo, future=True, connect_args=connect_args)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def create_all(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured (%s)", self.dialect_name)

    async def dispose(self) -> None:
        await self._engine.dispose()
        logger.info("Database engine disposed")


__all__ = ["AsyncEngineManager", "Base", "CycleRecordRow", "utcnow"]
