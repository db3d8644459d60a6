from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from vriksh.config import Settings
from vriksh.core.errors import LedgerError, RunExistsError, RunNotFoundError
from vriksh.db import models as db_models
from vriksh.db.session import create_engine, create_session_factory
from vriksh.domain.models import (
    EventRecord,
    ProviderRecord,
    ProviderStatus,
    RunRecord,
    RunStatus,
)

logger = structlog.get_logger()


def _run_record(row: db_models.Run) -> RunRecord:
    return RunRecord(
        id=row.id,
        lab_id=row.lab_id,
        status=RunStatus(row.status),
        backend=row.backend,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _provider_record(row: db_models.ProviderResource) -> ProviderRecord:
    return ProviderRecord(
        run_id=row.run_id,
        provider_id=row.provider_id,
        type=row.type,
        resource_id=row.resource_id,
        metadata=row.extra_data or {},
        status=ProviderStatus(row.status),
    )


def _event_record(row: db_models.Event) -> EventRecord:
    return EventRecord(
        id=row.id,
        run_id=row.run_id,
        type=row.type,
        message=row.message,
        payload=row.payload,
        timestamp=row.timestamp,
    )


class RunLedger:
    """Durable record of run status, provider resources and ordered events.

    Every operation runs in its own transaction so that a crash never loses
    more than the write in flight. Write failures raise LedgerError; the
    ledger is the audit trail and is never allowed to fail silently.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = create_session_factory(engine)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, url: str | None = None) -> RunLedger:
        return cls(create_engine(settings, url=url))

    async def init_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(db_models.Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error("ledger_operation_failed", operation=operation, error=str(exc))
            raise LedgerError(f"Ledger {operation} failed: {exc}") from exc

    async def _require_run(self, session: AsyncSession, run_id: str) -> db_models.Run:
        row = await session.get(db_models.Run, run_id)
        if row is None:
            raise RunNotFoundError(f"Run not found: {run_id}", {"run_id": run_id})
        return row

    async def create_run(
        self,
        run_id: str,
        lab_id: str,
        *,
        backend: str = "docker",
        status: RunStatus = RunStatus.PREPARING,
    ) -> RunRecord:
        async with self._transaction("create_run") as session:
            if await session.get(db_models.Run, run_id) is not None:
                raise RunExistsError(f"Run already exists: {run_id}", {"run_id": run_id})
            row = db_models.Run(id=run_id, lab_id=lab_id, status=status.value, backend=backend)
            session.add(row)
            await session.flush()
            record = _run_record(row)
        logger.debug("run_created", run_id=run_id, lab_id=lab_id)
        return record

    async def update_status(self, run_id: str, status: RunStatus) -> None:
        async with self._transaction("update_status") as session:
            row = await self._require_run(session, run_id)
            row.status = RunStatus(status).value
            row.updated_at = datetime.now(timezone.utc)

    async def add_provider_record(
        self,
        run_id: str,
        provider_id: str,
        type: str,
        resource_id: str | None,
        metadata: Mapping[str, Any] | None = None,
    ) -> ProviderRecord:
        async with self._transaction("add_provider_record") as session:
            await self._require_run(session, run_id)
            row = db_models.ProviderResource(
                run_id=run_id,
                provider_id=provider_id,
                type=type,
                resource_id=resource_id,
                extra_data=dict(metadata or {}),
                status=ProviderStatus.PROVISIONED.value,
            )
            session.add(row)
            await session.flush()
            return _provider_record(row)

    async def update_provider_status(
        self, run_id: str, provider_id: str, status: ProviderStatus
    ) -> None:
        async with self._transaction("update_provider_status") as session:
            stmt = select(db_models.ProviderResource).where(
                db_models.ProviderResource.run_id == run_id,
                db_models.ProviderResource.provider_id == provider_id,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise LedgerError(
                    f"No provider record for {provider_id} in run {run_id}",
                    {"run_id": run_id, "provider_id": provider_id},
                )
            row.status = ProviderStatus(status).value

    async def list_providers(self, run_id: str) -> list[ProviderRecord]:
        async with self._transaction("list_providers") as session:
            stmt = (
                select(db_models.ProviderResource)
                .where(db_models.ProviderResource.run_id == run_id)
                .order_by(db_models.ProviderResource.id)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_provider_record(row) for row in rows]

    async def append_event(
        self,
        run_id: str,
        type: str,
        message: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> EventRecord:
        async with self._transaction("append_event") as session:
            await self._require_run(session, run_id)
            row = db_models.Event(
                run_id=run_id,
                type=str(type),
                message=message,
                payload=dict(payload) if payload is not None else None,
            )
            session.add(row)
            await session.flush()
            return _event_record(row)

    async def list_events(self, run_id: str) -> list[EventRecord]:
        async with self._transaction("list_events") as session:
            stmt = (
                select(db_models.Event)
                .where(db_models.Event.run_id == run_id)
                .order_by(db_models.Event.id)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_event_record(row) for row in rows]

    async def get_run(self, run_id: str) -> RunRecord | None:
        async with self._transaction("get_run") as session:
            row = await session.get(db_models.Run, run_id)
            return _run_record(row) if row is not None else None

    async def get_most_recent_run(self) -> RunRecord | None:
        runs = await self.list_runs(limit=1)
        return runs[0] if runs else None

    async def list_runs(self, limit: int = 20) -> list[RunRecord]:
        async with self._transaction("list_runs") as session:
            stmt = (
                select(db_models.Run)
                .order_by(db_models.Run.created_at.desc(), db_models.Run.id.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_run_record(row) for row in rows]
