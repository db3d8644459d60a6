from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vriksh.config import Settings, get_settings


def _ensure_sqlite_parent(url: str) -> None:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def create_engine(settings: Settings | None = None, *, url: str | None = None) -> AsyncEngine:
    """Create the async engine backing the run ledger."""

    cfg = settings or get_settings()
    database_url = url or cfg.resolved_database_url

    if make_url(database_url).get_backend_name() == "sqlite":
        _ensure_sqlite_parent(database_url)
        return create_async_engine(
            database_url,
            echo=cfg.debug,
            connect_args={"timeout": 30},
        )

    return create_async_engine(database_url, echo=cfg.debug, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)
