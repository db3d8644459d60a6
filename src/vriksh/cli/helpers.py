"""
Shared helpers for CLI commands.

Provides ledger lifecycle management and formatting used across commands.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Coroutine, TypeVar

from vriksh.config import Settings, get_settings
from vriksh.db.repositories import RunLedger

T = TypeVar("T")


@asynccontextmanager
async def open_ledger(settings: Settings | None = None) -> AsyncIterator[RunLedger]:
    """
    Open the run ledger for a CLI command.

    Creates the schema on first use and disposes the engine afterwards.
    """
    ledger = RunLedger.from_settings(settings or get_settings())
    try:
        await ledger.init_schema()
        yield ledger
    finally:
        await ledger.dispose()


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")
