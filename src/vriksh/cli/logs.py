"""CLI command that prints a run's event log."""

from __future__ import annotations

import json

from rich.markup import escape

from vriksh.cli.helpers import format_timestamp, open_ledger, run_async
from vriksh.cli.ux import console, header, print_table, warning
from vriksh.core.errors import ExitCode, RunNotFoundError, main_with_error_handling
from vriksh.domain.models import EventRecord, RunRecord


async def _load(run_id: str | None) -> tuple[RunRecord | None, list[EventRecord]]:
    async with open_ledger() as ledger:
        run = await ledger.get_run(run_id) if run_id else await ledger.get_most_recent_run()
        if run is None:
            return None, []
        return run, await ledger.list_events(run.id)


@main_with_error_handling()
def logs_command(run_id: str | None = None, *, show_payload: bool = False) -> int:
    """Show the event log of a run (the most recent run by default)."""
    run, events = run_async(_load(run_id))
    if run is None:
        if run_id:
            raise RunNotFoundError(f"Run not found: {run_id}", {"run_id": run_id})
        warning("No runs recorded yet")
        return ExitCode.SUCCESS

    header(f"Run {run.id}")
    console.print(f"[muted]Lab:[/muted] {run.lab_id}  [muted]Status:[/muted] {run.status.value}")
    console.print()

    columns = ["#", "Time", "Type", "Message"]
    if show_payload:
        columns.append("Payload")

    rows = []
    for event in events:
        row = [
            str(event.id),
            format_timestamp(event.timestamp),
            event.type,
            escape(event.message or ""),
        ]
        if show_payload:
            payload = json.dumps(dict(event.payload), default=str) if event.payload else ""
            row.append(escape(payload))
        rows.append(row)

    print_table("Events", columns, rows)
    return ExitCode.SUCCESS
