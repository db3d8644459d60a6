"""CLI command that lists recent runs."""

from __future__ import annotations

from vriksh.cli.helpers import format_timestamp, open_ledger, run_async
from vriksh.cli.ux import print_table, warning
from vriksh.core.errors import ExitCode, main_with_error_handling
from vriksh.domain.models import RunRecord


async def _recent(limit: int) -> list[RunRecord]:
    async with open_ledger() as ledger:
        return await ledger.list_runs(limit=limit)


@main_with_error_handling()
def status_command(limit: int = 10) -> int:
    runs = run_async(_recent(limit))
    if not runs:
        warning("No runs recorded yet")
        return ExitCode.SUCCESS

    print_table(
        "Recent runs",
        ["Run", "Lab", "Status", "Backend", "Started", "Updated"],
        [
            [
                run.id,
                run.lab_id,
                run.status.value,
                run.backend,
                format_timestamp(run.created_at),
                format_timestamp(run.updated_at),
            ]
            for run in runs
        ],
    )
    return ExitCode.SUCCESS
