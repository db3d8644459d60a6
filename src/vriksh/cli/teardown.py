"""
CLI command that force-tears-down a run from its ledger records.

Used after a crash or an interrupted run, when no orchestrator is left to
unwind the resources.
"""

from __future__ import annotations

from vriksh.cli.helpers import open_ledger, run_async
from vriksh.cli.ux import confirm, console, error, is_interactive, spinner, success, warning
from vriksh.config import get_settings
from vriksh.core.errors import ExitCode, main_with_error_handling
from vriksh.orchestration.recovery import ForceTeardownReport, force_teardown
from vriksh.substrate import create_substrate


async def _force(run_id: str | None) -> ForceTeardownReport:
    settings = get_settings()
    async with open_ledger(settings) as ledger:
        run = await ledger.get_run(run_id) if run_id else await ledger.get_most_recent_run()
        # the run's own backend decides which substrate holds its resources
        if run is not None and run.backend in ("docker", "memory"):
            settings = settings.model_copy(update={"backend": run.backend})
        substrate = create_substrate(settings)
        try:
            return await force_teardown(ledger, substrate, run_id)
        finally:
            await substrate.aclose()


@main_with_error_handling()
def teardown_command(run_id: str | None = None, *, yes: bool = False) -> int:
    """Stop every resource still recorded as provisioned for a run."""
    target = run_id or "the most recent run"
    if not yes and is_interactive():
        if not confirm(f"Force teardown of {target}?", default=False):
            warning("Cancelled")
            return ExitCode.SUCCESS

    with spinner(f"Tearing down {target}"):
        report = run_async(_force(run_id))

    for provider_id in report.stopped:
        success(f"Stopped {provider_id}")
    for provider_id in report.skipped:
        console.print(f"[muted]Skipped {provider_id} (nothing left to stop)[/muted]")
    for name, message in report.errors.items():
        error(f"{name}: {message}")

    status = report.status.value if report.status else "-"
    console.print(f"\n[muted]Run {report.run_id} status:[/muted] {status}")
    return ExitCode.SUCCESS if report.clean else ExitCode.SUBSTRATE_ERROR
