"""
CLI command that runs a lab end to end.

Provisions the lab, shows how to reach each provider while it is ready,
then scores and tears everything down.
"""

from __future__ import annotations

import asyncio

from rich.markup import escape

from vriksh.cli.helpers import open_ledger, run_async
from vriksh.cli.ux import (
    confirm_async,
    console,
    error,
    header,
    info,
    is_interactive,
    print_key_value,
    success,
    warning,
)
from vriksh.config import Settings, get_settings
from vriksh.core.errors import ExitCode, SpecError, main_with_error_handling
from vriksh.domain.models import RunPhase, RunSignal
from vriksh.orchestration import LifecycleOrchestrator, RunContext, RunOutcome
from vriksh.orchestration.orchestrator import ReadyHandler
from vriksh.substrate import create_substrate


def _show_phase(phase: RunPhase, context: RunContext) -> None:
    console.print(f"[phase]→ {phase.value}[/phase]")


def _show_access(context: RunContext) -> None:
    for provider_id, state in context.provider_state.items():
        items = {"Resource": state.resource_id or "-"}
        if state.metadata.get("url"):
            items["URL"] = str(state.metadata["url"])
        credentials = state.metadata.get("credentials")
        if credentials:
            items["Username"] = str(credentials.get("username", "-"))
            items["Password"] = str(credentials.get("password", "-"))
        print_key_value(items, title=provider_id)
    console.print()


def ready_handler(auto_finish: float | None, interactive: bool) -> ReadyHandler:
    async def on_ready(context: RunContext) -> RunSignal | None:
        success(f"Lab is ready (run {context.run_id})")
        _show_access(context)

        if auto_finish is not None:
            info(f"Finishing automatically in {auto_finish:g}s")
            await asyncio.sleep(auto_finish)
            return RunSignal.user_finished

        if not interactive:
            info("Not an interactive session, finishing now")
            return RunSignal.user_finished

        answer = await confirm_async("Done with the lab? Score it and tear down", default=True)
        if answer is None:
            return RunSignal.error
        if not answer:
            info("Aborting without scoring")
            return RunSignal.error
        return RunSignal.user_finished

    return on_ready


async def run_lab(
    lab_file: str,
    settings: Settings,
    *,
    on_ready: ReadyHandler | None = None,
    ready_timeout: float | None = None,
) -> RunOutcome:
    substrate = create_substrate(settings)
    try:
        async with open_ledger(settings) as ledger:
            orchestrator = LifecycleOrchestrator(
                ledger=ledger,
                substrate=substrate,
                settings=settings,
                observer=_show_phase,
            )
            return await orchestrator.execute(
                lab_file, on_ready=on_ready, ready_timeout=ready_timeout
            )
    finally:
        await substrate.aclose()


def _report(outcome: RunOutcome) -> None:
    console.print()
    if outcome.failure is not None and isinstance(outcome.failure, SpecError):
        for message in outcome.failure.errors:
            error(escape(message))

    items = {
        "Run": outcome.run_id or "-",
        "Phase": outcome.phase.value if outcome.phase else "-",
    }
    if outcome.score is not None:
        items["Score"] = f"{outcome.score:g}"
    print_key_value(items)
    console.print()

    if outcome.succeeded:
        success("Run completed")
    elif outcome.phase is RunPhase.completed:
        warning(f"Run completed after unwinding: {escape(outcome.error or '')}")
    else:
        error(f"Run failed: {escape(outcome.error or 'unknown error')}")


@main_with_error_handling()
def run_command(
    lab_file: str,
    *,
    backend: str | None = None,
    auto_finish: float | None = None,
    ready_timeout: float | None = None,
) -> int:
    """
    Run a lab through its whole lifecycle.

    Args:
        lab_file: Path to the lab YAML file
        backend: Substrate override ("docker" or "memory")
        auto_finish: Seconds to wait in ready before finishing automatically
        ready_timeout: Seconds after which a ready lab is aborted

    Returns:
        Exit code (0 when the run completed without any failure)
    """
    settings = get_settings()
    if backend is not None:
        settings = settings.model_copy(update={"backend": backend})

    header(f"Run Lab: {lab_file}")
    console.print(f"[muted]Backend:[/muted] {settings.backend}")
    console.print()

    outcome = run_async(
        run_lab(
            lab_file,
            settings,
            on_ready=ready_handler(auto_finish, is_interactive()),
            ready_timeout=ready_timeout,
        )
    )
    _report(outcome)
    return ExitCode.SUCCESS if outcome.succeeded else ExitCode.RUN_FAILED
