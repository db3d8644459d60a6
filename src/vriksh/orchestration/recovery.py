from __future__ import annotations

from dataclasses import dataclass, field

from vriksh.core.errors import RunNotFoundError, SubstrateError
from vriksh.db.repositories import RunLedger
from vriksh.domain.models import EventType, ProviderStatus, RunStatus
from vriksh.logging import bind_context
from vriksh.substrate.base import ExecutionSubstrate


@dataclass
class ForceTeardownReport:
    run_id: str
    stopped: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    network_removed: bool = False
    status: RunStatus | None = None

    @property
    def clean(self) -> bool:
        return not self.errors and self.network_removed


async def force_teardown(
    ledger: RunLedger,
    substrate: ExecutionSubstrate,
    run_id: str | None = None,
) -> ForceTeardownReport:
    """Tear down what the ledger says a run still holds.

    Works from persisted records only, so it can clean up after a crashed
    process. Resource errors are reported, not raised.
    """
    run = await ledger.get_run(run_id) if run_id else await ledger.get_most_recent_run()
    if run is None:
        if run_id:
            raise RunNotFoundError(f"Run not found: {run_id}", {"run_id": run_id})
        raise RunNotFoundError("No runs recorded")

    log = bind_context(run_id=run.id)
    report = ForceTeardownReport(run_id=run.id)

    for record in await ledger.list_providers(run.id):
        if record.status is ProviderStatus.TORN_DOWN or record.resource_id is None:
            report.skipped.append(record.provider_id)
            continue
        try:
            await substrate.stop_resource(record.resource_id)
        except SubstrateError as exc:
            log.warning("force_stop_failed", provider_id=record.provider_id, error=exc.message)
            report.errors[record.provider_id] = exc.message
            await ledger.update_provider_status(
                run.id, record.provider_id, ProviderStatus.TEARDOWN_FAILED
            )
        else:
            log.info("force_stopped", provider_id=record.provider_id, resource_id=record.resource_id)
            report.stopped.append(record.provider_id)
            await ledger.update_provider_status(run.id, record.provider_id, ProviderStatus.TORN_DOWN)

    try:
        await substrate.remove_shared_network(run.id)
        report.network_removed = True
    except SubstrateError as exc:
        log.warning("force_network_remove_failed", error=exc.message)
        report.errors["network"] = exc.message

    await ledger.append_event(
        run.id,
        EventType.FORCE_TEARDOWN,
        f"Force teardown stopped {len(report.stopped)} resource(s)",
        {
            "stopped": report.stopped,
            "errors": report.errors,
            "network_removed": report.network_removed,
        },
    )

    if not run.status.is_terminal:
        await ledger.update_status(run.id, RunStatus.FORCE_TORN_DOWN)
        report.status = RunStatus.FORCE_TORN_DOWN
    else:
        report.status = run.status

    log.info("force_teardown_finished", stopped=len(report.stopped), errors=len(report.errors))
    return report
