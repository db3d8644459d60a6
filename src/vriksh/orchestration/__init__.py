"""Run lifecycle orchestration."""

from vriksh.orchestration.context import PhaseEntry, RunContext
from vriksh.orchestration.machine import TRANSITIONS, Transition, next_phase, signal_target
from vriksh.orchestration.orchestrator import LifecycleOrchestrator, RunOutcome, new_run_id
from vriksh.orchestration.recovery import ForceTeardownReport, force_teardown
from vriksh.orchestration.setup import SetupRunner

__all__ = [
    "TRANSITIONS",
    "ForceTeardownReport",
    "LifecycleOrchestrator",
    "PhaseEntry",
    "RunContext",
    "RunOutcome",
    "SetupRunner",
    "Transition",
    "force_teardown",
    "new_run_id",
    "next_phase",
    "signal_target",
]
