"""Run lifecycle transition table.

The whole lifecycle is this table: the orchestrator asks it where to go
after each phase and never branches on phase names itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from vriksh.core.errors import InvalidTransitionError
from vriksh.domain.models import RunPhase, RunSignal


@dataclass(frozen=True)
class Transition:
    on_success: RunPhase
    on_failure: RunPhase | None


TRANSITIONS: Dict[RunPhase, Transition] = {
    RunPhase.parsing: Transition(RunPhase.validating, RunPhase.failed),
    RunPhase.validating: Transition(RunPhase.preparing, RunPhase.failed),
    RunPhase.preparing: Transition(RunPhase.provisioning, RunPhase.failed),
    RunPhase.provisioning: Transition(RunPhase.initializing, RunPhase.tearing_down),
    RunPhase.initializing: Transition(RunPhase.ready, RunPhase.tearing_down),
    RunPhase.scoring: Transition(RunPhase.tearing_down, RunPhase.tearing_down),
    RunPhase.tearing_down: Transition(RunPhase.completed, RunPhase.failed),
}

# ready only moves on an external signal
SIGNAL_TRANSITIONS: Dict[RunSignal, RunPhase] = {
    RunSignal.user_finished: RunPhase.scoring,
    RunSignal.error: RunPhase.tearing_down,
}

INITIAL_PHASE = RunPhase.parsing

# Phases whose failure cannot leave resources behind.
PRE_RESOURCE_PHASES = frozenset(
    phase for phase, t in TRANSITIONS.items() if t.on_failure is RunPhase.failed
) - {RunPhase.tearing_down}


def next_phase(phase: RunPhase, succeeded: bool) -> RunPhase:
    transition = TRANSITIONS.get(phase)
    if transition is None:
        raise InvalidTransitionError(
            f"Phase '{phase}' has no automatic transition", {"phase": phase.value}
        )
    if succeeded:
        return transition.on_success
    if transition.on_failure is None:
        raise InvalidTransitionError(
            f"Phase '{phase}' cannot fail", {"phase": phase.value}
        )
    return transition.on_failure


def signal_target(phase: RunPhase, signal: RunSignal) -> RunPhase:
    if phase is not RunPhase.ready:
        raise InvalidTransitionError(
            f"Signal {signal.value} is only accepted in '{RunPhase.ready}', run is '{phase}'",
            {"phase": phase.value, "signal": signal.value},
        )
    return SIGNAL_TRANSITIONS[signal]


def validate_table() -> list[str]:
    """Return every way the table breaks the lifecycle rules (empty when sound)."""
    problems: list[str] = []

    for phase in RunPhase:
        if phase.is_terminal or phase is RunPhase.ready:
            if phase in TRANSITIONS:
                problems.append(f"{phase} must not have an automatic transition")
        elif phase not in TRANSITIONS:
            problems.append(f"{phase} has no transition")

    for phase, transition in TRANSITIONS.items():
        if transition.on_failure is None:
            problems.append(f"{phase} has no failure target")
        elif phase is RunPhase.tearing_down:
            if transition.on_failure is not RunPhase.failed:
                problems.append("tearing_down must fail into failed")
        elif transition.on_failure not in (RunPhase.failed, RunPhase.tearing_down):
            problems.append(f"{phase} fails into {transition.on_failure}")

    if TRANSITIONS[RunPhase.tearing_down].on_success is not RunPhase.completed:
        problems.append("tearing_down must succeed into completed")

    # Every path out of tearing_down ends immediately, so it is entered at most once.
    teardown = TRANSITIONS[RunPhase.tearing_down]
    for target in (teardown.on_success, teardown.on_failure):
        if target is None or not target.is_terminal:
            problems.append(f"tearing_down leads to non-terminal {target}")

    # Every phase after the first resource-creating phase must unwind through teardown.
    order = list(TRANSITIONS)
    first_resource_phase = order.index(RunPhase.provisioning)
    for phase in order[first_resource_phase:]:
        if phase is RunPhase.tearing_down:
            continue
        if TRANSITIONS[phase].on_failure is not RunPhase.tearing_down:
            problems.append(f"{phase} can fail without tearing down")

    return problems
