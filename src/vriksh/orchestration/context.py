from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from vriksh.core.errors import ProvisionError
from vriksh.domain.models import RunPhase, RunSignal
from vriksh.providers.base import ProviderState
from vriksh.specs.models import LabSpec


@dataclass(frozen=True)
class PhaseEntry:
    phase: RunPhase
    entered_at: datetime
    signal: RunSignal | None = None


@dataclass
class RunContext:
    """Mutable state of one in-flight run, owned by its orchestrator."""

    run_id: str = ""
    spec: LabSpec | None = None
    error: str | None = None
    provider_state: dict[str, ProviderState] = field(default_factory=dict)
    score: float | None = None
    network_id: str | None = None
    history: list[PhaseEntry] = field(default_factory=list)

    def fail(self, message: str) -> bool:
        """Record a failure message; the first one wins."""
        if self.error is not None:
            return False
        self.error = message
        return True

    def publish(self, provider_id: str, state: ProviderState) -> None:
        """Publish provider metadata. Each provider id is written exactly once."""
        if provider_id in self.provider_state:
            raise ProvisionError(
                f"Provider '{provider_id}' already published its state", provider_id
            )
        self.provider_state[provider_id] = state

    def record_phase(self, phase: RunPhase, signal: RunSignal | None = None) -> PhaseEntry:
        entry = PhaseEntry(phase=phase, entered_at=datetime.now(timezone.utc), signal=signal)
        self.history.append(entry)
        return entry

    @property
    def phases(self) -> list[RunPhase]:
        return [entry.phase for entry in self.history]
