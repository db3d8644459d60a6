from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Mapping

from pydantic import BaseModel, Field


class RunPhase(StrEnum):
    """Lifecycle phases of a single run."""

    parsing = "parsing"
    validating = "validating"
    preparing = "preparing"
    provisioning = "provisioning"
    initializing = "initializing"
    ready = "ready"
    scoring = "scoring"
    tearing_down = "tearing_down"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunPhase.completed, RunPhase.failed)


class RunSignal(StrEnum):
    """External signals accepted while a run is ready."""

    user_finished = "USER_FINISHED"
    error = "ERROR"


class RunStatus(StrEnum):
    """Persisted run status. A run record only exists from preparing onward."""

    PREPARING = "PREPARING"
    PROVISIONING = "PROVISIONING"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    SCORING = "SCORING"
    TEARING_DOWN = "TEARING_DOWN"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    FORCE_TORN_DOWN = "FORCE_TORN_DOWN"

    @classmethod
    def from_phase(cls, phase: RunPhase) -> RunStatus:
        return cls(phase.value.upper())

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.FORCE_TORN_DOWN)


class ProviderStatus(StrEnum):
    PROVISIONED = "PROVISIONED"
    TORN_DOWN = "TORN_DOWN"
    TEARDOWN_FAILED = "TEARDOWN_FAILED"


class EventType(StrEnum):
    PHASE_ENTERED = "PHASE_ENTERED"
    PHASE_FAILED = "PHASE_FAILED"
    PREPARE = "PREPARE"
    NETWORK_CREATED = "NETWORK_CREATED"
    PROVIDER_INIT = "PROVIDER_INIT"
    PROVIDER_READY = "PROVIDER_READY"
    SETUP_COMPLETE = "SETUP_COMPLETE"
    SCORING_COMPLETE = "SCORING_COMPLETE"
    SCORING_ERROR = "SCORING_ERROR"
    PROVIDER_TORN_DOWN = "PROVIDER_TORN_DOWN"
    PROVIDER_TEARDOWN_FAILED = "PROVIDER_TEARDOWN_FAILED"
    NETWORK_REMOVED = "NETWORK_REMOVED"
    NETWORK_REMOVE_FAILED = "NETWORK_REMOVE_FAILED"
    RUN_COMPLETED = "RUN_COMPLETED"
    RUN_FAILED = "RUN_FAILED"
    FORCE_TEARDOWN = "FORCE_TEARDOWN"


class RunRecord(BaseModel):
    id: str
    lab_id: str
    status: RunStatus
    backend: str = "docker"
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProviderRecord(BaseModel):
    run_id: str
    provider_id: str
    type: str
    resource_id: str | None = None
    metadata: Mapping[str, Any] = Field(default_factory=dict)
    status: ProviderStatus = ProviderStatus.PROVISIONED


class EventRecord(BaseModel):
    id: int | None = None
    run_id: str
    type: str
    message: str | None = None
    payload: Mapping[str, Any] | None = None
    timestamp: datetime | None = None
