"""Lifecycle orchestrator: drives one lab run through the transition table."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import structlog

from vriksh.config import Settings, get_settings
from vriksh.core.errors import (
    InvalidTransitionError,
    LedgerError,
    ProvisionError,
    SubstrateError,
    SubstrateUnreachable,
    TeardownError,
    UnknownProviderError,
    VrikshError,
)
from vriksh.db.repositories import RunLedger
from vriksh.domain.models import EventType, ProviderStatus, RunPhase, RunSignal, RunStatus
from vriksh.orchestration.context import PhaseEntry, RunContext
from vriksh.orchestration.machine import INITIAL_PHASE, SIGNAL_TRANSITIONS, next_phase, signal_target
from vriksh.orchestration.setup import SetupRunner
from vriksh.providers import Provider, ProviderRegistry, provider_registry
from vriksh.scoring import Scorer, ScoringEngine
from vriksh.specs.loader import LabSpecLoader
from vriksh.specs.models import LabSpec
from vriksh.substrate.base import ExecutionSubstrate

logger = structlog.get_logger()

LabSource = Union[str, Path, Mapping[str, Any], LabSpec]
PhaseObserver = Callable[[RunPhase, RunContext], None]
ReadyHandler = Callable[[RunContext], Awaitable[Union[RunSignal, None]]]


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, VrikshError):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


@dataclass
class RunOutcome:
    """What a finished (or ready) run looks like to its caller."""

    run_id: str
    phase: RunPhase | None
    error: str | None
    score: float | None
    history: list[PhaseEntry] = field(default_factory=list)
    failure: BaseException | None = None

    @property
    def status(self) -> RunStatus | None:
        if not self.run_id or self.phase is None:
            return None
        return RunStatus.from_phase(self.phase)

    @property
    def succeeded(self) -> bool:
        return self.phase is RunPhase.completed and self.error is None


class LifecycleOrchestrator:
    """Drives a single run from parsing to a terminal phase.

    One instance runs one lab once. Collaborators are injected; the
    orchestrator never names a provider type and never touches storage or
    the container runtime except through the ledger and substrate it is
    given.

    Once ``start`` is called every failure is captured into
    ``context.error`` and the ledger; the only exception that escapes is a
    LedgerError raised while recording the terminal state.
    """

    def __init__(
        self,
        *,
        ledger: RunLedger,
        substrate: ExecutionSubstrate,
        registry: ProviderRegistry | None = None,
        scorer: Scorer | None = None,
        setup_runner: SetupRunner | None = None,
        loader: LabSpecLoader | None = None,
        settings: Settings | None = None,
        run_id_factory: Callable[[], str] = new_run_id,
        observer: PhaseObserver | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._ledger = ledger
        self._substrate = substrate
        self._registry = registry or provider_registry
        self._scorer = scorer or ScoringEngine(ledger, timeout=self._settings.http_timeout)
        self._setup = setup_runner or SetupRunner(substrate)
        self._loader = loader or LabSpecLoader()
        self._new_run_id = run_id_factory
        self._observer = observer

        self.context = RunContext()
        self._lock = asyncio.Lock()
        self._phase: RunPhase | None = None
        self._source: LabSource | None = None
        self._document: Mapping[str, Any] | None = None
        self._providers: dict[str, Provider] = {}
        self._recorded: set[str] = set()
        self._failure: BaseException | None = None
        self._unrecorded: list[str] = []
        self._signalled: asyncio.Future[None] | None = None

        self._bodies: dict[RunPhase, Callable[[], Awaitable[None]]] = {
            RunPhase.parsing: self._parse,
            RunPhase.validating: self._validate,
            RunPhase.preparing: self._prepare,
            RunPhase.provisioning: self._provision,
            RunPhase.initializing: self._initialize,
            RunPhase.scoring: self._score,
            RunPhase.tearing_down: self._tear_down,
        }

    @property
    def phase(self) -> RunPhase | None:
        return self._phase

    def outcome(self) -> RunOutcome:
        return RunOutcome(
            run_id=self.context.run_id,
            phase=self._phase,
            error=self.context.error,
            score=self.context.score,
            history=list(self.context.history),
            failure=self._failure,
        )

    async def start(self, source: LabSource) -> RunPhase:
        """Run every phase up to ``ready`` or a terminal phase."""
        if self._phase is not None:
            raise InvalidTransitionError("Run already started", {"phase": self._phase.value})
        self._source = source
        async with self._lock:
            await self._advance(INITIAL_PHASE)
        assert self._phase is not None
        return self._phase

    async def signal(self, signal: RunSignal, message: str | None = None) -> RunPhase:
        """Deliver an external signal to a ready run and drive it to a terminal phase.

        Once accepted, the transition runs in its own task, so cancelling the
        caller does not interrupt scoring or teardown.
        """
        if self._lock.locked():
            raise InvalidTransitionError(
                f"Cannot deliver {signal.value} while a phase is running",
                {"signal": signal.value},
            )
        if self._phase is None:
            raise InvalidTransitionError("Run has not started", {"signal": signal.value})
        if self._signalled is not None:
            raise InvalidTransitionError(
                "Run already received a signal",
                {"signal": signal.value, "phase": self._phase.value},
            )
        target = signal_target(self._phase, signal)
        logger.info("run_signal", run_id=self.context.run_id, signal=signal.value)
        if signal is RunSignal.error:
            self.context.fail(message or "Run aborted")
        self._signalled = asyncio.ensure_future(self._deliver(target, signal))
        await asyncio.shield(self._signalled)
        return self._phase

    async def _deliver(self, target: RunPhase, signal: RunSignal) -> None:
        async with self._lock:
            await self._advance(target, signal)

    async def finish(self) -> RunPhase:
        return await self.signal(RunSignal.user_finished)

    async def abort(self, message: str) -> RunPhase:
        return await self.signal(RunSignal.error, message)

    async def execute(
        self,
        source: LabSource,
        *,
        on_ready: ReadyHandler | None = None,
        ready_timeout: float | None = None,
    ) -> RunOutcome:
        """Drive a whole run.

        ``on_ready`` is awaited while the lab is ready and should return a
        signal: ``RunSignal.error`` aborts, anything else finishes. A handler
        error or exceeding ``ready_timeout`` aborts the run. A handler that
        signals the run itself is waited out rather than aborted.
        """
        phase = await self.start(source)
        if phase is not RunPhase.ready:
            return self.outcome()

        if ready_timeout is None:
            ready_timeout = self._settings.ready_timeout

        if on_ready is None:
            await self.finish()
            return self.outcome()

        try:
            result = await asyncio.wait_for(on_ready(self.context), ready_timeout)
        except asyncio.TimeoutError:
            await self._settle(f"Lab was not finished within {ready_timeout:g}s")
        except asyncio.CancelledError:
            await self._settle("Run cancelled")
            raise
        except Exception as exc:
            await self._settle(f"Ready handler failed: {_describe(exc)}")
        else:
            if self._signalled is None:
                if result is RunSignal.error:
                    await self.abort("Run aborted by operator")
                else:
                    await self.finish()
        return self.outcome()

    async def _settle(self, message: str) -> None:
        if self._signalled is None:
            await self.abort(message)
        else:
            await asyncio.shield(self._signalled)

    async def _advance(self, phase: RunPhase, signal: RunSignal | None = None) -> None:
        while True:
            if phase.is_terminal:
                await self._terminate(phase, signal)
                return

            entry_signal, signal = signal, None
            try:
                await self._enter(phase, entry_signal)
                if phase is RunPhase.ready:
                    return
                await self._bodies[phase]()
            except Exception as exc:
                await self._record_failure(phase, exc)
                if phase is RunPhase.ready:
                    phase = SIGNAL_TRANSITIONS[RunSignal.error]
                else:
                    phase = next_phase(phase, False)
            else:
                phase = next_phase(phase, True)

    async def _enter(self, phase: RunPhase, signal: RunSignal | None = None) -> None:
        if phase is RunPhase.tearing_down and RunPhase.tearing_down in self.context.phases:
            raise InvalidTransitionError("Teardown already ran for this run")

        self._phase = phase
        entry = self.context.record_phase(phase, signal)
        logger.info(
            "phase_entered",
            run_id=self.context.run_id or None,
            phase=phase.value,
            signal=signal.value if signal else None,
        )
        if self._observer is not None:
            self._observer(phase, self.context)

        if not self.context.run_id:
            return
        try:
            await self._phase_event(entry)
            await self._ledger.update_status(self.context.run_id, RunStatus.from_phase(phase))
        except LedgerError as exc:
            # teardown must still run; it reports the gap when it finishes
            if phase is not RunPhase.tearing_down:
                raise
            logger.error("phase_entry_not_recorded", run_id=self.context.run_id, phase=phase.value)
            self._unrecorded.append(exc.message)

    async def _phase_event(self, entry: PhaseEntry) -> None:
        payload: dict[str, Any] = {"phase": entry.phase.value}
        if entry.signal is not None:
            payload["signal"] = entry.signal.value
        await self._ledger.append_event(
            self.context.run_id,
            EventType.PHASE_ENTERED,
            f"Entered {entry.phase.value}",
            payload,
        )

    async def _event(
        self, type: EventType, message: str, payload: Mapping[str, Any] | None = None
    ) -> None:
        await self._ledger.append_event(self.context.run_id, type, message, payload)

    async def _record_failure(self, phase: RunPhase, exc: Exception) -> None:
        message = _describe(exc)
        if self.context.fail(message):
            self._failure = exc

        logger.error(
            "phase_failed",
            run_id=self.context.run_id or None,
            phase=phase.value,
            error_type=type(exc).__name__,
            error=message,
            exc_info=not isinstance(exc, VrikshError),
        )
        if not self.context.run_id:
            return
        try:
            await self._event(
                EventType.PHASE_FAILED,
                message,
                {"phase": phase.value, "error_type": type(exc).__name__},
            )
        except LedgerError as ledger_exc:
            logger.error(
                "phase_failure_not_recorded",
                run_id=self.context.run_id,
                phase=phase.value,
                error=ledger_exc.message,
            )

    async def _terminate(self, phase: RunPhase, signal: RunSignal | None) -> None:
        self._phase = phase
        entry = self.context.record_phase(phase, signal)
        run_id = self.context.run_id
        error = self.context.error

        logger.info(
            "run_finished",
            run_id=run_id or None,
            phase=phase.value,
            error=error,
            score=self.context.score,
        )
        if self._observer is not None:
            self._observer(phase, self.context)
        if not run_id:
            return

        if phase is RunPhase.completed:
            event_type = EventType.RUN_COMPLETED
            message = "Run completed" if error is None else f"Run completed after unwinding: {error}"
        else:
            event_type = EventType.RUN_FAILED
            message = f"Run failed: {error}" if error else "Run failed"

        try:
            await self._phase_event(entry)
            await self._ledger.update_status(run_id, RunStatus.from_phase(phase))
            await self._event(event_type, message, {"error": error, "score": self.context.score})
        except LedgerError as exc:
            logger.error("run_finalize_failed", run_id=run_id, error=exc.message)
            raise

    async def _parse(self) -> None:
        source = self._source
        if isinstance(source, LabSpec):
            self._document = source.model_dump(by_alias=True)
        elif isinstance(source, Mapping):
            self._document = source
        elif source is not None:
            self._document = self._loader.read(source)
        else:
            raise InvalidTransitionError("No lab source given")

    async def _validate(self) -> None:
        assert self._document is not None
        self.context.spec = self._loader.validate(self._document)

    async def _prepare(self) -> None:
        spec = self.context.spec
        assert spec is not None

        if not await self._substrate.check_reachable():
            raise SubstrateUnreachable(
                f"Execution substrate '{self._substrate.backend}' is not reachable",
                {"backend": self._substrate.backend},
            )

        run_id = self._new_run_id()
        await self._ledger.create_run(run_id, spec.lab_id, backend=self._substrate.backend)
        self.context.run_id = run_id

        # phases entered before the run existed
        for entry in self.context.history:
            await self._phase_event(entry)

        await self._event(
            EventType.PREPARE,
            f"Prepared run for lab {spec.lab_id}",
            {
                "lab_id": spec.lab_id,
                "backend": self._substrate.backend,
                "providers": [p.id for p in spec.providers],
            },
        )

    async def _provision(self) -> None:
        spec = self.context.spec
        assert spec is not None
        run_id = self.context.run_id

        self.context.network_id = await self._substrate.create_shared_network(run_id)
        await self._event(
            EventType.NETWORK_CREATED,
            "Shared network created",
            {"network_id": self.context.network_id},
        )

        for config in spec.providers:
            await self._event(
                EventType.PROVIDER_INIT,
                f"Initializing provider {config.id}",
                {"provider_id": config.id, "type": config.type},
            )
            try:
                provider = self._registry.create(
                    config.type, substrate=self._substrate, settings=self._settings
                )
            except UnknownProviderError as exc:
                raise UnknownProviderError(exc.provider_type, config.id) from exc

            await provider.init(config, self.context)
            state = self.context.provider_state.get(config.id)
            if state is None:
                raise ProvisionError(
                    f"Provider '{config.id}' finished init without publishing state", config.id
                )
            self._providers[config.id] = provider

            await self._ledger.add_provider_record(
                run_id, config.id, config.type, state.resource_id, state.metadata
            )
            self._recorded.add(config.id)
            await self._event(
                EventType.PROVIDER_READY,
                f"Provider {config.id} ready",
                {"provider_id": config.id, "resource_id": state.resource_id},
            )

    async def _initialize(self) -> None:
        steps = await self._setup.run(self.context)
        await self._event(EventType.SETUP_COMPLETE, f"Ran {steps} setup step(s)", {"steps": steps})

    async def _score(self) -> None:
        spec = self.context.spec
        assert spec is not None
        scoring = spec.spec.scoring

        try:
            score = float(await self._scorer.evaluate(self.context.run_id, scoring))
        except Exception as exc:
            message = _describe(exc)
            logger.warning("scoring_failed", run_id=self.context.run_id, error=message)
            score = 0.0
            await self._event(EventType.SCORING_ERROR, message, {"error_type": type(exc).__name__})

        self.context.score = score
        await self._event(
            EventType.SCORING_COMPLETE,
            f"Final score: {score:g}",
            {
                "score": score,
                "total": scoring.total_score if scoring else None,
                "passed": scoring.passed(score) if scoring else None,
            },
        )

    async def _tear_down(self) -> None:
        run_id = self.context.run_id
        provider_ids = list(self._providers)
        if self._settings.teardown_order == "reverse":
            provider_ids.reverse()

        unrecorded = self._unrecorded

        for provider_id in provider_ids:
            try:
                await self._providers[provider_id].teardown(self.context)
            except Exception as exc:
                message = _describe(exc)
                logger.warning(
                    "provider_teardown_failed",
                    run_id=run_id,
                    provider_id=provider_id,
                    error=message,
                )
                status = ProviderStatus.TEARDOWN_FAILED
                event_type = EventType.PROVIDER_TEARDOWN_FAILED
            else:
                message = f"Provider {provider_id} torn down"
                status = ProviderStatus.TORN_DOWN
                event_type = EventType.PROVIDER_TORN_DOWN

            try:
                if provider_id in self._recorded:
                    await self._ledger.update_provider_status(run_id, provider_id, status)
                await self._event(event_type, message, {"provider_id": provider_id})
            except LedgerError as exc:
                unrecorded.append(exc.message)

        try:
            await self._substrate.remove_shared_network(run_id)
        except SubstrateError as exc:
            logger.warning("network_remove_failed", run_id=run_id, error=exc.message)
            network_event, network_message = EventType.NETWORK_REMOVE_FAILED, exc.message
        else:
            network_event, network_message = EventType.NETWORK_REMOVED, "Shared network removed"

        try:
            await self._event(network_event, network_message, {"network_id": self.context.network_id})
        except LedgerError as exc:
            unrecorded.append(exc.message)

        if unrecorded:
            raise TeardownError(
                "Teardown finished but could not be fully recorded",
                {"errors": unrecorded},
            )
