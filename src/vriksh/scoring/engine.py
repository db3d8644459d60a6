from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from vriksh.core.errors import LedgerError, ScoringError
from vriksh.db.repositories import RunLedger
from vriksh.scoring.checks import get_check
from vriksh.specs.models import AutomaticCheck, LabScoring

logger = structlog.get_logger()


class Scorer(Protocol):
    async def evaluate(self, run_id: str, scoring: LabScoring | None) -> float:
        ...


@dataclass(frozen=True)
class CheckResult:
    check_id: str
    passed: bool
    points: float
    awarded: float
    detail: str | None = None


class ScoringEngine:
    """Scores a run by running its automatic checks against recorded providers.

    Provider metadata comes from the ledger, not from the live run context,
    so a run can be scored from its persisted record alone.
    """

    def __init__(
        self,
        ledger: RunLedger,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._ledger = ledger
        self._timeout = timeout
        self._transport = transport

    @staticmethod
    def points_for(check: AutomaticCheck, scoring: LabScoring) -> float:
        if check.points is not None:
            return check.points
        return scoring.total_score / len(scoring.automatic_checks)

    async def run_checks(self, run_id: str, scoring: LabScoring) -> list[CheckResult]:
        try:
            providers = {p.provider_id: p for p in await self._ledger.list_providers(run_id)}
        except LedgerError as exc:
            raise ScoringError(f"Cannot read providers for run {run_id}: {exc.message}") from exc

        results: list[CheckResult] = []
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for check in scoring.automatic_checks:
                points = self.points_for(check, scoring)
                provider = providers.get(check.provider_id)
                if provider is None:
                    results.append(
                        CheckResult(check.id, False, points, 0.0, "provider not provisioned")
                    )
                    continue

                try:
                    passed = await get_check(check.type)(check, provider, client)
                    detail = None
                except (ScoringError, httpx.HTTPError, ValueError) as exc:
                    passed = False
                    detail = str(exc)
                except Exception as exc:
                    logger.warning(
                        "check_crashed",
                        run_id=run_id,
                        check_id=check.id,
                        check_type=check.type,
                        exc_info=True,
                    )
                    passed = False
                    detail = f"{type(exc).__name__}: {exc}"

                logger.info(
                    "check_evaluated",
                    run_id=run_id,
                    check_id=check.id,
                    check_type=check.type,
                    passed=passed,
                    detail=detail,
                )
                results.append(
                    CheckResult(check.id, passed, points, points if passed else 0.0, detail)
                )
        return results

    async def evaluate(self, run_id: str, scoring: LabScoring | None) -> float:
        if scoring is None or not scoring.automatic_checks:
            logger.info("scoring_skipped", run_id=run_id, reason="no automatic checks")
            return 0.0

        results = await self.run_checks(run_id, scoring)
        score = min(sum(r.awarded for r in results), scoring.total_score)
        logger.info(
            "scoring_finished",
            run_id=run_id,
            score=score,
            total=scoring.total_score,
            passed_checks=sum(1 for r in results if r.passed),
            checks=len(results),
        )
        return score
