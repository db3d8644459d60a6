"""Run scoring: automatic checks and the engine that totals them."""

from vriksh.scoring.checks import get_check, list_checks, register_check
from vriksh.scoring.engine import CheckResult, Scorer, ScoringEngine

__all__ = [
    "CheckResult",
    "Scorer",
    "ScoringEngine",
    "get_check",
    "list_checks",
    "register_check",
]
