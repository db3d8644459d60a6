"""
Unified error handling for vriksh.

Every failure the lifecycle can produce has a type here. Errors raised
before a run owns resources are reported directly; errors raised after that
point are captured by the orchestrator and funnelled through teardown.

Exit Codes:
- 0: Success
- 1: Run failed or was unwound after a failure
- 10: Configuration error
- 11: Execution substrate error (unreachable or failing runtime)
- 12: Validation error (lab spec)
- 13: Ledger/state error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum, StrEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    RUN_FAILED = 1
    CONFIG_ERROR = 10
    SUBSTRATE_ERROR = 11
    VALIDATION_ERROR = 12
    STATE_ERROR = 13
    UNKNOWN_ERROR = 127


class VrikshError(Exception):
    """Base exception for vriksh errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(VrikshError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class SpecErrorKind(StrEnum):
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    SCHEMA_ERROR = "SCHEMA_ERROR"


class SpecError(VrikshError):
    """Raised when a lab spec cannot be loaded or fails validation."""

    exit_code = ExitCode.VALIDATION_ERROR

    def __init__(
        self,
        kind: SpecErrorKind,
        message: str,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(message, {"kind": kind.value})
        self.kind = kind
        self.errors = list(errors or [])


class SubstrateError(VrikshError):
    """Raised when the execution substrate rejects or fails an operation."""

    exit_code = ExitCode.SUBSTRATE_ERROR


class SubstrateUnreachable(SubstrateError):
    """Raised when the execution substrate cannot be contacted at all."""


class ProvisionError(VrikshError):
    """Raised when a provider fails to initialise its resource."""

    exit_code = ExitCode.RUN_FAILED

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(message, {"provider_id": provider_id} if provider_id else None)
        self.provider_id = provider_id


class UnknownProviderError(ProvisionError):
    """Raised when a provider type has no registry entry."""

    def __init__(self, provider_type: str, provider_id: str | None = None) -> None:
        super().__init__(f"Unknown provider type: {provider_type}", provider_id)
        self.provider_type = provider_type


class SetupError(VrikshError):
    """Raised when a setup step fails against a provisioned resource."""

    exit_code = ExitCode.RUN_FAILED


class ScoringError(VrikshError):
    """Raised by scoring internals; never fails a run."""

    exit_code = ExitCode.RUN_FAILED


class TeardownError(VrikshError):
    """Raised when the teardown phase cannot complete its bookkeeping."""

    exit_code = ExitCode.RUN_FAILED


class LedgerError(VrikshError):
    """Raised when the run ledger cannot be read or written."""

    exit_code = ExitCode.STATE_ERROR


class RunExistsError(LedgerError):
    """Raised when a run id is already present in the ledger."""


class RunNotFoundError(LedgerError):
    """Raised when a run id is not present in the ledger."""


class InvalidTransitionError(VrikshError):
    """Raised when a signal or transition is not allowed in the current phase."""

    exit_code = ExitCode.STATE_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - VrikshError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except VrikshError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: VrikshError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
