"""Core error types shared across vriksh."""

from vriksh.core.errors import (
    ConfigurationError,
    ExitCode,
    InvalidTransitionError,
    LedgerError,
    ProvisionError,
    RunExistsError,
    RunNotFoundError,
    ScoringError,
    SetupError,
    SpecError,
    SpecErrorKind,
    SubstrateError,
    SubstrateUnreachable,
    TeardownError,
    UnknownProviderError,
    VrikshError,
)

__all__ = [
    "ConfigurationError",
    "ExitCode",
    "InvalidTransitionError",
    "LedgerError",
    "ProvisionError",
    "RunExistsError",
    "RunNotFoundError",
    "ScoringError",
    "SetupError",
    "SpecError",
    "SpecErrorKind",
    "SubstrateError",
    "SubstrateUnreachable",
    "TeardownError",
    "UnknownProviderError",
    "VrikshError",
]
