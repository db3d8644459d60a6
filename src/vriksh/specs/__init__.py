"""Lab specification models, loading and validation."""

from vriksh.specs.loader import LabSpecLoader, load_lab_spec
from vriksh.specs.models import (
    AutomaticCheck,
    LabMetadata,
    LabScoring,
    LabSpec,
    LabTask,
    ProviderConfig,
    SetupStep,
)
from vriksh.specs.validator import ValidationResult, check_semantics, validate_lab_file

__all__ = [
    "AutomaticCheck",
    "LabMetadata",
    "LabScoring",
    "LabSpec",
    "LabSpecLoader",
    "LabTask",
    "ProviderConfig",
    "SetupStep",
    "ValidationResult",
    "check_semantics",
    "load_lab_spec",
    "validate_lab_file",
]
