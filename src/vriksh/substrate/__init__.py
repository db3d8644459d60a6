"""Execution substrates that host lab resources."""

from vriksh.config import Settings
from vriksh.substrate.base import ExecResult, ExecutionSubstrate, StartedResource
from vriksh.substrate.docker import DockerSubstrate
from vriksh.substrate.memory import InMemorySubstrate


def create_substrate(settings: Settings) -> ExecutionSubstrate:
    """Build the substrate selected by ``settings.backend``."""
    if settings.backend == "memory":
        return InMemorySubstrate(prefix=settings.resource_prefix)
    return DockerSubstrate.from_settings(settings)


__all__ = [
    "DockerSubstrate",
    "ExecResult",
    "ExecutionSubstrate",
    "InMemorySubstrate",
    "StartedResource",
    "create_substrate",
]
