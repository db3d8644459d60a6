from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence


@dataclass(frozen=True)
class StartedResource:
    """Handle for a resource started by the substrate."""

    resource_id: str
    port_mappings: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def network_name(prefix: str, run_id: str) -> str:
    return f"{prefix}-net-{run_id}"


def resource_name(prefix: str, run_id: str, name: str) -> str:
    return f"{prefix}-{run_id}-{name}"


class ExecutionSubstrate(Protocol):
    """Runtime that hosts lab resources (a container engine).

    Network creation, network removal and resource stops are idempotent.
    ``runs_workloads`` is False for substrates that only record calls, so
    nothing started on them can be probed over the network.
    """

    backend: str
    runs_workloads: bool

    async def check_reachable(self) -> bool:
        ...

    async def create_shared_network(self, run_id: str) -> str:
        ...

    async def remove_shared_network(self, run_id: str) -> None:
        ...

    async def start_resource(
        self,
        run_id: str,
        image: str,
        name: str,
        env: Sequence[str] = (),
        ports: Mapping[str, str] | None = None,
    ) -> StartedResource:
        ...

    async def stop_resource(self, resource_id: str) -> None:
        ...

    async def exec_in_resource(self, resource_id: str, command: Sequence[str]) -> ExecResult:
        ...

    async def aclose(self) -> None:
        ...
