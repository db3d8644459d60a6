from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

import structlog

from vriksh.core.errors import SubstrateError
from vriksh.substrate.base import ExecResult, StartedResource, network_name, resource_name

logger = structlog.get_logger()

ExecHandler = Callable[[str, Sequence[str]], ExecResult]


@dataclass
class MemoryResource:
    resource_id: str
    run_id: str
    name: str
    image: str
    env: list[str]
    ports: dict[str, str]
    running: bool = True


class InMemorySubstrate:
    """Substrate that only records what it was asked to do.

    Used for dry runs (``--backend memory``) and tests. Names passed in
    ``fail_on_start`` make ``start_resource`` raise for that resource name.
    """

    backend = "memory"
    runs_workloads = False

    def __init__(
        self,
        *,
        reachable: bool = True,
        prefix: str = "vriksh",
        fail_on_start: Sequence[str] = (),
        exec_handler: ExecHandler | None = None,
    ) -> None:
        self.reachable = reachable
        self._prefix = prefix
        self._fail_on_start = set(fail_on_start)
        self._exec_handler = exec_handler
        self._ids = itertools.count(1)
        self.networks: dict[str, str] = {}
        self.resources: dict[str, MemoryResource] = {}
        self.stop_calls: list[str] = []
        self.exec_calls: list[tuple[str, list[str]]] = []

    async def check_reachable(self) -> bool:
        return self.reachable

    async def create_shared_network(self, run_id: str) -> str:
        if run_id not in self.networks:
            self.networks[run_id] = f"net-{next(self._ids):04d}"
            logger.debug("network_created", run_id=run_id, network=network_name(self._prefix, run_id))
        return self.networks[run_id]

    async def remove_shared_network(self, run_id: str) -> None:
        self.networks.pop(run_id, None)

    async def start_resource(
        self,
        run_id: str,
        image: str,
        name: str,
        env: Sequence[str] = (),
        ports: Mapping[str, str] | None = None,
    ) -> StartedResource:
        if name in self._fail_on_start:
            raise SubstrateError(f"Failed to start container {name}: simulated failure")
        resource_id = f"mem-{next(self._ids):04d}"
        self.resources[resource_id] = MemoryResource(
            resource_id=resource_id,
            run_id=run_id,
            name=resource_name(self._prefix, run_id, name),
            image=image,
            env=list(env),
            ports=dict(ports or {}),
        )
        return StartedResource(resource_id=resource_id, port_mappings=dict(ports or {}))

    async def stop_resource(self, resource_id: str) -> None:
        self.stop_calls.append(resource_id)
        resource = self.resources.get(resource_id)
        if resource is not None:
            resource.running = False

    async def exec_in_resource(self, resource_id: str, command: Sequence[str]) -> ExecResult:
        resource = self.resources.get(resource_id)
        if resource is None or not resource.running:
            raise SubstrateError(f"No running resource {resource_id}")
        self.exec_calls.append((resource_id, list(command)))
        if self._exec_handler is not None:
            return self._exec_handler(resource_id, command)
        return ExecResult(exit_code=0)

    async def aclose(self) -> None:
        return None

    def running(self) -> list[MemoryResource]:
        return [r for r in self.resources.values() if r.running]
