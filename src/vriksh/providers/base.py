from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from vriksh.orchestration.context import RunContext
    from vriksh.specs.models import ProviderConfig


@dataclass(frozen=True)
class ProviderState:
    """What a provider publishes into the run context after a successful init."""

    resource_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)


class Provider(Protocol):
    """Contract for units that stand up and tear down one kind of resource.

    ``init`` publishes a ProviderState under ``config.id`` via
    ``context.publish`` and raises on failure, cleaning up anything it
    started itself. ``teardown`` is best effort: a provider may raise
    TeardownError, which the orchestrator logs and records without stopping
    sibling teardowns.

    Registries create one instance per declared provider, so an instance
    may remember the config it was initialised with.
    """

    type_name: str

    async def init(self, config: ProviderConfig, context: RunContext) -> None:
        ...

    async def teardown(self, context: RunContext) -> None:
        ...
