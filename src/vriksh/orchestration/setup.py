from __future__ import annotations

import structlog

from vriksh.core.errors import SetupError, SubstrateError
from vriksh.orchestration.context import RunContext
from vriksh.substrate.base import ExecutionSubstrate

logger = structlog.get_logger()

# Trailing command output kept in error details
OUTPUT_TAIL = 2000


class SetupRunner:
    """Runs a lab's setup steps, in order, inside provisioned resources."""

    def __init__(self, substrate: ExecutionSubstrate) -> None:
        self._substrate = substrate

    async def run(self, context: RunContext) -> int:
        if context.spec is None:
            raise SetupError("Run has no lab spec")

        steps = context.spec.spec.setup
        for step in steps:
            state = context.provider_state.get(step.provider_id)
            if state is None or state.resource_id is None:
                raise SetupError(
                    f"Setup step '{step.id}' targets provider '{step.provider_id}' "
                    "which has no running resource",
                    {"step_id": step.id, "provider_id": step.provider_id},
                )

            logger.info(
                "setup_step_started",
                run_id=context.run_id,
                step_id=step.id,
                provider_id=step.provider_id,
            )
            try:
                result = await self._substrate.exec_in_resource(state.resource_id, step.command)
            except SubstrateError as exc:
                raise SetupError(
                    f"Setup step '{step.id}' could not run: {exc.message}",
                    {"step_id": step.id},
                ) from exc

            if not result.ok:
                raise SetupError(
                    f"Setup step '{step.id}' exited with code {result.exit_code}",
                    {"step_id": step.id, "output": result.output[-OUTPUT_TAIL:]},
                )

        return len(steps)
