from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from vriksh.config import Settings, get_settings
from vriksh.core.errors import ProvisionError, SubstrateError, TeardownError
from vriksh.providers.base import ProviderState
from vriksh.providers.registry import register_provider
from vriksh.substrate.base import ExecutionSubstrate

if TYPE_CHECKING:
    from vriksh.orchestration.context import RunContext
    from vriksh.specs.models import ProviderConfig

logger = structlog.get_logger()


class HealthCheckFailed(Exception):
    """Probe answered with an unexpected status."""


@dataclass(frozen=True)
class HealthProbe:
    url: str
    expected_status: int | None
    timeout: float
    interval: float


class ContainerProvider:
    """Runs one container per declared provider.

    Config keys: ``image`` (required unless the subclass has a default),
    ``name``, ``env`` (mapping or ``KEY=value`` list), ``ports`` (host port to
    container port), ``url`` and ``health`` (``path``, ``expected_status``,
    ``timeout``, ``interval``; ``false`` disables the probe). Health settings
    are checked before anything is started.
    """

    type_name = "container"
    default_image: str | None = None
    default_ports: dict[str, str] = {}
    default_health_path: str | None = None

    def __init__(self, substrate: ExecutionSubstrate, *, settings: Settings | None = None) -> None:
        self._substrate = substrate
        self._settings = settings or get_settings()
        self._provider_id: str | None = None

    def _image(self, config: ProviderConfig) -> str:
        image = config.config.get("image") or self.default_image
        if not image:
            raise ProvisionError(f"Provider '{config.id}' has no image configured", config.id)
        return str(image)

    def _ports(self, config: ProviderConfig) -> dict[str, str]:
        ports = config.config.get("ports", self.default_ports) or {}
        return {str(host): str(container) for host, container in ports.items()}

    def _env(self, config: ProviderConfig) -> list[str]:
        env = config.config.get("env") or {}
        if isinstance(env, dict):
            return [f"{key}={value}" for key, value in env.items()]
        return [str(item) for item in env]

    def _url(self, config: ProviderConfig, ports: dict[str, str]) -> str | None:
        if config.config.get("url"):
            return str(config.config["url"]).rstrip("/")
        if ports:
            return f"http://localhost:{next(iter(ports))}"
        return None

    def extra_env(self, config: ProviderConfig, url: str | None) -> list[str]:
        return []

    def extra_metadata(self, config: ProviderConfig) -> dict[str, Any]:
        return {}

    def _health(self, config: ProviderConfig, url: str | None) -> HealthProbe | None:
        health = config.config.get("health", {})
        if health is False:
            return None
        if health is None or health is True:
            health = {}
        if not isinstance(health, dict):
            raise ProvisionError(
                f"Provider '{config.id}' health must be a mapping or false, got {health!r}",
                config.id,
            )
        path = health.get("path", self.default_health_path)
        if path is None:
            return None
        if url is None:
            raise ProvisionError(
                f"Provider '{config.id}' has a health check but no url or ports", config.id
            )

        try:
            expected = health.get("expected_status")
            return HealthProbe(
                url=f"{url}{path}",
                expected_status=int(expected) if expected is not None else None,
                timeout=float(health.get("timeout", self._settings.health_check_timeout)),
                interval=float(health.get("interval", self._settings.health_check_interval)),
            )
        except (TypeError, ValueError) as exc:
            raise ProvisionError(
                f"Provider '{config.id}' has invalid health settings: {exc}", config.id
            ) from exc

    async def init(self, config: ProviderConfig, context: RunContext) -> None:
        self._provider_id = config.id
        image = self._image(config)
        name = str(config.config.get("name", config.id))
        ports = self._ports(config)
        url = self._url(config, ports)
        env = self._env(config) + self.extra_env(config, url)
        probe = self._health(config, url)

        log = logger.bind(run_id=context.run_id, provider_id=config.id, provider_type=self.type_name)
        log.info("provider_init_started", image=image)

        try:
            started = await self._substrate.start_resource(context.run_id, image, name, env, ports)
        except SubstrateError as exc:
            raise ProvisionError(
                f"Provider '{config.id}' could not start {image}: {exc.message}", config.id
            ) from exc

        metadata: dict[str, Any] = {
            "name": name,
            "image": image,
            "ports": started.port_mappings,
            "url": url,
            **self.extra_metadata(config),
        }

        # Unpublished resources are invisible to teardown.
        try:
            if probe is not None and self._substrate.runs_workloads:
                await self._wait_healthy(config.id, probe)
            context.publish(config.id, ProviderState(started.resource_id, metadata))
        except Exception:
            await self._discard(started.resource_id)
            raise

        log.info("provider_init_finished", resource_id=started.resource_id, url=url)

    async def _wait_healthy(self, provider_id: str, probe: HealthProbe) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout) as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_delay(probe.timeout),
                    wait=wait_fixed(probe.interval),
                    retry=retry_if_exception_type((httpx.HTTPError, HealthCheckFailed)),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.get(probe.url)
                        if probe.expected_status is not None:
                            healthy = response.status_code == probe.expected_status
                        else:
                            healthy = 200 <= response.status_code < 400
                        if not healthy:
                            raise HealthCheckFailed(f"{probe.url} returned {response.status_code}")
        except (httpx.HTTPError, HealthCheckFailed) as exc:
            raise ProvisionError(
                f"Provider '{provider_id}' did not become healthy within {probe.timeout:g}s: {exc}",
                provider_id,
            ) from exc

    async def _discard(self, resource_id: str) -> None:
        try:
            await self._substrate.stop_resource(resource_id)
        except SubstrateError as exc:
            logger.warning(
                "provider_cleanup_failed",
                provider_id=self._provider_id,
                resource_id=resource_id,
                error=exc.message,
            )

    async def teardown(self, context: RunContext) -> None:
        if self._provider_id is None:
            return
        state = context.provider_state.get(self._provider_id)
        if state is None or state.resource_id is None:
            return

        try:
            await self._substrate.stop_resource(state.resource_id)
        except SubstrateError as exc:
            logger.warning(
                "provider_teardown_failed",
                run_id=context.run_id,
                provider_id=self._provider_id,
                error=exc.message,
            )
            raise TeardownError(
                f"Provider '{self._provider_id}' teardown failed: {exc.message}"
            ) from exc

        logger.info(
            "provider_torn_down",
            run_id=context.run_id,
            provider_id=self._provider_id,
            resource_id=state.resource_id,
        )


register_provider(
    ContainerProvider.type_name,
    ContainerProvider,
    description="Generic container started on the execution substrate",
)
