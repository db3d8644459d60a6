"""Tests for the provider registry and the built-in container/gitlab providers."""

from __future__ import annotations

import httpx
import pytest
import respx
from vriksh.core.errors import (
    ProvisionError,
    SubstrateError,
    TeardownError,
    UnknownProviderError,
)
from vriksh.orchestration.context import RunContext
from vriksh.providers import list_providers, provider_registry
from vriksh.providers.container import ContainerProvider
from vriksh.providers.gitlab import GitLabProvider
from vriksh.providers.registry import ProviderRegistry
from vriksh.specs.models import ProviderConfig
from vriksh.substrate.memory import InMemorySubstrate


def _config(provider_id: str = "web", type: str = "container", **config) -> ProviderConfig:
    return ProviderConfig(id=provider_id, type=type, config=config)


class TestRegistry:
    def test_builtins_registered(self):
        names = {spec.name for spec in list_providers()}
        assert {"container", "gitlab"} <= names
        assert "gitlab" in provider_registry

    def test_unknown_type(self):
        registry = ProviderRegistry()

        with pytest.raises(UnknownProviderError) as exc_info:
            registry.create("postgres")

        assert exc_info.value.message == "Unknown provider type: postgres"
        assert isinstance(exc_info.value, ProvisionError)

    def test_create_passes_kwargs(self):
        registry = ProviderRegistry()
        registry.register("echo", lambda **kwargs: kwargs, version="1.0", description="echo")

        assert registry.create("echo", substrate="s") == {"substrate": "s"}
        assert registry.list()[0].version == "1.0"

    def test_name_required(self):
        with pytest.raises(ValueError):
            ProviderRegistry().register("", lambda **kwargs: None)


class TestContainerProvider:
    @pytest.mark.asyncio
    async def test_init_publishes_state(self, settings):
        substrate = InMemorySubstrate()
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-abc")

        await provider.init(
            _config(image="nginx:1.27", env={"MODE": "lab"}, ports={8080: 80}),
            context,
        )

        state = context.provider_state["web"]
        resource = substrate.resources[state.resource_id]
        assert resource.image == "nginx:1.27"
        assert resource.env == ["MODE=lab"]
        assert resource.ports == {"8080": "80"}
        assert resource.name == "vriksh-run-abc-web"
        assert state.metadata["url"] == "http://localhost:8080"
        assert state.metadata["image"] == "nginx:1.27"

    @pytest.mark.asyncio
    async def test_image_required(self, settings):
        provider = ContainerProvider(InMemorySubstrate(), settings=settings)

        with pytest.raises(ProvisionError):
            await provider.init(_config(), RunContext(run_id="run-1"))

    @pytest.mark.asyncio
    async def test_start_failure_is_provision_error(self, settings):
        substrate = InMemorySubstrate(fail_on_start=["web"])
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        with pytest.raises(ProvisionError) as exc_info:
            await provider.init(_config(image="nginx"), context)

        assert exc_info.value.provider_id == "web"
        assert context.provider_state == {}

    @pytest.mark.asyncio
    async def test_teardown_stops_resource(self, settings):
        substrate = InMemorySubstrate()
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")
        await provider.init(_config(image="nginx"), context)

        await provider.teardown(context)

        assert substrate.running() == []
        assert substrate.stop_calls == [context.provider_state["web"].resource_id]

    @pytest.mark.asyncio
    async def test_teardown_without_init_is_noop(self, settings):
        substrate = InMemorySubstrate()
        await ContainerProvider(substrate, settings=settings).teardown(RunContext(run_id="run-1"))

        assert substrate.stop_calls == []

    @pytest.mark.asyncio
    async def test_teardown_failure_raises_teardown_error(self, settings, monkeypatch):
        substrate = InMemorySubstrate()
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")
        await provider.init(_config(image="nginx"), context)

        async def broken_stop(resource_id):
            raise SubstrateError("engine went away")

        monkeypatch.setattr(substrate, "stop_resource", broken_stop)

        with pytest.raises(TeardownError):
            await provider.teardown(context)


class TestHealthChecks:
    """Health probes only run on substrates that really run workloads."""

    @pytest.fixture
    def substrate(self):
        substrate = InMemorySubstrate()
        substrate.runs_workloads = True
        return substrate

    @pytest.mark.asyncio
    async def test_waits_until_healthy(self, settings, substrate):
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        with respx.mock:
            route = respx.get("http://localhost:8080/health")
            route.side_effect = [
                httpx.ConnectError("refused"),
                httpx.Response(502),
                httpx.Response(200),
            ]

            await provider.init(
                _config(image="nginx", ports={"8080": "80"}, health={"path": "/health"}),
                context,
            )

            assert route.call_count == 3
        assert "web" in context.provider_state

    @pytest.mark.asyncio
    async def test_unhealthy_resource_is_removed(self, settings, substrate):
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        with respx.mock:
            respx.get("http://localhost:8080/health").mock(return_value=httpx.Response(503))

            with pytest.raises(ProvisionError) as exc_info:
                await provider.init(
                    _config(
                        image="nginx",
                        ports={"8080": "80"},
                        health={"path": "/health", "timeout": 0.05, "interval": 0.01},
                    ),
                    context,
                )

        assert "did not become healthy" in exc_info.value.message
        assert context.provider_state == {}
        assert substrate.running() == []

    @pytest.mark.asyncio
    async def test_expected_status(self, settings, substrate):
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        with respx.mock:
            respx.get("http://svc.test/login").mock(return_value=httpx.Response(401))

            await provider.init(
                _config(
                    image="nginx",
                    url="http://svc.test/",
                    health={"path": "/login", "expected_status": 401},
                ),
                context,
            )

        assert context.provider_state["web"].metadata["url"] == "http://svc.test"

    @pytest.mark.asyncio
    async def test_health_disabled(self, settings, substrate):
        provider = GitLabProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        with respx.mock:
            await provider.init(_config("gitlab", "gitlab", health=False), context)

        assert "gitlab" in context.provider_state

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "health",
        [
            {"path": "/h", "timeout": "soon"},
            {"path": "/h", "expected_status": "ok"},
            "yes",
        ],
    )
    async def test_bad_health_settings_start_nothing(self, settings, substrate, health):
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        with pytest.raises(ProvisionError) as exc_info:
            await provider.init(
                _config(image="nginx", ports={"8080": "80"}, health=health), context
            )

        assert exc_info.value.provider_id == "web"
        assert substrate.resources == {}
        assert substrate.running() == []
        assert context.provider_state == {}

    @pytest.mark.asyncio
    async def test_health_true_uses_defaults(self, settings, substrate):
        provider = GitLabProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        with respx.mock:
            route = respx.get("http://localhost:8923/users/sign_in").mock(
                return_value=httpx.Response(200)
            )

            await provider.init(_config("gitlab", "gitlab", health=True), context)

            assert route.called
        assert "gitlab" in context.provider_state

    @pytest.mark.asyncio
    async def test_unexpected_error_after_start_removes_resource(
        self, settings, substrate, monkeypatch
    ):
        provider = ContainerProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        def broken_publish(provider_id, state):
            raise RuntimeError("context closed")

        monkeypatch.setattr(context, "publish", broken_publish)

        with pytest.raises(RuntimeError):
            await provider.init(_config(image="nginx"), context)

        assert len(substrate.stop_calls) == 1
        assert substrate.running() == []


class TestGitLabProvider:
    @pytest.mark.asyncio
    async def test_defaults(self, settings):
        substrate = InMemorySubstrate()
        provider = GitLabProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        await provider.init(_config("gitlab", "gitlab", root_password="s3cret-pass"), context)

        state = context.provider_state["gitlab"]
        resource = substrate.resources[state.resource_id]
        assert resource.image == "gitlab/gitlab-ce:latest"
        assert resource.ports == {"8923": "80"}
        assert "GITLAB_ROOT_PASSWORD=s3cret-pass" in resource.env
        assert any(e.startswith("GITLAB_OMNIBUS_CONFIG=external_url 'http://localhost:8923'") for e in resource.env)
        assert state.metadata["url"] == "http://localhost:8923"
        assert state.metadata["credentials"] == {"username": "root", "password": "s3cret-pass"}
        assert "token" not in state.metadata

    @pytest.mark.asyncio
    async def test_generated_password_and_token(self, settings):
        substrate = InMemorySubstrate()
        provider = GitLabProvider(substrate, settings=settings)
        context = RunContext(run_id="run-1")

        await provider.init(_config("gitlab", "gitlab", token="glpat-123"), context)

        metadata = context.provider_state["gitlab"].metadata
        password = metadata["credentials"]["password"]
        assert len(password) >= 16
        resource = substrate.resources[context.provider_state["gitlab"].resource_id]
        assert f"GITLAB_ROOT_PASSWORD={password}" in resource.env
        assert metadata["token"] == "glpat-123"
