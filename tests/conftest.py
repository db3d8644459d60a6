"""Root test configuration."""

from __future__ import annotations

import logging
from typing import Any

import pytest
import structlog
from vriksh.config import Settings
from vriksh.core.errors import ProvisionError, TeardownError
from vriksh.db.repositories import RunLedger
from vriksh.providers.base import ProviderState
from vriksh.providers.registry import ProviderRegistry
from vriksh.substrate.memory import InMemorySubstrate


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def make_lab(
    providers: list[dict[str, Any]] | None = None,
    *,
    lab_id: str = "demo-lab",
    **spec: Any,
) -> dict[str, Any]:
    """Build a minimal valid lab document; extra keywords go under ``spec``."""
    body: dict[str, Any] = {
        "topology": {"providers": providers or [{"id": "web", "type": "fake"}]},
        "tasks": [{"id": "explore", "title": "Explore the lab"}],
    }
    body.update(spec)
    return {
        "apiVersion": "vriksh.dev/v2",
        "kind": "Lab",
        "metadata": {"id": lab_id, "title": "Demo Lab", "version": "1.0.0"},
        "spec": body,
    }


class FakeProvider:
    """Provider that records calls; ``fail_init`` / ``fail_teardown`` config flags inject errors."""

    type_name = "fake"

    def __init__(self, calls: list[tuple[str, str]], **_: Any) -> None:
        self.calls = calls
        self.provider_id: str | None = None
        self.fail_teardown = False

    async def init(self, config, context) -> None:
        self.provider_id = config.id
        self.calls.append(("init", config.id))
        if config.config.get("fail_init"):
            raise ProvisionError(f"{config.id} refused to start", config.id)
        self.fail_teardown = bool(config.config.get("fail_teardown"))
        context.publish(
            config.id,
            ProviderState(f"res-{config.id}", {"url": f"http://{config.id}.test"}),
        )

    async def teardown(self, context) -> None:
        assert self.provider_id is not None
        self.calls.append(("teardown", self.provider_id))
        if self.fail_teardown:
            raise TeardownError(f"{self.provider_id} would not stop")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        home_dir=tmp_path,
        backend="memory",
        health_check_timeout=1,
        health_check_interval=0.01,
    )


@pytest.fixture
async def ledger(tmp_path):
    ledger = RunLedger.from_settings(url=f"sqlite+aiosqlite:///{tmp_path / 'state.sqlite'}")
    await ledger.init_schema()
    yield ledger
    await ledger.dispose()


@pytest.fixture
def substrate() -> InMemorySubstrate:
    return InMemorySubstrate()


@pytest.fixture
def provider_calls() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def registry(provider_calls) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("fake", lambda **kwargs: FakeProvider(provider_calls, **kwargs))
    return registry


@pytest.fixture
def lab_factory():
    return make_lab
