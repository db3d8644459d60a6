from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from vriksh.core.errors import UnknownProviderError
from vriksh.providers.base import Provider

ProviderFactory = Callable[..., Provider]


@dataclass(frozen=True)
class ProviderSpec:
    """Metadata describing a registered provider."""

    name: str
    factory: ProviderFactory
    version: str | None = None
    description: str | None = None


class ProviderRegistry:
    """Maps provider type names to factories.

    The orchestrator only ever goes through a registry, so adding a provider
    type is a registration, never an orchestrator change.
    """

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderSpec] = {}

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        *,
        version: str | None = None,
        description: str | None = None,
    ) -> None:
        if not name:
            raise ValueError("Provider name is required")
        spec = ProviderSpec(
            name=name,
            factory=factory,
            version=version,
            description=description,
        )
        self._providers[name] = spec

    def create(self, name: str, **kwargs: Any) -> Provider:
        spec = self._providers.get(name)
        if spec is None:
            raise UnknownProviderError(name)
        return spec.factory(**kwargs)

    def list(self) -> List[ProviderSpec]:
        return list(self._providers.values())

    def __contains__(self, name: object) -> bool:
        return name in self._providers


provider_registry = ProviderRegistry()


def register_provider(
    name: str,
    factory: ProviderFactory,
    *,
    version: str | None = None,
    description: str | None = None,
) -> None:
    provider_registry.register(name, factory, version=version, description=description)


def create_provider(name: str, **kwargs: Any) -> Provider:
    return provider_registry.create(name, **kwargs)


def list_providers() -> List[ProviderSpec]:
    return provider_registry.list()
