"""Provider utilities and built-in registrations."""

# Import built-in providers for side effects (registration)
from vriksh.providers import container as _container  # noqa: F401
from vriksh.providers import gitlab as _gitlab  # noqa: F401
from vriksh.providers.base import Provider, ProviderState
from vriksh.providers.registry import (
    ProviderRegistry,
    create_provider,
    list_providers,
    provider_registry,
    register_provider,
)

__all__ = [
    "Provider",
    "ProviderRegistry",
    "ProviderState",
    "create_provider",
    "list_providers",
    "provider_registry",
    "register_provider",
]
