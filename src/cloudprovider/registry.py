"""
Provider Registry - Discovery and registration of cloud providers.

Providers register a factory under their name. Built-in providers are
registered explicitly; additional ones are discovered through the
'ccm_from_scratch.providers' entry point group.
"""

import logging
from importlib.metadata import entry_points
from typing import Callable, Dict, Optional

from cloudprovider.base import CloudProvider
from config import Config

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "ccm_from_scratch.providers"

ProviderFactory = Callable[..., CloudProvider]


class ProviderRegistry:
    """Central registry mapping provider names to factories."""

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """
        Register a provider factory.

        Args:
            name: Provider name, e.g. 'hcloud-from-scratch'.
            factory: Callable building the provider from a Config and
                optional keyword arguments.
        """
        if name in self._factories:
            logger.warning(f"Overwriting existing cloud provider: {name}")

        self._factories[name] = factory
        logger.debug(f"Registered cloud provider: {name}")

    def get(self, name: str, config: Config, **kwargs) -> CloudProvider:
        """
        Build a provider by name.

        Raises:
            ValueError: If the provider name is not registered.
        """
        if not self.has(name):
            available = ", ".join(self._factories.keys()) or "none"
            raise ValueError(
                f"Unknown cloud provider: {name}. Available providers: {available}"
            )
        return self._factories[name](config, **kwargs)

    def list_providers(self) -> list[str]:
        """List all registered provider names."""
        return list(self._factories.keys())

    def has(self, name: str) -> bool:
        return name in self._factories


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """Get the global provider registry singleton."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_cloud_provider(name: str, factory: ProviderFactory) -> None:
    get_registry().register(name, factory)


def get_cloud_provider(name: str, config: Config, **kwargs) -> CloudProvider:
    return get_registry().get(name, config, **kwargs)


def list_cloud_providers() -> list[str]:
    return get_registry().list_providers()


def register_builtin_providers() -> None:
    """
    Register the built-in provider and discover providers via entry points.
    """
    from cloudprovider.hcloud import PROVIDER_NAME, HCloudProvider

    registry = get_registry()
    registry.register(PROVIDER_NAME, HCloudProvider)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register(ep.name, ep.load())
        except Exception as e:
            logger.warning(f"Could not load cloud provider {ep.name}: {e}")
