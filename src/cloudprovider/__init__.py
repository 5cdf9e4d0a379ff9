"""
Cloud provider interfaces and registry.
"""

from cloudprovider.base import (
    CloudProvider,
    InstancesInterface,
    LoadBalancerInterface,
    RoutesInterface,
)
from cloudprovider.registry import (
    ProviderRegistry,
    get_cloud_provider,
    get_registry,
    list_cloud_providers,
    register_builtin_providers,
    register_cloud_provider,
)

__all__ = [
    "CloudProvider",
    "InstancesInterface",
    "LoadBalancerInterface",
    "RoutesInterface",
    "ProviderRegistry",
    "get_cloud_provider",
    "get_registry",
    "list_cloud_providers",
    "register_builtin_providers",
    "register_cloud_provider",
]
