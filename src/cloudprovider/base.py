"""
Cloud Provider Base - Abstract interfaces implemented by cloud providers.

The host framework talks to a provider only through these interfaces:
load balancers for Services, routes for the pod network, and instances
for Nodes. A provider may leave any of them unimplemented by returning
None from the matching accessor.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from models import (
    InstanceMetadata,
    LoadBalancerIngress,
    Node,
    Route,
    Service,
)


class LoadBalancerInterface(ABC):
    """Converges a remote load balancer to a Service."""

    @abstractmethod
    def get_load_balancer_name(self, cluster_name: str, service: Service) -> str:
        """Return the deterministic load balancer name for a Service."""
        pass

    @abstractmethod
    async def get_load_balancer(
        self, cluster_name: str, service: Service
    ) -> Tuple[List[LoadBalancerIngress], bool]:
        """
        Look up the load balancer of a Service.

        Returns:
            Tuple of (ingress addresses, exists). Absence is not an error.
        """
        pass

    @abstractmethod
    async def ensure_load_balancer(
        self, cluster_name: str, service: Service, nodes: List[Node]
    ) -> List[LoadBalancerIngress]:
        """
        Create or update the load balancer so it matches the Service.

        Returns:
            The ingress addresses of the converged load balancer.
        """
        pass

    @abstractmethod
    async def update_load_balancer(
        self, cluster_name: str, service: Service, nodes: List[Node]
    ) -> None:
        """Update the targets of an existing load balancer."""
        pass

    @abstractmethod
    async def ensure_load_balancer_deleted(
        self, cluster_name: str, service: Service
    ) -> None:
        """Delete the load balancer of a Service if it exists."""
        pass


class RoutesInterface(ABC):
    """Converges the route table of the pod network."""

    @abstractmethod
    async def list_routes(self) -> List[Route]:
        """List all routes, marking those without a live target as blackholes."""
        pass

    @abstractmethod
    async def create_route(self, route: Route) -> None:
        """Create a route towards the route's target node."""
        pass

    @abstractmethod
    async def delete_route(self, route: Route) -> None:
        """Delete a route."""
        pass


class InstancesInterface(ABC):
    """Answers questions about the instances backing Nodes."""

    @abstractmethod
    async def instance_exists(self, node: Node) -> bool:
        pass

    @abstractmethod
    async def instance_shutdown(self, node: Node) -> bool:
        pass

    @abstractmethod
    async def instance_metadata(self, node: Node) -> InstanceMetadata:
        pass


class CloudProvider(ABC):
    """
    Abstract base class for cloud providers.

    Providers are registered by name in the provider registry and built
    from the global configuration.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider."""
        pass

    @abstractmethod
    def load_balancer(self) -> Optional[LoadBalancerInterface]:
        pass

    @abstractmethod
    def instances(self) -> Optional[InstancesInterface]:
        pass

    @abstractmethod
    def routes(self) -> Optional[RoutesInterface]:
        pass
