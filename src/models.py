"""
Core types shared between the host framework and the cloud provider.

These mirror the subset of the Kubernetes objects the reconcilers read
(Services, Nodes) and the values they hand back (ingress addresses, routes,
instance metadata).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class NodeAddressType(Enum):
    """Kinds of node addresses."""

    HOSTNAME = "Hostname"
    EXTERNAL_IP = "ExternalIP"
    INTERNAL_IP = "InternalIP"
    EXTERNAL_DNS = "ExternalDNS"
    INTERNAL_DNS = "InternalDNS"


@dataclass(frozen=True)
class NodeAddress:
    """A single typed address of a node."""

    type: NodeAddressType
    address: str


@dataclass
class Node:
    """A cluster node as seen by the reconcilers."""

    name: str
    provider_id: str = ""
    addresses: List[NodeAddress] = field(default_factory=list)


@dataclass(frozen=True)
class ServicePort:
    """A (listen port, node port) pair of a LoadBalancer service."""

    port: int
    node_port: int
    name: str = ""
    protocol: str = "TCP"


@dataclass
class Service:
    """A Service requesting a load balancer."""

    name: str
    namespace: str = "default"
    ports: List[ServicePort] = field(default_factory=list)


@dataclass(frozen=True)
class LoadBalancerIngress:
    """One public entry point of a load balancer."""

    ip: str
    hostname: Optional[str] = None


@dataclass
class Route:
    """A pod-network route as exchanged with the host framework."""

    destination_cidr: str
    name: str = ""
    target_node: Optional[str] = None
    target_node_addresses: List[NodeAddress] = field(default_factory=list)
    blackhole: bool = False

    def internal_ip(self) -> Optional[str]:
        """Return the first internal IP among the target node addresses."""
        for address in self.target_node_addresses:
            if address.type == NodeAddressType.INTERNAL_IP:
                return address.address
        return None


@dataclass
class InstanceMetadata:
    """Metadata describing the remote instance backing a node."""

    provider_id: str
    instance_type: str
    node_addresses: List[NodeAddress] = field(default_factory=list)
    zone: str = ""
    region: str = ""
