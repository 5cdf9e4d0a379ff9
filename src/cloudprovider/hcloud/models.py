"""
Wire models for the Hetzner Cloud API.

Responses are validated into frozen pydantic models so that a snapshot
read at the start of a reconciliation call cannot be mutated while the
call is running.
"""

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, IPvAnyNetwork


class FrozenModel(BaseModel):
    """Base for all wire models: immutable, unknown fields ignored."""

    model_config = ConfigDict(frozen=True, extra="ignore")


class ActionStatus(str, Enum):
    """Lifecycle states of a remote action."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class ActionError(FrozenModel):
    code: str = ""
    message: str = ""


class Action(FrozenModel):
    """A remote long-running action."""

    id: int
    command: str = ""
    status: ActionStatus = ActionStatus.RUNNING
    progress: int = 0
    error: Optional[ActionError] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ActionStatus.RUNNING


class ResourceRef(FrozenModel):
    id: int


class NamedRef(FrozenModel):
    name: str = ""


class LocationRef(FrozenModel):
    name: str = ""
    network_zone: str = ""


class Datacenter(FrozenModel):
    name: str = ""
    location: LocationRef = Field(default_factory=LocationRef)


class PublicIP(FrozenModel):
    ip: Optional[IPvAnyAddress] = None
    dns_ptr: Optional[str] = None


class LoadBalancerPublicNet(FrozenModel):
    enabled: bool = True
    ipv4: PublicIP = Field(default_factory=PublicIP)
    ipv6: PublicIP = Field(default_factory=PublicIP)


class LoadBalancerService(FrozenModel):
    """A listener binding: listen port forwarded to a destination port."""

    protocol: str = "tcp"
    listen_port: int
    destination_port: int


class LoadBalancerTarget(FrozenModel):
    type: str = "server"
    server: Optional[ResourceRef] = None
    use_private_ip: bool = False

    @property
    def server_id(self) -> Optional[int]:
        return self.server.id if self.server is not None else None


class LoadBalancer(FrozenModel):
    id: int
    name: str
    public_net: LoadBalancerPublicNet = Field(default_factory=LoadBalancerPublicNet)
    services: Tuple[LoadBalancerService, ...] = ()
    targets: Tuple[LoadBalancerTarget, ...] = ()
    load_balancer_type: Optional[NamedRef] = None
    location: Optional[LocationRef] = None

    def get_service(self, listen_port: int) -> Optional[LoadBalancerService]:
        """Return the listener bound to ``listen_port``, if any."""
        for service in self.services:
            if service.listen_port == listen_port:
                return service
        return None

    def has_server_target(self, server_id: int) -> bool:
        return any(target.server_id == server_id for target in self.targets)


class NetworkRoute(FrozenModel):
    """A route of a private network, unique by (destination, gateway)."""

    destination: IPvAnyNetwork
    gateway: IPvAnyAddress

    @property
    def name(self) -> str:
        return f"{self.destination}-{self.gateway}"


class Network(FrozenModel):
    id: int
    name: str = ""
    ip_range: Optional[IPvAnyNetwork] = None
    routes: Tuple[NetworkRoute, ...] = ()

    def has_route(self, route: NetworkRoute) -> bool:
        """Return True if the exact (destination, gateway) route exists."""
        return any(
            r.destination == route.destination and r.gateway == route.gateway
            for r in self.routes
        )


class ServerPrivateNet(FrozenModel):
    network: int
    ip: IPvAnyAddress
    alias_ips: Tuple[IPvAnyAddress, ...] = ()


class ServerPublicIPv4(FrozenModel):
    ip: IPvAnyAddress


class ServerPublicIPv6(FrozenModel):
    ip: IPvAnyNetwork


class ServerPublicNet(FrozenModel):
    ipv4: Optional[ServerPublicIPv4] = None
    ipv6: Optional[ServerPublicIPv6] = None


class ServerStatus(str, Enum):
    RUNNING = "running"
    INITIALIZING = "initializing"
    STARTING = "starting"
    STOPPING = "stopping"
    OFF = "off"
    DELETING = "deleting"
    MIGRATING = "migrating"
    REBUILDING = "rebuilding"
    UNKNOWN = "unknown"


class Server(FrozenModel):
    id: int
    name: str
    status: ServerStatus = ServerStatus.UNKNOWN
    public_net: ServerPublicNet = Field(default_factory=ServerPublicNet)
    private_net: Tuple[ServerPrivateNet, ...] = ()
    server_type: NamedRef = Field(default_factory=NamedRef)
    datacenter: Datacenter = Field(default_factory=Datacenter)

    def private_ip(self, network_id: int) -> Optional[IPvAnyAddress]:
        """Return the server's IP in the given private network, if attached."""
        for private_net in self.private_net:
            if private_net.network == network_id:
                return private_net.ip
        return None
