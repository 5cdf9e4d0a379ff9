"""Pytest configuration and fixtures."""

import itertools
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from cloudprovider.hcloud.actions import ActionWaiter
from cloudprovider.hcloud.instances import NodeResolver
from cloudprovider.hcloud.models import (
    Action,
    LoadBalancer,
    LoadBalancerService,
    LoadBalancerTarget,
    Network,
    NetworkRoute,
    ResourceRef,
    Server,
)
from models import Node, NodeAddress, NodeAddressType, Service, ServicePort


def make_server(
    server_id: int,
    name: str,
    private_ip: Optional[str] = None,
    network_id: int = 1,
    status: str = "running",
) -> Server:
    data: Dict[str, Any] = {
        "id": server_id,
        "name": name,
        "status": status,
        "public_net": {
            "ipv4": {"ip": f"203.0.113.{server_id % 250}"},
            "ipv6": {"ip": "2001:db8:1::/64"},
        },
        "private_net": [],
        "server_type": {"name": "cx22"},
        "datacenter": {
            "name": "fsn1-dc14",
            "location": {"name": "fsn1", "network_zone": "eu-central"},
        },
    }
    if private_ip:
        data["private_net"] = [{"network": network_id, "ip": private_ip}]
    return Server.model_validate(data)


def make_load_balancer(
    lb_id: int,
    name: str,
    services: Optional[List[Tuple[int, int]]] = None,
    targets: Optional[List[int]] = None,
    ipv4: Optional[str] = "198.51.100.10",
    ipv6: Optional[str] = "2001:db8:2::1",
    dns_ptr: Optional[str] = "lb.example.com",
) -> LoadBalancer:
    return LoadBalancer.model_validate(
        {
            "id": lb_id,
            "name": name,
            "public_net": {
                "enabled": True,
                "ipv4": {"ip": ipv4, "dns_ptr": dns_ptr},
                "ipv6": {"ip": ipv6, "dns_ptr": None},
            },
            "services": [
                {"protocol": "tcp", "listen_port": lp, "destination_port": dp}
                for lp, dp in (services or [])
            ],
            "targets": [
                {"type": "server", "server": {"id": sid}} for sid in (targets or [])
            ],
        }
    )


def make_network(network_id: int, routes: Optional[List[Tuple[str, str]]] = None):
    return Network.model_validate(
        {
            "id": network_id,
            "name": "k8s",
            "ip_range": "10.0.0.0/8",
            "routes": [
                {"destination": d, "gateway": g} for d, g in (routes or [])
            ],
        }
    )


class FakeHCloudClient:
    """
    In-memory stand-in for HCloudClient.

    Every mutation returns a 'running' action that turns into
    ``final_action_status`` when polled, or into an error for commands
    listed in ``failing_commands``. Listener, target and route mutations
    are only applied when their action succeeds. A load balancer exists as
    soon as it is created, even if its creation action fails. Every
    mutating call is recorded in ``calls``.
    """

    def __init__(self):
        self.load_balancers: Dict[int, LoadBalancer] = {}
        self.networks: Dict[int, Network] = {}
        self.servers: List[Server] = []
        self.actions: Dict[int, Action] = {}
        self.calls: List[Tuple[Any, ...]] = []
        self.final_action_status = "success"
        self.final_action_error: Optional[Dict[str, str]] = None
        self.failing_commands: Set[str] = set()
        self._ids = itertools.count(1000)

    def _fails(self, command: str) -> bool:
        return command in self.failing_commands or self.final_action_status == "error"

    def _action(self, command: str) -> Action:
        action_id = next(self._ids)
        final: Dict[str, Any] = {
            "id": action_id,
            "command": command,
            "status": self.final_action_status,
            "progress": 100,
            "error": self.final_action_error,
        }
        if command in self.failing_commands:
            final["status"] = "error"
            final["error"] = {"code": "action_failed", "message": f"{command} failed"}
        self.actions[action_id] = Action.model_validate(final)
        return Action.model_validate(
            {"id": action_id, "command": command, "status": "running"}
        )

    def _update_load_balancer(self, load_balancer_id: int, command: str, **update):
        if self._fails(command):
            return
        current = self.load_balancers[load_balancer_id]
        self.load_balancers[load_balancer_id] = current.model_copy(
            update={k: fn(current) for k, fn in update.items()}
        )

    def _update_routes(self, network_id: int, command: str, fn):
        if self._fails(command):
            return
        current = self.networks[network_id]
        self.networks[network_id] = current.model_copy(
            update={"routes": fn(current.routes)}
        )

    # Load balancers

    async def get_load_balancer(self, load_balancer_id):
        return self.load_balancers.get(load_balancer_id)

    async def get_load_balancer_by_name(self, name):
        for load_balancer in self.load_balancers.values():
            if load_balancer.name == name:
                return load_balancer
        return None

    async def create_load_balancer(self, name, load_balancer_type, location):
        self.calls.append(("create_load_balancer", name, load_balancer_type, location))
        lb_id = next(self._ids)
        self.load_balancers[lb_id] = make_load_balancer(lb_id, name)
        # The creation answer carries no addresses yet
        created = make_load_balancer(lb_id, name, ipv4=None, ipv6=None, dns_ptr=None)
        return created, self._action("create_load_balancer")

    async def delete_load_balancer(self, load_balancer):
        self.calls.append(("delete_load_balancer", load_balancer.id))
        self.load_balancers.pop(load_balancer.id, None)

    async def add_load_balancer_service(
        self, load_balancer, listen_port, destination_port, protocol="tcp"
    ):
        self.calls.append(("add_service", listen_port, destination_port))
        service = LoadBalancerService(
            listen_port=listen_port, destination_port=destination_port
        )
        self._update_load_balancer(
            load_balancer.id,
            "add_service",
            services=lambda lb: lb.services + (service,),
        )
        return self._action("add_service")

    async def update_load_balancer_service(
        self, load_balancer, listen_port, destination_port, protocol="tcp"
    ):
        self.calls.append(("update_service", listen_port, destination_port))
        self._update_load_balancer(
            load_balancer.id,
            "update_service",
            services=lambda lb: tuple(
                s.model_copy(update={"destination_port": destination_port})
                if s.listen_port == listen_port
                else s
                for s in lb.services
            ),
        )
        return self._action("update_service")

    async def delete_load_balancer_service(self, load_balancer, listen_port):
        self.calls.append(("delete_service", listen_port))
        self._update_load_balancer(
            load_balancer.id,
            "delete_service",
            services=lambda lb: tuple(
                s for s in lb.services if s.listen_port != listen_port
            ),
        )
        return self._action("delete_service")

    async def add_load_balancer_server_target(
        self, load_balancer, server_id, use_private_ip=False
    ):
        self.calls.append(("add_target", server_id))
        target = LoadBalancerTarget(server=ResourceRef(id=server_id))
        self._update_load_balancer(
            load_balancer.id,
            "add_target",
            targets=lambda lb: lb.targets + (target,),
        )
        return self._action("add_target")

    async def remove_load_balancer_server_target(self, load_balancer, server_id):
        self.calls.append(("remove_target", server_id))
        self._update_load_balancer(
            load_balancer.id,
            "remove_target",
            targets=lambda lb: tuple(
                t for t in lb.targets if t.server_id != server_id
            ),
        )
        return self._action("remove_target")

    # Networks

    async def get_network(self, network_id):
        return self.networks.get(network_id)

    async def add_network_route(self, network, route: NetworkRoute):
        self.calls.append(("add_route", str(route.destination), str(route.gateway)))
        self._update_routes(network.id, "add_route", lambda routes: routes + (route,))
        return self._action("add_route")

    async def delete_network_route(self, network, route: NetworkRoute):
        self.calls.append(("delete_route", str(route.destination), str(route.gateway)))
        self._update_routes(
            network.id,
            "delete_route",
            lambda routes: tuple(
                r
                for r in routes
                if not (
                    r.destination == route.destination and r.gateway == route.gateway
                )
            ),
        )
        return self._action("delete_route")

    # Servers

    async def get_server(self, server_id):
        for server in self.servers:
            if server.id == server_id:
                return server
        return None

    async def get_server_by_name(self, name):
        for server in self.servers:
            if server.name == name:
                return server
        return None

    async def all_servers(self):
        return list(self.servers)

    # Actions

    async def get_action(self, action_id):
        return self.actions[action_id]


@pytest.fixture
def fake_client():
    return FakeHCloudClient()


@pytest.fixture
def waiter(fake_client):
    return ActionWaiter(fake_client, poll_interval=0.001, max_poll_interval=0.01)


@pytest.fixture
def resolver(fake_client):
    return NodeResolver(fake_client)


@pytest.fixture
def web_service():
    return Service(
        name="web",
        namespace="default",
        ports=[ServicePort(port=80, node_port=30080)],
    )


def make_node(name: str, server_id: Optional[int] = None, internal_ip: Optional[str] = None):
    addresses = [NodeAddress(NodeAddressType.HOSTNAME, name)]
    if internal_ip:
        addresses.append(NodeAddress(NodeAddressType.INTERNAL_IP, internal_ip))
    provider_id = f"hcloud-from-scratch://{server_id}" if server_id is not None else ""
    return Node(name=name, provider_id=provider_id, addresses=addresses)
