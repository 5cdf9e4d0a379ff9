"""
Route reconciliation for the pod network.

Every call reads its own snapshot of the network (and, for listing, the
server inventory) and threads it through the helpers. Nothing is stored on
the reconciler, so concurrent calls on one instance never share state.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from cloudprovider.base import RoutesInterface
from cloudprovider.hcloud.actions import ActionWaiter
from cloudprovider.hcloud.client import HCloudClient
from cloudprovider.hcloud.models import Action, Network, NetworkRoute, Server
from errors import (
    CloudProviderError,
    GatewayResolutionError,
    NotFoundError,
    TransportError,
)
from events import EventBus, EventType
from models import Route

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkSnapshot:
    """The network and server inventory as read at the start of one call."""

    network: Network
    servers: Tuple[Server, ...] = ()

    def find_target_server(self, gateway) -> Optional[Server]:
        """
        Return the server whose private IP in this network is ``gateway``.

        The first match wins; two servers sharing an IP in one network is
        not expected.
        """
        for server in self.servers:
            for private_net in server.private_net:
                if private_net.network != self.network.id:
                    continue
                if private_net.ip == gateway:
                    return server
        return None


class RouteReconciler(RoutesInterface):
    """Converges the routes of one private network to node placement."""

    def __init__(
        self,
        client: HCloudClient,
        waiter: ActionWaiter,
        network_id: int,
        event_bus: Optional[EventBus] = None,
    ):
        self.client = client
        self.waiter = waiter
        self.network_id = network_id
        self.event_bus = event_bus

    async def list_routes(self) -> List[Route]:
        snapshot = await self._snapshot(with_servers=True)

        routes = []
        for network_route in snapshot.network.routes:
            route = Route(
                name=network_route.name,
                destination_cidr=str(network_route.destination),
            )

            server = snapshot.find_target_server(network_route.gateway)
            if server is None:
                route.blackhole = True
                logger.warning(
                    f"Route {network_route.name} has no target server, "
                    f"reporting it as blackhole"
                )
            else:
                route.target_node = server.name

            routes.append(route)

        return routes

    async def create_route(self, route: Route) -> None:
        snapshot = await self._snapshot()
        network_route = self._to_network_route(route, snapshot)

        if snapshot.network.has_route(network_route):
            logger.debug(f"Route {network_route.name} already exists")
            return

        try:
            action = await self.client.add_network_route(
                snapshot.network, network_route
            )
        except TransportError as e:
            raise TransportError(
                f"unable to create route: request rejected: {e}",
                status=e.status,
                code=e.code,
            ) from e

        logger.info(
            f"Creating route {network_route.name} in network {self.network_id}"
        )
        await self._wait(action, network_route, "unable to create route")
        await self._emit(EventType.CREATED, network_route, "Created route")

    async def delete_route(self, route: Route) -> None:
        snapshot = await self._snapshot()
        network_route = self._to_network_route(route, snapshot)

        if not snapshot.network.has_route(network_route):
            logger.debug(f"Route {network_route.name} already absent")
            return

        try:
            action = await self.client.delete_network_route(
                snapshot.network, network_route
            )
        except TransportError as e:
            raise TransportError(
                f"unable to delete route: request rejected: {e}",
                status=e.status,
                code=e.code,
            ) from e

        logger.info(
            f"Deleting route {network_route.name} from network {self.network_id}"
        )
        await self._wait(action, network_route, "unable to delete route")
        await self._emit(EventType.DELETED, network_route, "Deleted route")

    # Private helper methods

    async def _snapshot(self, with_servers: bool = False) -> NetworkSnapshot:
        """Read the configured network, and optionally all servers."""
        network = await self.client.get_network(self.network_id)
        if network is None:
            raise NotFoundError(f"network not found: ID={self.network_id}")

        if not with_servers:
            return NetworkSnapshot(network=network)

        servers = await self.client.all_servers()
        return NetworkSnapshot(network=network, servers=tuple(servers))

    @staticmethod
    def _to_network_route(route: Route, snapshot: NetworkSnapshot) -> NetworkRoute:
        """
        Translate a route into a network route.

        The gateway is the target node's internal IP. Without one, an
        existing route to the same destination supplies it.

        Raises:
            GatewayResolutionError: The destination does not parse, or no
                gateway IP could be determined.
        """
        try:
            destination = ipaddress.ip_network(route.destination_cidr, strict=False)
        except ValueError as e:
            raise GatewayResolutionError(
                f"unable to parse destination cidr: {route.destination_cidr}"
            ) from e

        gateway = None
        internal_ip = route.internal_ip()
        if internal_ip is not None:
            try:
                gateway = ipaddress.ip_address(internal_ip)
            except ValueError as e:
                raise GatewayResolutionError(
                    f"unable to parse node address: {internal_ip}"
                ) from e
        else:
            # The last route to the destination wins
            for existing in snapshot.network.routes:
                if existing.destination == destination:
                    gateway = existing.gateway

        if gateway is None:
            raise GatewayResolutionError(
                f"unable to figure out gateway ip for {route.destination_cidr}: "
                f"neither NodeInternalIP is set, nor does a matching route exist"
            )

        return NetworkRoute(destination=destination, gateway=gateway)

    async def _wait(
        self, action: Action, network_route: NetworkRoute, operation: str
    ) -> None:
        result = await self.waiter.wait(action)
        try:
            result.raise_for_outcome(operation)
        except CloudProviderError as e:
            await self._emit(EventType.FAILED, network_route, str(e))
            raise

    async def _emit(
        self, event_type: EventType, network_route: NetworkRoute, message: str
    ) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit(
                event_type, "Route", network_route.name, message
            )
