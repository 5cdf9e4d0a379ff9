"""
Node to server resolution and instance metadata.
"""

import logging
from typing import List, Optional

from cloudprovider.base import InstancesInterface
from cloudprovider.hcloud.client import HCloudClient
from cloudprovider.hcloud.models import Server, ServerStatus
from errors import MalformedIdentifierError, NotFoundError
from models import InstanceMetadata, Node, NodeAddress, NodeAddressType

logger = logging.getLogger(__name__)

PROVIDER_NAME = "hcloud-from-scratch"


def format_provider_id(server_id: int) -> str:
    """Return the provider ID stamped on a node for ``server_id``."""
    return f"{PROVIDER_NAME}://{server_id}"


def parse_provider_id(provider_id: str) -> int:
    """
    Parse a stamped provider ID into a server ID.

    Args:
        provider_id: Value of the node's providerID, e.g.
            'hcloud-from-scratch://4711'.

    Returns:
        The server ID.

    Raises:
        MalformedIdentifierError: The scheme does not match or the remainder
            is not an integer.
    """
    prefix = f"{PROVIDER_NAME}://"
    if not provider_id.startswith(prefix):
        raise MalformedIdentifierError(
            f"ProviderID does not follow expected format: {provider_id}"
        )

    try:
        return int(provider_id[len(prefix):])
    except ValueError as e:
        raise MalformedIdentifierError(
            f"unable to parse ProviderID to integer: {provider_id}"
        ) from e


class NodeResolver:
    """Resolves Nodes to servers, by stamped provider ID or by name."""

    def __init__(self, client: HCloudClient):
        self.client = client

    async def resolve(self, node: Node) -> int:
        """
        Resolve a node to its server ID.

        A stamped provider ID is parsed without calling the API.

        Raises:
            MalformedIdentifierError: The stamped provider ID does not parse.
            NotFoundError: No server carries the node's name.
        """
        if node.provider_id:
            return parse_provider_id(node.provider_id)

        server = await self.client.get_server_by_name(node.name)
        if server is None:
            raise NotFoundError(f"server not found for node {node.name}")
        return server.id

    async def get_server(self, node: Node) -> Server:
        """
        Fetch the server backing a node.

        Raises:
            MalformedIdentifierError: The stamped provider ID does not parse.
            NotFoundError: The server does not exist.
        """
        if node.provider_id:
            server = await self.client.get_server(parse_provider_id(node.provider_id))
        else:
            server = await self.client.get_server_by_name(node.name)

        if server is None:
            raise NotFoundError(f"server not found for node {node.name}")
        return server


class Instances(InstancesInterface):
    """Answers instance questions about Nodes from the server inventory."""

    def __init__(self, resolver: NodeResolver, network_id: Optional[int] = None):
        self.resolver = resolver
        self.network_id = network_id

    async def instance_exists(self, node: Node) -> bool:
        try:
            await self.resolver.get_server(node)
        except NotFoundError:
            return False
        return True

    async def instance_shutdown(self, node: Node) -> bool:
        server = await self.resolver.get_server(node)
        return server.status != ServerStatus.RUNNING

    async def instance_metadata(self, node: Node) -> InstanceMetadata:
        server = await self.resolver.get_server(node)
        location = server.datacenter.location
        return InstanceMetadata(
            provider_id=format_provider_id(server.id),
            instance_type=server.server_type.name,
            node_addresses=self.node_addresses(server),
            zone=location.name,
            region=location.network_zone,
        )

    def node_addresses(self, server: Server) -> List[NodeAddress]:
        """Derive the typed node addresses of a server."""
        addresses = [NodeAddress(NodeAddressType.HOSTNAME, server.name)]

        if self.network_id is not None:
            private_ip = server.private_ip(self.network_id)
            if private_ip is not None:
                addresses.append(
                    NodeAddress(NodeAddressType.INTERNAL_IP, str(private_ip))
                )

        ipv4 = server.public_net.ipv4
        if ipv4 is not None and not ipv4.ip.is_unspecified:
            addresses.append(NodeAddress(NodeAddressType.EXTERNAL_IP, str(ipv4.ip)))

        ipv6 = server.public_net.ipv6
        if ipv6 is not None and not ipv6.ip.network_address.is_unspecified:
            addresses.append(
                NodeAddress(
                    NodeAddressType.EXTERNAL_IP, str(ipv6.ip.network_address)
                )
            )

        return addresses
