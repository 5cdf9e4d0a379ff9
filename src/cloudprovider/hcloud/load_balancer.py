"""
Load balancer reconciliation.

Converges one remote load balancer to a Service: its listeners to the
Service ports and its targets to the cluster nodes. Nothing is cached
between calls; every call starts from a fresh read of the remote state.
"""

import hashlib
import json
import logging
import re
from typing import Dict, List, Optional, Tuple

from cloudprovider.base import LoadBalancerInterface
from cloudprovider.hcloud.actions import ActionWaiter
from cloudprovider.hcloud.client import HCloudClient
from cloudprovider.hcloud.instances import NodeResolver
from cloudprovider.hcloud.models import Action, LoadBalancer
from config import LoadBalancerConfig
from errors import CloudProviderError, NotFoundError
from events import EventBus, EventType
from models import LoadBalancerIngress, Node, Service

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 63
NAME_DIGEST_LENGTH = 10
INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")


def load_balancer_name(cluster_name: str, namespace: str, service_name: str) -> str:
    """
    Build the deterministic load balancer name of a Service.

    The readable part may be truncated or sanitized, so a digest of the
    exact (cluster, namespace, name) triple is appended to keep distinct
    triples apart.
    """
    identity = json.dumps([cluster_name, namespace, service_name])
    digest = hashlib.sha256(identity.encode()).hexdigest()[:NAME_DIGEST_LENGTH]

    readable = f"{cluster_name}-{namespace}-{service_name}".lower()
    readable = INVALID_NAME_CHARS.sub("-", readable).strip("-")
    readable = readable[: MAX_NAME_LENGTH - NAME_DIGEST_LENGTH - 1].rstrip("-")

    if not readable:
        return digest
    return f"{readable}-{digest}"


def ingress_for(load_balancer: LoadBalancer) -> List[LoadBalancerIngress]:
    """Return one ingress entry per assigned public address."""
    ingress = []
    for public_ip in (load_balancer.public_net.ipv4, load_balancer.public_net.ipv6):
        if public_ip.ip is None or public_ip.ip.is_unspecified:
            continue
        ingress.append(
            LoadBalancerIngress(ip=str(public_ip.ip), hostname=public_ip.dns_ptr or None)
        )
    return ingress


class LoadBalancerReconciler(LoadBalancerInterface):
    """
    Converges load balancers to Services.

    By default convergence only adds and corrects: listeners and targets
    that are no longer desired are kept. With ``prune`` enabled they are
    removed as well.
    """

    def __init__(
        self,
        client: HCloudClient,
        resolver: NodeResolver,
        waiter: ActionWaiter,
        config: Optional[LoadBalancerConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.client = client
        self.resolver = resolver
        self.waiter = waiter
        self.config = config or LoadBalancerConfig()
        self.event_bus = event_bus

    def get_load_balancer_name(self, cluster_name: str, service: Service) -> str:
        return load_balancer_name(cluster_name, service.namespace, service.name)

    async def get_load_balancer(
        self, cluster_name: str, service: Service
    ) -> Tuple[List[LoadBalancerIngress], bool]:
        name = self.get_load_balancer_name(cluster_name, service)
        load_balancer = await self.client.get_load_balancer_by_name(name)
        if load_balancer is None:
            return [], False
        return ingress_for(load_balancer), True

    async def ensure_load_balancer(
        self, cluster_name: str, service: Service, nodes: List[Node]
    ) -> List[LoadBalancerIngress]:
        name = self.get_load_balancer_name(cluster_name, service)

        load_balancer = await self.client.get_load_balancer_by_name(name)
        if load_balancer is None:
            load_balancer = await self._create(name)

        await self._converge_services(load_balancer, service)
        await self._converge_targets(load_balancer, nodes)

        return ingress_for(load_balancer)

    async def update_load_balancer(
        self, cluster_name: str, service: Service, nodes: List[Node]
    ) -> None:
        name = self.get_load_balancer_name(cluster_name, service)

        load_balancer = await self.client.get_load_balancer_by_name(name)
        if load_balancer is None:
            raise NotFoundError(f"load balancer not found: {name}")

        await self._converge_targets(load_balancer, nodes)

    async def ensure_load_balancer_deleted(
        self, cluster_name: str, service: Service
    ) -> None:
        name = self.get_load_balancer_name(cluster_name, service)

        load_balancer = await self.client.get_load_balancer_by_name(name)
        if load_balancer is None:
            logger.debug(f"Load balancer {name} already absent")
            return

        await self.client.delete_load_balancer(load_balancer)
        logger.info(f"Deleted load balancer {name} (id={load_balancer.id})")
        await self._emit(EventType.DELETED, name, "Deleted load balancer")

    # Private helper methods

    async def _create(self, name: str) -> LoadBalancer:
        """Create a load balancer and return it re-read after creation."""
        load_balancer, action = await self.client.create_load_balancer(
            name=name,
            load_balancer_type=self.config.load_balancer_type,
            location=self.config.location,
        )
        logger.info(
            f"Creating load balancer {name} (id={load_balancer.id}, "
            f"type={self.config.load_balancer_type}, location={self.config.location})"
        )
        await self._wait(action, name, "unable to create new loadbalancer")
        await self._emit(EventType.CREATED, name, "Created load balancer")

        # Addresses are assigned asynchronously, the creation answer may lack them
        created = await self.client.get_load_balancer(load_balancer.id)
        if created is None:
            raise NotFoundError(
                f"load balancer {name} (id={load_balancer.id}) vanished after creation"
            )
        return created

    async def _converge_services(
        self, load_balancer: LoadBalancer, service: Service
    ) -> None:
        """Add missing listeners and fix listeners with a wrong destination port."""
        desired: Dict[int, int] = {}
        for port in service.ports:
            desired[port.port] = port.node_port

        for listen_port, node_port in desired.items():
            existing = load_balancer.get_service(listen_port)

            if existing is None:
                action = await self.client.add_load_balancer_service(
                    load_balancer, listen_port=listen_port, destination_port=node_port
                )
                logger.info(
                    f"Adding listener {listen_port}->{node_port} to {load_balancer.name}"
                )
                await self._wait(action, load_balancer.name, "unable to add listener")
                await self._emit(
                    EventType.MODIFIED,
                    load_balancer.name,
                    f"Added listener {listen_port}->{node_port}",
                )
            elif existing.destination_port != node_port:
                action = await self.client.update_load_balancer_service(
                    load_balancer, listen_port=listen_port, destination_port=node_port
                )
                logger.info(
                    f"Updating listener {listen_port} of {load_balancer.name}: "
                    f"{existing.destination_port} -> {node_port}"
                )
                await self._wait(
                    action, load_balancer.name, "unable to update listener"
                )
                await self._emit(
                    EventType.MODIFIED,
                    load_balancer.name,
                    f"Updated listener {listen_port}->{node_port}",
                )
            else:
                logger.debug(
                    f"Listener {listen_port}->{node_port} of {load_balancer.name} "
                    f"is up to date"
                )

        if not self.config.prune:
            return

        for existing in load_balancer.services:
            if existing.listen_port in desired:
                continue
            action = await self.client.delete_load_balancer_service(
                load_balancer, listen_port=existing.listen_port
            )
            logger.info(
                f"Removing listener {existing.listen_port} from {load_balancer.name}"
            )
            await self._wait(action, load_balancer.name, "unable to remove listener")
            await self._emit(
                EventType.MODIFIED,
                load_balancer.name,
                f"Removed listener {existing.listen_port}",
            )

    async def _converge_targets(
        self, load_balancer: LoadBalancer, nodes: List[Node]
    ) -> None:
        """Add a server target for every node that is not targeted yet."""
        desired: List[int] = []
        for node in nodes:
            server_id = await self.resolver.resolve(node)
            if server_id not in desired:
                desired.append(server_id)

        for server_id in desired:
            if load_balancer.has_server_target(server_id):
                logger.debug(
                    f"Server {server_id} is already a target of {load_balancer.name}"
                )
                continue

            action = await self.client.add_load_balancer_server_target(
                load_balancer, server_id
            )
            logger.info(f"Adding server {server_id} as target of {load_balancer.name}")
            await self._wait(action, load_balancer.name, "unable to add target")
            await self._emit(
                EventType.MODIFIED,
                load_balancer.name,
                f"Added target server {server_id}",
            )

        if not self.config.prune:
            return

        for target in load_balancer.targets:
            server_id = target.server_id
            if server_id is None or server_id in desired:
                continue
            action = await self.client.remove_load_balancer_server_target(
                load_balancer, server_id
            )
            logger.info(
                f"Removing server {server_id} from targets of {load_balancer.name}"
            )
            await self._wait(action, load_balancer.name, "unable to remove target")
            await self._emit(
                EventType.MODIFIED,
                load_balancer.name,
                f"Removed target server {server_id}",
            )

    async def _wait(self, action: Action, name: str, operation: str) -> None:
        result = await self.waiter.wait(action)
        try:
            result.raise_for_outcome(operation)
        except CloudProviderError as e:
            await self._emit(EventType.FAILED, name, str(e))
            raise

    async def _emit(self, event_type: EventType, name: str, message: str) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit(event_type, "LoadBalancer", name, message)
