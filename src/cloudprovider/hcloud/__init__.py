"""
Hetzner Cloud provider.

Wires one API client, action waiter and node resolver into the load
balancer, route and instance implementations.
"""

import asyncio
import logging
from typing import Optional

from cloudprovider.base import CloudProvider
from cloudprovider.hcloud.actions import ActionWaiter
from cloudprovider.hcloud.client import HCloudClient
from cloudprovider.hcloud.instances import PROVIDER_NAME, Instances, NodeResolver
from cloudprovider.hcloud.load_balancer import LoadBalancerReconciler
from cloudprovider.hcloud.routes import RouteReconciler
from config import Config
from events import EventBus

logger = logging.getLogger(__name__)


class HCloudProvider(CloudProvider):
    """Cloud provider backed by the Hetzner Cloud API."""

    def __init__(
        self,
        config: Config,
        event_bus: Optional[EventBus] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        client: Optional[HCloudClient] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        hcloud = config.hcloud

        self.client = client or HCloudClient(
            token=hcloud.token,
            endpoint=hcloud.endpoint,
            application_name=hcloud.application_name,
            request_timeout=hcloud.request_timeout,
            debug=hcloud.debug,
        )
        self.waiter = ActionWaiter(
            self.client,
            poll_interval=config.actions.poll_interval,
            max_poll_interval=config.actions.max_poll_interval,
            timeout=config.actions.timeout,
            cancel_event=shutdown_event,
        )
        self.resolver = NodeResolver(self.client)

        self._load_balancer = LoadBalancerReconciler(
            self.client,
            self.resolver,
            self.waiter,
            config=config.load_balancer,
            event_bus=event_bus,
        )
        self._instances = Instances(self.resolver, network_id=hcloud.network_id)
        self._routes: Optional[RouteReconciler] = None
        if hcloud.network_id is not None:
            self._routes = RouteReconciler(
                self.client,
                self.waiter,
                network_id=hcloud.network_id,
                event_bus=event_bus,
            )
        else:
            logger.info("No network configured, route reconciliation disabled")

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def load_balancer(self) -> LoadBalancerReconciler:
        return self._load_balancer

    def instances(self) -> Instances:
        return self._instances

    def routes(self) -> Optional[RouteReconciler]:
        return self._routes


__all__ = ["HCloudProvider", "PROVIDER_NAME"]
