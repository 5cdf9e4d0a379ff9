"""
Hetzner Cloud API client.

A thin async client over the JSON REST API. It only knows how to read and
mutate resources; waiting for the actions it returns is left to
ActionWaiter, and deciding what to mutate is left to the reconcilers.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from cloudprovider.hcloud.models import (
    Action,
    LoadBalancer,
    Network,
    NetworkRoute,
    Server,
)
from config import DEFAULT_ENDPOINT
from errors import TransportError

logger = logging.getLogger(__name__)

SERVERS_PER_PAGE = 50


class HCloudClient:
    """
    Async client for the Hetzner Cloud API.

    Lookups by ID or name return ``None`` when the resource does not exist.
    Every other failure raises TransportError.
    """

    def __init__(
        self,
        token: str,
        endpoint: str = DEFAULT_ENDPOINT,
        application_name: str = "ccm-from-scratch",
        request_timeout: float = 30.0,
        debug: bool = False,
    ):
        self.token = token
        self.endpoint = endpoint.rstrip("/")
        self.application_name = application_name
        self.request_timeout = request_timeout
        self.debug = debug

    # Load balancers

    async def get_load_balancer(self, load_balancer_id: int) -> Optional[LoadBalancer]:
        """Get a load balancer by ID."""
        body = await self._request(
            "GET", f"/load_balancers/{load_balancer_id}", allow_not_found=True
        )
        if body is None:
            return None
        return LoadBalancer.model_validate(body["load_balancer"])

    async def get_load_balancer_by_name(self, name: str) -> Optional[LoadBalancer]:
        """Get a load balancer by its unique name."""
        body = await self._request("GET", "/load_balancers", params={"name": name})
        load_balancers = body.get("load_balancers", [])
        if not load_balancers:
            return None
        return LoadBalancer.model_validate(load_balancers[0])

    async def create_load_balancer(
        self, name: str, load_balancer_type: str, location: str
    ) -> Tuple[LoadBalancer, Action]:
        """
        Create a load balancer.

        Args:
            name: Unique load balancer name.
            load_balancer_type: Type name (e.g. 'lb11').
            location: Location name (e.g. 'fsn1').

        Returns:
            The created load balancer (addresses may not be assigned yet)
            and the creation action.
        """
        payload: Dict[str, Any] = {
            "name": name,
            "load_balancer_type": load_balancer_type,
            "location": location,
        }
        body = await self._request("POST", "/load_balancers", json=payload)
        return (
            LoadBalancer.model_validate(body["load_balancer"]),
            Action.model_validate(body["action"]),
        )

    async def delete_load_balancer(self, load_balancer: LoadBalancer) -> None:
        """Delete a load balancer. The API answers synchronously."""
        await self._request("DELETE", f"/load_balancers/{load_balancer.id}")

    async def add_load_balancer_service(
        self,
        load_balancer: LoadBalancer,
        listen_port: int,
        destination_port: int,
        protocol: str = "tcp",
    ) -> Action:
        """Add a listener to a load balancer."""
        return await self._load_balancer_action(
            load_balancer,
            "add_service",
            {
                "protocol": protocol,
                "listen_port": listen_port,
                "destination_port": destination_port,
                "proxyprotocol": False,
            },
        )

    async def update_load_balancer_service(
        self,
        load_balancer: LoadBalancer,
        listen_port: int,
        destination_port: int,
        protocol: str = "tcp",
    ) -> Action:
        """Change the destination port of an existing listener."""
        return await self._load_balancer_action(
            load_balancer,
            "update_service",
            {
                "protocol": protocol,
                "listen_port": listen_port,
                "destination_port": destination_port,
            },
        )

    async def delete_load_balancer_service(
        self, load_balancer: LoadBalancer, listen_port: int
    ) -> Action:
        """Remove the listener bound to ``listen_port``."""
        return await self._load_balancer_action(
            load_balancer, "delete_service", {"listen_port": listen_port}
        )

    async def add_load_balancer_server_target(
        self, load_balancer: LoadBalancer, server_id: int, use_private_ip: bool = False
    ) -> Action:
        """Add a server target to a load balancer."""
        return await self._load_balancer_action(
            load_balancer,
            "add_target",
            {
                "type": "server",
                "server": {"id": server_id},
                "use_private_ip": use_private_ip,
            },
        )

    async def remove_load_balancer_server_target(
        self, load_balancer: LoadBalancer, server_id: int
    ) -> Action:
        """Remove a server target from a load balancer."""
        return await self._load_balancer_action(
            load_balancer,
            "remove_target",
            {"type": "server", "server": {"id": server_id}},
        )

    # Networks

    async def get_network(self, network_id: int) -> Optional[Network]:
        """Get a network by ID."""
        body = await self._request(
            "GET", f"/networks/{network_id}", allow_not_found=True
        )
        if body is None:
            return None
        return Network.model_validate(body["network"])

    async def add_network_route(self, network: Network, route: NetworkRoute) -> Action:
        """Add a route to a network."""
        return await self._network_action(network, "add_route", route)

    async def delete_network_route(
        self, network: Network, route: NetworkRoute
    ) -> Action:
        """Delete a route from a network."""
        return await self._network_action(network, "delete_route", route)

    # Servers

    async def get_server(self, server_id: int) -> Optional[Server]:
        """Get a server by ID."""
        body = await self._request(
            "GET", f"/servers/{server_id}", allow_not_found=True
        )
        if body is None:
            return None
        return Server.model_validate(body["server"])

    async def get_server_by_name(self, name: str) -> Optional[Server]:
        """Get a server by its unique name."""
        body = await self._request("GET", "/servers", params={"name": name})
        servers = body.get("servers", [])
        if not servers:
            return None
        return Server.model_validate(servers[0])

    async def all_servers(self) -> List[Server]:
        """List every server of the project, following pagination."""
        servers: List[Server] = []
        page: Optional[int] = 1

        while page is not None:
            body = await self._request(
                "GET",
                "/servers",
                params={"page": page, "per_page": SERVERS_PER_PAGE},
            )
            servers.extend(Server.model_validate(s) for s in body.get("servers", []))
            pagination = body.get("meta", {}).get("pagination", {})
            page = pagination.get("next_page")

        return servers

    # Actions

    async def get_action(self, action_id: int) -> Action:
        """Get the current state of an action."""
        body = await self._request("GET", f"/actions/{action_id}")
        return Action.model_validate(body["action"])

    # Private helper methods

    async def _load_balancer_action(
        self, load_balancer: LoadBalancer, command: str, payload: Dict[str, Any]
    ) -> Action:
        body = await self._request(
            "POST",
            f"/load_balancers/{load_balancer.id}/actions/{command}",
            json=payload,
        )
        return Action.model_validate(body["action"])

    async def _network_action(
        self, network: Network, command: str, route: NetworkRoute
    ) -> Action:
        body = await self._request(
            "POST",
            f"/networks/{network.id}/actions/{command}",
            json={"destination": str(route.destination), "gateway": str(route.gateway)},
        )
        return Action.model_validate(body["action"])

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for API requests."""
        return {
            "Authorization": f"Bearer {self.token}",
            "User-Agent": self.application_name,
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Perform a request and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the API endpoint.
            params: Optional query parameters.
            json: Optional JSON payload.
            allow_not_found: Return None instead of raising on HTTP 404.

        Returns:
            The decoded body, an empty dict for bodiless answers, or None
            for a tolerated 404.

        Raises:
            TransportError: On connection failures and non-2xx answers.
        """
        url = f"{self.endpoint}{path}"
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        if self.debug:
            logger.debug(f"--> {method} {url} params={params} body={json}")

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    params=params,
                    json=json,
                ) as response:
                    # Proxies may answer 404 with a non-JSON page
                    if response.status == 404 and allow_not_found:
                        if self.debug:
                            logger.debug(f"<-- 404 {method} {url}")
                        return None

                    if response.status == 204:
                        body: Dict[str, Any] = {}
                    else:
                        body = await response.json(content_type=None) or {}

                    if self.debug:
                        logger.debug(f"<-- {response.status} {method} {url} {body}")

                    if response.status >= 400:
                        error = body.get("error", {})
                        code = error.get("code")
                        message = error.get("message", response.reason)
                        raise TransportError(
                            f"{method} {path} failed with {response.status} "
                            f"({code}): {message}",
                            status=response.status,
                            code=code,
                        )

                    return body

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
